from __future__ import annotations

from store.state import ChangelogEntry


CHANGELOG_LIMIT = 10


def diff_addresses(
    previous: list[str], current: list[str]
) -> tuple[list[str], list[str]]:
    previous_set = set(previous)
    current_set = set(current)
    added = [ip for ip in current if ip not in previous_set]
    removed = [ip for ip in previous if ip not in current_set]
    return added, removed


def record_changes(
    changelog: list[ChangelogEntry],
    previous: list[str],
    current: list[str],
    at: str,
) -> tuple[list[ChangelogEntry], ChangelogEntry | None, list[str], list[str]]:
    """Diff two address lists and prepend a changelog entry if they differ.

    Returns the new changelog, the entry (or None), and the added and
    removed blocks. Populating an empty list is the initial seed and is
    not recorded as a change.
    """
    added, removed = diff_addresses(previous, current)
    if not previous or (not added and not removed):
        return list(changelog), None, added, removed

    entry = ChangelogEntry(
        date=at,
        ip_addresses=list(current),
        added=added,
        removed=removed,
    )
    return [entry, *changelog][:CHANGELOG_LIMIT], entry, added, removed
