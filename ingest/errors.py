from __future__ import annotations


class RefreshError(Exception):
    """A refresh cycle could not produce a new address list."""


class FetchExhausted(RefreshError):
    def __init__(self, target_url: str, attempts: list[tuple[str, str]]) -> None:
        self.target_url = target_url
        self.attempts = attempts
        detail = "; ".join(f"{source_id}: {error}" for source_id, error in attempts)
        super().__init__(f"all fetch attempts failed for {target_url} ({detail})")


class EmptyResult(RefreshError):
    pass


class UpdateRejected(RefreshError):
    pass
