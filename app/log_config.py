from __future__ import annotations

import logging


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    # uvicorn and pytest install their own handlers; only add ours once.
    if not any(
        getattr(h, "name", None) == "cidr-feed" for h in root_logger.handlers
    ):
        handler = logging.StreamHandler()
        handler.set_name("cidr-feed")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
