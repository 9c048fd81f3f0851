"""Logging setup driven by :class:`relgraph.config.LoggingSettings`."""

from __future__ import annotations

import logging
from logging import getLogger

from .config import LoggingSettings

__all__ = ["configure_logging", "getLogger"]


def configure_logging(settings: LoggingSettings, *, force: bool = False) -> None:
    """
    Install a root handler using the configured level and format.

    Libraries embedding relgraph usually configure logging themselves; call
    this from entry points and tests only. `force` replaces existing handlers.
    """
    logging.basicConfig(level=settings.level, format=settings.format, force=force)
    getLogger("relgraph").setLevel(settings.level)
