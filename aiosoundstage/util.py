"""Utility functions for aiosoundstage."""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into the closed range [low, high]."""
    return max(low, min(high, value))


class SessionLogger(logging.LoggerAdapter):  # type: ignore[type-arg]
    """
    Logger handed to every object owned by a session.

    When the session was created with ``silent=True`` nothing is emitted, without
    touching the configuration of the underlying logger that other sessions share.
    """

    def __init__(self, logger: logging.Logger, session_id: str, *, silent: bool) -> None:
        """Wrap logger for the session identified by session_id."""
        super().__init__(logger, {"session_id": session_id})
        self.session_id = session_id
        self.silent = silent

    def isEnabledFor(self, level: int) -> bool:  # noqa: N802
        """Return False for every level when the session is silent."""
        if self.silent:
            return False
        return self.logger.isEnabledFor(level)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        """Prefix messages with the session id."""
        msg, kwargs = super().process(msg, kwargs)
        return f"[{self.session_id}] {msg}", kwargs

    def getChild(self, suffix: str) -> SessionLogger:  # noqa: N802
        """Return an adapter for a child logger of the same session."""
        return SessionLogger(self.logger.getChild(suffix), self.session_id, silent=self.silent)
