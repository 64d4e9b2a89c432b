"""Project-wide logging utilities."""

from __future__ import annotations

import logging
import sys
from typing import Callable, List, TextIO, Tuple

DEFAULT_LEVEL = logging.INFO
VERBOSITY_TO_LEVEL = {
    -2: logging.ERROR,
    -1: logging.WARNING,
    0: logging.INFO,
    1: logging.DEBUG,
}
REDACTED = "********"


def _level_for_counts(verbose: int = 0, quiet: int = 0) -> int:
    delta = max(-2, min(2, verbose - quiet))
    return VERBOSITY_TO_LEVEL.get(delta, logging.DEBUG if delta > 0 else logging.ERROR)


class SecretRedactingFilter(logging.Filter):
    """Replace live secret values in log records with a placeholder.

    Secrets are registered as callables returning the current plaintext (or
    an empty value once cleared), so nothing is copied into the filter.
    """

    def __init__(self) -> None:
        super().__init__()
        self._sources: List[Callable[[], bytes]] = []

    @property
    def sources(self) -> Tuple[Callable[[], bytes], ...]:
        return tuple(self._sources)

    def register(self, source: Callable[[], bytes]) -> None:
        self._sources.append(source)

    def unregister(self, source: Callable[[], bytes]) -> None:
        if source in self._sources:
            self._sources.remove(source)

    def reset(self) -> None:
        self._sources.clear()

    def filter(self, record: logging.LogRecord) -> bool:
        values = [value for value in (_decode(source()) for source in self._sources) if value]
        if not values:
            return True
        message = record.getMessage()
        for value in values:
            message = message.replace(value, REDACTED)
        record.msg = message
        record.args = None
        return True


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace") if raw else ""


redaction_filter = SecretRedactingFilter()


def configure_logging(*, verbose: int = 0, quiet: int = 0, stream: TextIO | None = None) -> None:
    """Configure root logging for CLI usage."""
    level = _level_for_counts(verbose, quiet)
    handler_stream = stream or sys.stderr

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(handler_stream)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    handler.addFilter(redaction_filter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


__all__ = ["REDACTED", "SecretRedactingFilter", "configure_logging", "redaction_filter"]
