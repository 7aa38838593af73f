"""Logging configuration for the clusterboot package."""
import logging
import threading
from typing import Iterable, Set

from .config import Config

_secret_lock = threading.Lock()
_secret_values: Set[str] = set()


def register_secret(value: str) -> None:
    """Remember a secret value so log records never show it in clear text."""
    if not value:
        return
    with _secret_lock:
        _secret_values.add(value)


def registered_secrets() -> Iterable[str]:
    with _secret_lock:
        # Longest first so a token embedded in a kubeconfig is masked whole
        return sorted(_secret_values, key=len, reverse=True)


def redact_text(text: str) -> str:
    for value in registered_secrets():
        if value in text:
            text = text.replace(value, Config.REDACTED)
    return text


class RedactingFilter(logging.Filter):
    """Mask registered secret values in the final log message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_text(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(debug_mode: bool = False) -> None:
    """Configure root logging for CLI runs."""
    log_level = logging.DEBUG if debug_mode else getattr(logging, Config.LOG_LEVEL, logging.INFO)
    handler = logging.StreamHandler()
    handler.addFilter(RedactingFilter())
    logging.basicConfig(
        level=log_level,
        format=Config.LOG_FORMAT,
        handlers=[handler],
        force=True,
    )
    # Disable debug logging for noisy libraries
    if not debug_mode:
        logging.getLogger('paramiko').setLevel(logging.WARNING)
