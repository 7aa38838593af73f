"""Utility functions and helpers for the clusterboot application."""
from typing import Any

from pydantic import SecretStr

from ..config import Config


def redact_sensitive_data(data: Any) -> Any:
    """Recursively redact sensitive data from dictionaries and lists.

    Keys matching ``Config.REDACT_KEYS`` are masked, and so is any
    ``SecretStr`` value regardless of its key.

    Args:
        data: Input data that might contain sensitive information

    Returns:
        Data with sensitive values redacted
    """
    if isinstance(data, SecretStr):
        return Config.REDACTED
    if isinstance(data, dict):
        return {
            k: Config.REDACTED if any(
                redact_key.lower() in str(k).lower()
                for redact_key in Config.REDACT_KEYS
            ) else redact_sensitive_data(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item) for item in data]
    return data

