"""Configuration management for the clusterboot application."""
import os

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Application configuration with sensible defaults."""

    # SSH
    SSH_CONNECT_TIMEOUT: int = int(os.getenv("SSH_CONNECT_TIMEOUT", "30"))
    SSH_POLL_INTERVAL: float = float(os.getenv("SSH_POLL_INTERVAL", "0.5"))

    # Local state
    STATE_DIR: str = os.getenv("CLUSTERBOOT_STATE_DIR", "~/.clusterboot/clusters")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Security
    REDACT_KEYS: tuple = ("private_key", "password", "secret", "token", "kubeconfig")
    REDACTED: str = "**********"

    # Credential lookup
    PRIVATE_KEY_SUFFIX: str = "_PRIVATE_KEY"
