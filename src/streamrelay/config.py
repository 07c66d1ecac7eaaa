"""
Runtime configuration for the relay server.

Values come from the environment (optionally seeded from a ``.env`` file).
Every field has a default, so an empty environment yields a working server.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROJECT_DIR = Path(__file__).resolve().parent.parent.parent

load_dotenv(PROJECT_DIR / ".env")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


@dataclass
class RelayConfig:
    """Server settings. Timeouts of 0 disable the corresponding bound."""

    host: str = "0.0.0.0"
    port: int = 8000
    eviction_delay_ms: int = 30_000
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    send_timeout: float = 10.0
    chunk_size: int = 0
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def eviction_delay(self) -> float:
        """Eviction delay in seconds."""
        return self.eviction_delay_ms / 1000.0

    @classmethod
    def from_env(cls) -> "RelayConfig":
        return cls(
            host=os.getenv("RELAY_HOST", cls.host),
            port=_env_int("RELAY_PORT", cls.port),
            eviction_delay_ms=_env_int("RELAY_EVICTION_DELAY_MS", cls.eviction_delay_ms),
            connect_timeout=_env_float("RELAY_CONNECT_TIMEOUT", cls.connect_timeout),
            read_timeout=_env_float("RELAY_READ_TIMEOUT", cls.read_timeout),
            send_timeout=_env_float("RELAY_SEND_TIMEOUT", cls.send_timeout),
            chunk_size=_env_int("RELAY_CHUNK_SIZE", cls.chunk_size),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            log_file=os.getenv("LOG_FILE") or None,
        )


CONFIG = RelayConfig.from_env()
