"""Configuration helpers for backend runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .timeout import ACTION_TIMEOUT_MS


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


@dataclass(frozen=True)
class BackendSettings:
    server_salt: str
    database_url: str | None
    host: str
    port: int
    action_timeout_ms: int
    log_level: str


def load_settings() -> BackendSettings:
    port_raw = os.getenv("SCIENCEGAME_PORT", "8000")
    timeout_raw = os.getenv("SCIENCEGAME_ACTION_TIMEOUT_MS", str(ACTION_TIMEOUT_MS))
    return BackendSettings(
        server_salt=os.getenv("SCIENCEGAME_SERVER_SALT", "dev-salt"),
        database_url=os.getenv("SCIENCEGAME_DATABASE_URL"),
        host=os.getenv("SCIENCEGAME_HOST", "127.0.0.1"),
        port=int(port_raw),
        action_timeout_ms=int(timeout_raw),
        log_level=os.getenv("SCIENCEGAME_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str) -> None:
    numeric_level = logging.getLevelName(level)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
