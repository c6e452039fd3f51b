from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_RATE_API_URL = "https://open.er-api.com/v6/latest"
DEFAULT_DATABASE_URL = "sqlite:///./fxledger.db"
DEFAULT_CURRENCY = "USD"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    rate_api_url: str = DEFAULT_RATE_API_URL
    database_url: str = DEFAULT_DATABASE_URL
    default_currency: str = DEFAULT_CURRENCY
    fetch_timeout: float | None = None
    frontend_origin: str = "http://localhost:3000"
    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        rate_api_url=os.getenv("FXLEDGER_RATE_API_URL", DEFAULT_RATE_API_URL).rstrip("/"),
        database_url=os.getenv("FXLEDGER_DATABASE_URL", DEFAULT_DATABASE_URL),
        default_currency=get_system_default_currency(),
        fetch_timeout=_parse_timeout(os.getenv("FXLEDGER_FETCH_TIMEOUT")),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:3000"),
        log_level=os.getenv("FXLEDGER_LOG_LEVEL", "INFO").strip().upper(),
    )


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", DEFAULT_CURRENCY)
    normalized = raw.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        return DEFAULT_CURRENCY
    return normalized


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def _parse_timeout(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    try:
        timeout = float(value)
    except ValueError as exc:
        raise ValueError("FXLEDGER_FETCH_TIMEOUT must be a number of seconds.") from exc
    if timeout <= 0:
        raise ValueError("FXLEDGER_FETCH_TIMEOUT must be greater than zero.")
    return timeout
