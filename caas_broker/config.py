from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

DEFAULT_CATALOG_FILE = Path(__file__).resolve().parent / "catalog.yaml"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    api_url: str = "https://kubernetes.default.svc"
    api_token: str | None = None
    verify_tls: bool = True
    http_timeout: float = 30.0
    token_poll_attempts: int = 5
    token_poll_interval: float = 1.0
    token_poll_backoff: float = 2.0
    catalog_file: Path = DEFAULT_CATALOG_FILE

    @classmethod
    def from_env(cls) -> "Settings":
        catalog = os.getenv("CAAS_CATALOG_FILE")
        settings = cls(
            api_url=os.getenv("CAAS_API_URL", cls.api_url).rstrip("/"),
            api_token=os.getenv("CAAS_API_TOKEN") or None,
            verify_tls=_env_bool("CAAS_VERIFY_TLS", cls.verify_tls),
            http_timeout=_env_float("CAAS_HTTP_TIMEOUT", cls.http_timeout),
            token_poll_attempts=_env_int("CAAS_TOKEN_POLL_ATTEMPTS", cls.token_poll_attempts),
            token_poll_interval=_env_float("CAAS_TOKEN_POLL_INTERVAL", cls.token_poll_interval),
            token_poll_backoff=_env_float("CAAS_TOKEN_POLL_BACKOFF", cls.token_poll_backoff),
            catalog_file=Path(catalog) if catalog else DEFAULT_CATALOG_FILE,
        )
        if settings.token_poll_attempts < 1:
            raise ValueError("CAAS_TOKEN_POLL_ATTEMPTS must be at least 1")
        return settings
