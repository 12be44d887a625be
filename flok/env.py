from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .constants import (
    AUTH_LOGGER,
    DEFAULT_ACCOUNT_PATH,
    DEFAULT_API_VERSION,
    DEFAULT_SCOPES,
    DEFAULT_TOKEN_STORE_PATH,
    LOGGER,
)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env(env_path: Path | None = None) -> None:
    env_path = env_path or Path.cwd() / ".env"
    if not env_path.exists():
        return
    from dotenv import load_dotenv

    load_dotenv(env_path, override=False)


@dataclass(frozen=True)
class FlokConfig:
    client_id: str = ""
    tenant_id: str = "common"
    account: str | None = None
    read_only: bool = False
    api_version: str = DEFAULT_API_VERSION
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    token_store_path: Path = DEFAULT_TOKEN_STORE_PATH
    default_account_path: Path = DEFAULT_ACCOUNT_PATH
    timeout: float = 30.0
    max_attempts: int = 3


def load_config(
    *,
    client_id: str | None = None,
    tenant_id: str | None = None,
    account: str | None = None,
    read_only: bool = False,
    api_version: str | None = None,
) -> FlokConfig:
    """Build the configuration: explicit arguments, then environment, then defaults."""
    scopes = os.getenv("FLOK_SCOPES", "").split()
    return FlokConfig(
        client_id=client_id or os.getenv("FLOK_CLIENT_ID", "").strip(),
        tenant_id=tenant_id or os.getenv("FLOK_TENANT_ID", "").strip() or "common",
        account=account or os.getenv("FLOK_ACCOUNT", "").strip() or None,
        read_only=read_only or is_truthy(os.getenv("FLOK_READ_ONLY")),
        api_version=api_version or os.getenv("FLOK_API_VERSION", "").strip() or DEFAULT_API_VERSION,
        scopes=scopes or list(DEFAULT_SCOPES),
        token_store_path=Path(
            os.getenv("FLOK_TOKEN_STORE_PATH", "").strip() or DEFAULT_TOKEN_STORE_PATH
        ).expanduser(),
        default_account_path=Path(
            os.getenv("FLOK_DEFAULT_ACCOUNT_PATH", "").strip() or DEFAULT_ACCOUNT_PATH
        ).expanduser(),
        timeout=_get_env_float("FLOK_HTTP_TIMEOUT", 30.0),
        max_attempts=_get_env_int("FLOK_HTTP_MAX_ATTEMPTS", 3),
    )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("FLOK_DEBUG"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
        AUTH_LOGGER.setLevel(logging.INFO)
    return debug_enabled
