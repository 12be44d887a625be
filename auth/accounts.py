from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

from flok.errors import MULTIPLE_ACCOUNTS, NO_ACCOUNT, AuthFailure

ACCOUNT_ENV = "FLOK_ACCOUNT"


def resolve_account(
    explicit: str | None,
    *,
    environ: Mapping[str, str],
    default_account: str | None,
    account_ids: Iterable[str],
) -> str:
    """Pick the account to act as.

    Precedence: explicit value, ``FLOK_ACCOUNT``, the persisted default, then
    the only stored account.
    """
    if explicit:
        return explicit
    env_account = environ.get(ACCOUNT_ENV, "").strip()
    if env_account:
        return env_account
    if default_account:
        return default_account

    known = sorted(set(account_ids))
    if not known:
        raise AuthFailure(NO_ACCOUNT)
    if len(known) == 1:
        return known[0]
    raise AuthFailure(
        MULTIPLE_ACCOUNTS,
        f"Multiple accounts ({', '.join(known)}). Set {ACCOUNT_ENV} or run `flok accounts switch <account>`.",
    )


def read_default_account(path: str | Path) -> str | None:
    path = Path(path).expanduser()
    if not path.exists():
        return None
    value = path.read_text(encoding="utf-8").strip()
    return value or None


def write_default_account(path: str | Path, account_id: str) -> None:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(account_id, encoding="utf-8")


def clear_default_account(path: str | Path, account_id: str | None = None) -> None:
    path = Path(path).expanduser()
    if not path.exists():
        return
    if account_id is not None and read_default_account(path) != account_id:
        return
    path.unlink()
