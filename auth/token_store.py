from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from auth.models import TokenSet

ACCESS_TOKEN = "access_token"
REFRESH_TOKEN = "refresh_token"
EXPIRES_AT = "expires_at"
SCOPE = "scope"
TOKEN_TYPE = "token_type"

TOKEN_KEYS = (ACCESS_TOKEN, REFRESH_TOKEN, EXPIRES_AT, SCOPE, TOKEN_TYPE)


class CredentialStore(ABC):
    """Key/value persistence for token material, partitioned by account id."""

    @abstractmethod
    async def save(self, key: str, value: str, account_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def load(self, key: str, account_id: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str, account_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_account_ids(self) -> set[str]:
        raise NotImplementedError


class MemoryCredentialStore(CredentialStore):
    def __init__(self) -> None:
        self._values: dict[str, dict[str, str]] = {}

    async def save(self, key: str, value: str, account_id: str) -> None:
        self._values.setdefault(account_id, {})[key] = value

    async def load(self, key: str, account_id: str) -> str | None:
        return self._values.get(account_id, {}).get(key)

    async def delete(self, key: str, account_id: str) -> None:
        entries = self._values.get(account_id)
        if entries is None:
            return
        entries.pop(key, None)
        if not entries:
            del self._values[account_id]

    async def list_account_ids(self) -> set[str]:
        return set(self._values)


class FileCredentialStore(CredentialStore):
    """JSON file backend: ``{account_id: {key: value}}``, written atomically."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def save(self, key: str, value: str, account_id: str) -> None:
        all_values = self._read_all()
        all_values.setdefault(account_id, {})[key] = value
        self._write_all(all_values)

    async def load(self, key: str, account_id: str) -> str | None:
        return self._read_all().get(account_id, {}).get(key)

    async def delete(self, key: str, account_id: str) -> None:
        all_values = self._read_all()
        entries = all_values.get(account_id)
        if entries is None or key not in entries:
            return
        del entries[key]
        if not entries:
            del all_values[account_id]
        self._write_all(all_values)

    async def list_account_ids(self) -> set[str]:
        return set(self._read_all())

    def _read_all(self) -> dict[str, dict[str, str]]:
        if not self._path.exists():
            return {}

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Credential store file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, dict[str, str]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        # mkstemp creates the file with 0600 permissions.
        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


async def save_token_set(store: CredentialStore, account_id: str, token_set: TokenSet) -> None:
    await store.save(ACCESS_TOKEN, token_set.access_token, account_id)
    await store.save(EXPIRES_AT, str(int(token_set.expires_at)), account_id)
    await store.save(SCOPE, token_set.scope, account_id)
    await store.save(TOKEN_TYPE, token_set.token_type, account_id)
    if token_set.refresh_token:
        await store.save(REFRESH_TOKEN, token_set.refresh_token, account_id)
    else:
        await store.delete(REFRESH_TOKEN, account_id)


async def load_token_set(store: CredentialStore, account_id: str) -> TokenSet | None:
    access_token = await store.load(ACCESS_TOKEN, account_id)
    expires_raw = await store.load(EXPIRES_AT, account_id)
    if not access_token or expires_raw is None:
        return None
    try:
        expires_at = float(expires_raw)
    except ValueError:
        return None

    return TokenSet(
        access_token=access_token,
        expires_at=expires_at,
        refresh_token=await store.load(REFRESH_TOKEN, account_id),
        scope=await store.load(SCOPE, account_id) or "",
        token_type=await store.load(TOKEN_TYPE, account_id) or "Bearer",
    )


async def delete_token_set(store: CredentialStore, account_id: str) -> None:
    for key in TOKEN_KEYS:
        await store.delete(key, account_id)
