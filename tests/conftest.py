import pytest


@pytest.fixture(autouse=True)
def isolated_flok_home(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("FLOK_ACCOUNT", raising=False)
    monkeypatch.setenv("FLOK_TOKEN_STORE_PATH", str(tmp_path / "flok" / "tokens.json"))
    monkeypatch.setenv("FLOK_DEFAULT_ACCOUNT_PATH", str(tmp_path / "flok" / "current-account"))
