"""Tests for the key management and serve commands."""

import asyncio
from pathlib import Path
from typing import Any

import orjson
import pytest
from typer.testing import CliRunner

from gemini_key_proxy import __version__
from gemini_key_proxy.cli.commands import serve as serve_module
from gemini_key_proxy.cli.main import app
from gemini_key_proxy.config.settings import CONFIG_OVERRIDES_ENV
from gemini_key_proxy.db import close_db, init_db
from gemini_key_proxy.db.models import Credential
from gemini_key_proxy.db.repositories import CredentialRepository


runner = CliRunner()


@pytest.fixture
def cli_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at a temporary database and isolate config discovery."""
    db_file = tmp_path / "cli.db"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("STORAGE__DATABASE_PATH", str(db_file))
    monkeypatch.setenv(CONFIG_OVERRIDES_ENV, "")
    monkeypatch.setenv("CONFIG_FILE", "")
    return db_file


def _stored_credentials(db_file: Path) -> list[Credential]:
    async def _load() -> list[Credential]:
        await init_db(db_file)
        try:
            return await CredentialRepository().find_all()
        finally:
            await close_db()

    return asyncio.run(_load())


@pytest.mark.unit
class TestKeysCommands:
    def test_add_and_list(self, cli_db: Path) -> None:
        result = runner.invoke(app, ["keys", "add", "AIzaSyTest0000000001"])

        assert result.exit_code == 0, result.output
        assert "API key added successfully" in result.output
        assert "AIzaSyTest0000000001" not in result.output

        listing = runner.invoke(app, ["keys", "list"])
        assert listing.exit_code == 0
        assert "API Keys" in listing.output

        stored = _stored_credentials(cli_db)
        assert [c.secret for c in stored] == ["AIzaSyTest0000000001"]

    def test_list_empty(self, cli_db: Path) -> None:
        result = runner.invoke(app, ["keys", "list"])

        assert result.exit_code == 0
        assert "No API keys found." in result.output

    def test_disable_and_enable(self, cli_db: Path) -> None:
        runner.invoke(app, ["keys", "add", "AIzaSyTest0000000001"])
        key_id = _stored_credentials(cli_db)[0].id

        disabled = runner.invoke(app, ["keys", "disable", key_id])
        assert disabled.exit_code == 0
        assert _stored_credentials(cli_db)[0].is_active is False

        enabled = runner.invoke(app, ["keys", "enable", key_id])
        assert enabled.exit_code == 0
        assert _stored_credentials(cli_db)[0].is_active is True

    def test_unknown_key_exits_with_error(self, cli_db: Path) -> None:
        result = runner.invoke(app, ["keys", "disable", "missing"])

        assert result.exit_code == 1
        assert "API key not found" in result.output

    def test_delete_with_confirmation(self, cli_db: Path) -> None:
        runner.invoke(app, ["keys", "add", "AIzaSyTest0000000001"])
        key_id = _stored_credentials(cli_db)[0].id

        declined = runner.invoke(app, ["keys", "delete", key_id], input="n\n")
        assert declined.exit_code != 0
        assert len(_stored_credentials(cli_db)) == 1

        confirmed = runner.invoke(app, ["keys", "delete", key_id], input="y\n")
        assert confirmed.exit_code == 0
        assert _stored_credentials(cli_db) == []

    def test_delete_missing_key(self, cli_db: Path) -> None:
        result = runner.invoke(app, ["keys", "delete", "missing", "--force"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_import_legacy_file(self, cli_db: Path, tmp_path: Path) -> None:
        legacy = tmp_path / "keys.json"
        legacy.write_bytes(
            orjson.dumps(
                [
                    {"key": "AIzaSyLegacy00000001", "isActive": True},
                    {"key": "AIzaSyLegacy00000002", "isActive": False},
                ]
            )
        )

        result = runner.invoke(app, ["keys", "import", str(legacy)])

        assert result.exit_code == 0, result.output
        assert "Imported 2 key(s)" in result.output
        active = {c.secret: c.is_active for c in _stored_credentials(cli_db)}
        assert active == {"AIzaSyLegacy00000001": True, "AIzaSyLegacy00000002": False}


@pytest.mark.unit
def test_version() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.unit
def test_serve_passes_overrides_to_uvicorn(
    cli_db: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        serve_module.uvicorn, "run", lambda target, **kwargs: calls.append(kwargs)
    )
    monkeypatch.setattr(serve_module, "setup_logging", lambda **kwargs: None)

    result = runner.invoke(app, ["serve", "--host", "0.0.0.0", "--port", "4000"])

    assert result.exit_code == 0, result.output
    assert calls[0]["host"] == "0.0.0.0"
    assert calls[0]["port"] == 4000
    assert calls[0]["factory"] is True


@pytest.mark.unit
def test_serve_rejects_invalid_config(
    cli_db: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        serve_module.uvicorn, "run", lambda *args, **kwargs: pytest.fail("started")
    )
    bad_config = tmp_path / "bad.toml"
    bad_config.write_text("[server\nport = ")

    result = runner.invoke(app, ["serve", "--config", str(bad_config)])

    assert result.exit_code == 1
    assert "Configuration error" in result.output
