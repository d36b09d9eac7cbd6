# tests/test_cli.py
"""Tests for the command-line interface."""

import json
import tempfile
from pathlib import Path

import pytest

from utilreg.cli import main, parse_collection
from utilreg.ledger import Ledger


@pytest.fixture
def data_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def run(data_dir: Path, *argv: str):
    main(["--config", str(data_dir / "none.yml"), "--data-dir", str(data_dir), *argv])


class TestParseCollection:
    """Tests for chain_id:address parsing."""

    def test_valid(self):
        assert parse_collection("137:0xC1") == (137, "0xC1")

    def test_missing_separator(self):
        with pytest.raises(ValueError):
            parse_collection("0xc1")

    def test_bad_chain(self):
        with pytest.raises(ValueError):
            parse_collection("eth:0xc1")


class TestCommands:
    """Tests for CLI subcommands against a local data directory."""

    def test_lifecycle(self, data_dir, capsys):
        run(data_dir, "create-actor", "alice")
        capsys.readouterr()

        run(data_dir, "register-app", "ipfs://info1", "--as", "alice")
        assert capsys.readouterr().out.strip() == "1"

        run(data_dir, "register-collections", "1", "-c", "1:0xC1", "-c", "1:0xc1", "--as", "alice")
        out = capsys.readouterr().out
        assert "Registered 0xc1 (chain 1)" in out
        assert "Skipped 1" in out

        run(data_dir, "set-module", "1", "ipfs://mod1", "--as", "alice")
        run(data_dir, "update-status", "1", "ipfs://u1", "--as", "alice")
        assert "status update #1" in capsys.readouterr().out

        run(data_dir, "show", "1")
        shown = json.loads(capsys.readouterr().out)
        assert shown["owner"] == "https://utilreg.local/users/alice"
        assert shown["status_updates"][0]["update_url"] == "ipfs://u1"

        run(data_dir, "events", "--json")
        lines = capsys.readouterr().out.splitlines()
        assert [json.loads(l)["event_type"] for l in lines] == [
            "AppRegistered", "CollectionRegistered", "UpdateModuleSet", "AppStatusUpdated",
        ]

    def test_unauthorized_exits_nonzero(self, data_dir, capsys):
        run(data_dir, "register-app", "ipfs://info1", "--as", "alice")
        with pytest.raises(SystemExit) as exc:
            run(data_dir, "change-info", "1", "ipfs://x", "--as", "mallory")
        assert exc.value.code == 1
        assert "not the owner" in capsys.readouterr().err

    def test_module_not_configured(self, data_dir, capsys):
        run(data_dir, "register-app", "ipfs://info1", "--as", "alice")
        with pytest.raises(SystemExit):
            run(data_dir, "update-status", "1", "ipfs://u1", "--as", "alice")
        assert "no update module" in capsys.readouterr().err

    def test_busy_data_directory(self, data_dir, capsys):
        with Ledger(data_dir):
            with pytest.raises(SystemExit) as exc:
                run(data_dir, "register-app", "ipfs://info1", "--as", "alice")
        assert exc.value.code == 1
        assert "in use by another process" in capsys.readouterr().err

        run(data_dir, "register-app", "ipfs://info1", "--as", "alice")
        assert capsys.readouterr().out.strip() == "1"

    def test_transfer_by_username(self, data_dir, capsys):
        run(data_dir, "create-actor", "bob")
        run(data_dir, "register-app", "ipfs://info1", "--as", "alice")
        run(data_dir, "transfer-owner", "1", "bob", "--as", "alice")
        assert "https://utilreg.local/users/bob" in capsys.readouterr().out
        run(data_dir, "change-info", "1", "ipfs://x", "--as", "bob")

    def test_check_module(self, data_dir, capsys):
        path = data_dir / "module.json"
        path.write_text(json.dumps({
            "name": "Game",
            "attributes": ["hp"],
            "collections": [{"chain_id": 1, "address": "0xc1", "attributes": [1]}],
        }))
        with pytest.raises(SystemExit):
            run(data_dir, "check-module", str(path))
        assert "only 1 are defined" in capsys.readouterr().err
