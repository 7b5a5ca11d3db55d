"""Tests for the administration CLI."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from neuro.assistant import Assistant
from neuro.cli import create_parser, run_cli
from neuro.config import Config
from neuro.memory import ConversationStore, MemoryKind


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        db_path=tmp_path / "neuro.db",
        state_path=tmp_path / "state.db",
        log_dir=tmp_path / "logs",
        max_context_tokens=1_000,
        compress_threshold=100,
    )


@pytest.fixture
def patched_config(config: Config):
    with patch("neuro.cli.config_from_env", return_value=config):
        yield config


def open_store(config: Config) -> ConversationStore:
    store = ConversationStore(config.db_path)
    store.init_db()
    return store


class TestParser:
    def test_no_command_prints_help(self, capsys):
        assert run_cli([]) == 0
        assert "usage" in capsys.readouterr().out

    def test_accounts_without_subcommand(self, patched_config):
        assert run_cli(["accounts"]) == 1

    def test_export_output_option(self):
        args = create_parser().parse_args(["export", "42", "-o", "out.json"])
        assert args.subject == "42"
        assert args.output == "out.json"


class TestAccountsCommands:
    def test_init_from_env(self, patched_config, monkeypatch, capsys):
        monkeypatch.setenv(
            "GOOGLE_ACCOUNTS",
            json.dumps(
                [
                    {"email": "a@example.com", "refreshToken": "rt-a"},
                    {"email": "b@example.com", "refreshToken": "rt-b"},
                ]
            ),
        )

        assert run_cli(["accounts", "init"]) == 0
        assert "2 account(s)" in capsys.readouterr().out

        assert run_cli(["accounts", "list"]) == 0
        out = capsys.readouterr().out
        assert "a@example.com" in out
        assert "available" in out

    def test_init_without_accounts(self, patched_config, monkeypatch, capsys):
        monkeypatch.delenv("GOOGLE_ACCOUNTS", raising=False)
        monkeypatch.delenv("GOOGLE_REFRESH_TOKEN", raising=False)

        assert run_cli(["accounts", "init"]) == 1
        assert "Error" in capsys.readouterr().out

    def test_list_empty(self, patched_config, capsys):
        assert run_cli(["accounts", "list"]) == 0
        assert "No accounts found" in capsys.readouterr().out


class TestStatsCommand:
    def test_shows_usage(self, patched_config, seed, capsys):
        store = open_store(patched_config)
        seed(store, "42", ["Привет", "Здравствуй"])
        store.add_memory_item("42", MemoryKind.FACT, "Врач")
        store.close()

        assert run_cli(["stats", "42"]) == 0

        out = capsys.readouterr().out
        assert "Messages: 2" in out
        assert "1 facts" in out


class TestCompressCommand:
    def test_nothing_to_compress(self, patched_config, seed, capsys):
        store = open_store(patched_config)
        seed(store, "42", ["Привет"])
        store.close()

        assert run_cli(["compress", "42"]) == 0
        assert "Nothing to compress" in capsys.readouterr().out

    def test_compresses_with_generator(self, patched_config, seed, make_generator, capsys):
        store = open_store(patched_config)
        seed(store, "42", ["я" * 200 for _ in range(10)])
        assistant = Assistant(store, make_generator("без разметки"), config=patched_config)

        with patch("neuro.cli._get_assistant", return_value=assistant):
            assert run_cli(["compress", "42"]) == 0

        assert "Compressed 7 messages" in capsys.readouterr().out
        assert store.count_messages("42") == 4
        store.close()


class TestExportImport:
    def test_export_to_file_and_import(self, patched_config, seed, tmp_path, capsys):
        store = open_store(patched_config)
        seed(store, "42", ["Привет", "Здравствуй"])
        store.upsert_settings("42", "Я врач")
        store.close()
        out_file = tmp_path / "export.json"

        assert run_cli(["export", "42", "-o", str(out_file)]) == 0
        assert run_cli(["import", "43", str(out_file)]) == 0
        assert "Imported 2 message(s)" in capsys.readouterr().out

        store = open_store(patched_config)
        assert [m.content for m in store.list_messages("43")] == ["Привет", "Здравствуй"]
        assert store.get_settings("43") == "Я врач"
        store.close()

    def test_export_to_stdout(self, patched_config, capsys):
        assert run_cli(["export", "42"]) == 0
        assert json.loads(capsys.readouterr().out)["history"] == []

    def test_import_missing_file(self, patched_config, tmp_path, capsys):
        assert run_cli(["import", "42", str(tmp_path / "nope.json")]) == 1
        assert "not found" in capsys.readouterr().out

    def test_import_invalid_json(self, patched_config, tmp_path, capsys):
        bad = tmp_path / "bad.json"
        bad.write_text("{nope", encoding="utf-8")

        assert run_cli(["import", "42", str(bad)]) == 1
        assert "Invalid JSON" in capsys.readouterr().out
