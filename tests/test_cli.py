"""
Tests for the relaychat CLI.
Run with: pytest tests/test_cli.py
"""

import pytest

from relaychat import cli
from relaychat import config as config_mod
from relaychat.backends.base import BackendResponse, BaseBackend
from relaychat.backends.registry import BackendRegistry
from relaychat.storage.sqlite_store import SQLiteStore


class EchoBackend(BaseBackend):
    def __init__(self):
        super().__init__(name="echo", url="http://echo")

    async def send(self, messages, temperature):
        return BackendResponse(ok=True, content="**👋 Greeting**")

    async def send_stream(self, messages, temperature):
        for chunk in ("Hel", "lo"):
            yield chunk

    async def list_models(self):
        return ["echo-1", "echo-2"]


@pytest.fixture
def cfg(tmp_path, monkeypatch):
    monkeypatch.setattr(config_mod, "_runtime", config_mod.RuntimeOverrides(tmp_path / "runtime_config.yaml"))
    monkeypatch.setattr(BackendRegistry, "create", lambda self, c, model="": EchoBackend())
    return {
        "backends": [{"id": "gpt", "type": "chatgpt", "url": "http://gpt", "model": "gpt-test"}],
        "storage": {"path": str(tmp_path / "chat.db")},
        "generation": {"persist_backoff": 0},
    }


def test_parser_aliases():
    args = cli.build_parser().parse_args(["ask", "hello", "world", "--no-stream"])
    assert args.func is cli.cmd_chat
    assert args.message == ["hello", "world"]
    assert args.no_stream


def test_chat_streams_and_names(cfg, capsys):
    args = cli.build_parser().parse_args(["chat", "Hi!"])
    assert cli.cmd_chat(args, cfg) == 0

    out = capsys.readouterr().out
    assert "Hello" in out
    assert "👋 Greeting" in out

    rows = SQLiteStore(cfg["storage"]["path"]).list_conversations()
    assert rows[0]["name"] == "👋 Greeting"
    assert rows[0]["message_count"] == 2


def test_chat_unknown_backend(cfg, capsys):
    args = cli.build_parser().parse_args(["chat", "Hi!", "--backend", "nope"])
    assert cli.cmd_chat(args, cfg) == 1
    assert "Unknown backend" in capsys.readouterr().out


def test_models(cfg, capsys):
    args = cli.build_parser().parse_args(["models", "--backend", "gpt"])
    assert cli.cmd_models(args, cfg) == 0
    out = capsys.readouterr().out
    assert "echo-1" in out and "echo-2" in out


def test_history_empty(cfg, capsys):
    args = cli.build_parser().parse_args(["history"])
    assert cli.cmd_history(args, cfg) == 0
    assert "No conversations yet." in capsys.readouterr().out


def test_price_writes_runtime_override(cfg):
    args = cli.build_parser().parse_args(["price", "llama3.1", "--input", "0", "--output", "0"])
    assert cli.cmd_price(args, cfg) == 0
    assert config_mod.pricing_overrides()["llama3.1"] == {"input": 0.0, "output": 0.0}
