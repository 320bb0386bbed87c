"""
Tests for config loading, runtime overrides and generation settings.
Run with: pytest tests/test_config.py
"""

import pytest

from relaychat import config as config_mod
from relaychat.secrets import DictSecretStore, EnvSecretStore, env_var_name
from relaychat.settings import FIXED_TEMPERATURE, GenerationSettings


@pytest.fixture
def runtime(tmp_path, monkeypatch):
    overrides = config_mod.RuntimeOverrides(tmp_path / "runtime_config.yaml")
    monkeypatch.setattr(config_mod, "_runtime", overrides)
    return overrides


def test_load_config_resolves_env(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-from-env")
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(
        "backends:\n"
        "  - id: gpt\n"
        "    type: chatgpt\n"
        "    url: http://gpt\n"
        "    api_key: ${TEST_OPENAI_KEY}\n"
    )
    try:
        cfg = config_mod.load_config(cfg_file)
        assert cfg["backends"][0]["api_key"] == "sk-from-env"
        assert config_mod.get_config() is cfg
    finally:
        config_mod.reset_config()


def test_load_config_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        config_mod.load_config(tmp_path / "nope.yaml")


def test_load_config_rejects_non_mapping(tmp_path):
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        config_mod.load_config(cfg_file)
    config_mod.reset_config()


def test_expand_env_fallback(monkeypatch):
    monkeypatch.delenv("RELAYCHAT_UNSET_VAR", raising=False)
    monkeypatch.setenv("RELAYCHAT_SET_VAR", "set")
    tree = {"a": ["${RELAYCHAT_UNSET_VAR:-local}", "${RELAYCHAT_SET_VAR:-unused}"], "b": 3}
    assert config_mod.expand_env(tree) == {"a": ["local", "set"], "b": 3}
    assert config_mod.expand_env("${RELAYCHAT_UNSET_VAR}") == ""


# ---------------------------------------------------------------------------
# Block accessors
# ---------------------------------------------------------------------------

def test_blocks_missing_or_null_read_empty():
    cfg = {"generation": None, "retry": "bogus"}
    assert config_mod.generation_block(cfg) == {}
    assert config_mod.retry_block(cfg) == {}
    assert config_mod.chat_block(cfg) == {}
    assert config_mod.logging_block(cfg) == {}
    assert config_mod.backend_entries(cfg) == []
    assert config_mod.storage_path(cfg) == config_mod.DEFAULT_DB_PATH


def test_backend_entries_skips_non_mappings():
    cfg = {"backends": [{"id": "gpt"}, "stray", None, {"id": "ollama"}]}
    assert [b["id"] for b in config_mod.backend_entries(cfg)] == ["gpt", "ollama"]


def test_storage_path_from_block():
    assert config_mod.storage_path({"storage": {"path": "/tmp/x.db"}}) == "/tmp/x.db"


# ---------------------------------------------------------------------------
# Runtime overrides
# ---------------------------------------------------------------------------

def test_runtime_missing_file(runtime):
    assert runtime.load() == {}
    assert config_mod.pricing_overrides() == {}


def test_runtime_set_round_trip(runtime):
    assert runtime.set("pricing", {"m": {"input": 1.5}})
    assert runtime.load()["pricing"] == {"m": {"input": 1.5}}
    assert config_mod.get_runtime() is runtime


def test_runtime_keeps_last_good_on_parse_error(runtime):
    runtime.set("pricing", {"m": {"input": 1.0}})
    assert runtime.pricing_overrides()["m"]["input"] == 1.0

    runtime.path.write_text("runtime: [unclosed\n")
    runtime._mtime = None
    assert runtime.pricing_overrides()["m"]["input"] == 1.0


def test_pricing_overrides_normalised(runtime):
    runtime.path.write_text(
        "runtime:\n"
        "  pricing:\n"
        "    llama3.1: {input: 0, output: '0.5'}\n"
        "    gpt-4o: {output: 12}\n"
        "    broken: 7\n"
        "    garbage: {input: lots}\n"
    )
    assert config_mod.pricing_overrides() == {
        "llama3.1": {"input": 0.0, "output": 0.5},
        "gpt-4o": {"output": 12.0},
    }


def test_pricing_overrides_not_a_mapping(runtime):
    runtime.path.write_text("runtime:\n  pricing: [1, 2]\n")
    assert runtime.pricing_overrides() == {}


def test_set_pricing_overrides_keeps_other_keys(runtime):
    runtime.set("theme", "dark")
    assert runtime.set_pricing_overrides({"m": {"input": 2.0}})
    data = runtime.load()
    assert data["theme"] == "dark"
    assert data["pricing"] == {"m": {"input": 2.0}}


# ---------------------------------------------------------------------------
# GenerationSettings
# ---------------------------------------------------------------------------

def test_settings_defaults():
    s = GenerationSettings.from_config({})
    assert s.persist_attempts == 1
    assert s.name_persist_attempts == 3
    assert s.name_context_size == 3
    assert s.name_temperature == 0.6
    assert s.search_triggers is None
    assert "o1" in s.reasoning_models


def test_settings_from_config_block():
    s = GenerationSettings.from_config({
        "generation": {"stream_update_interval": 0.5, "reasoning_models": ["r1"], "search_triggers": ["ddg"]},
    })
    assert s.stream_update_interval == 0.5
    assert s.reasoning_models == frozenset({"r1"})
    assert s.search_triggers == ("ddg",)


def test_effective_temperature():
    s = GenerationSettings()
    assert s.effective_temperature("o3-mini", 0.2) == FIXED_TEMPERATURE
    assert s.effective_temperature("gpt-4o", 0.74) == 0.7
    assert s.is_no_system_role_model("o1")
    assert not s.is_fixed_temperature_model("gpt-4o")


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------

def test_env_var_name():
    assert env_var_name("open-router") == "RELAYCHAT_OPEN_ROUTER_API_KEY"


def test_env_secret_store_prefers_config(monkeypatch):
    monkeypatch.setenv("RELAYCHAT_GPT_API_KEY", "from-env")
    monkeypatch.setenv("RELAYCHAT_CLAUDE_API_KEY", "claude-env")
    store = EnvSecretStore.from_config({"backends": [{"id": "gpt", "api_key": "from-config"}]})
    assert store.get("gpt") == "from-config"
    assert store.get("claude") == "claude-env"
    assert store.get("missing") is None


def test_dict_secret_store():
    store = DictSecretStore()
    store.set("gpt", "k")
    assert store.get("gpt") == "k"
