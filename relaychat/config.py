"""
relaychat configuration.

Two YAML files:

    config.yaml          backends, chat defaults, generation, retry, storage, logging
    runtime_config.yaml  user overrides written by `relaychat price`; re-read
                         whenever its mtime changes, no restart needed

String values may reference the environment as ${VAR} or ${VAR:-fallback}.
A .env file in the working directory is loaded before anything is resolved.

Modules never index the raw dict themselves; they go through the block
accessors below so a missing or null block always reads as empty.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(os.environ.get("RELAYCHAT_CONFIG", "config.yaml"))
DEFAULT_RUNTIME_PATH = Path(os.environ.get("RELAYCHAT_RUNTIME_CONFIG", "runtime_config.yaml"))
DEFAULT_DB_PATH = "./data/relaychat.db"

PRICE_DIRECTIONS = ("input", "output")

_ENV_REF = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")

_config: dict | None = None
_runtime: "RuntimeOverrides | None" = None


def expand_env(value):
    """Resolve ${VAR} / ${VAR:-fallback} in every string of a parsed YAML tree."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def _read_mapping(path: Path) -> dict:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


# ---------------------------------------------------------------------------
# config.yaml
# ---------------------------------------------------------------------------

def load_config(path: str | Path | None = None) -> dict:
    """Read config.yaml (or `path`) and cache the env-resolved result."""
    global _config
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")
    _config = expand_env(_read_mapping(config_path))
    logger.debug("Loaded config from %s", config_path)
    return _config


def get_config() -> dict:
    if _config is None:
        return load_config()
    return _config


def reset_config() -> None:
    global _config
    _config = None


def _block(cfg: dict, key: str) -> dict:
    block = cfg.get(key)
    return block if isinstance(block, dict) else {}


def backend_entries(cfg: dict) -> list[dict]:
    """The `backends:` list, minus anything that is not a mapping."""
    entries = cfg.get("backends") or []
    return [b for b in entries if isinstance(b, dict)]


def chat_block(cfg: dict) -> dict:
    return _block(cfg, "chat")


def generation_block(cfg: dict) -> dict:
    return _block(cfg, "generation")


def retry_block(cfg: dict) -> dict:
    return _block(cfg, "retry")


def logging_block(cfg: dict) -> dict:
    return _block(cfg, "logging")


def storage_path(cfg: dict) -> str:
    return _block(cfg, "storage").get("path") or DEFAULT_DB_PATH


# ---------------------------------------------------------------------------
# runtime_config.yaml
# ---------------------------------------------------------------------------

class RuntimeOverrides:
    """
    The `runtime:` block of runtime_config.yaml.
    A broken file never wins over the last good read.
    """

    def __init__(self, path: str | Path = DEFAULT_RUNTIME_PATH):
        self.path = Path(path)
        self._data: dict = {}
        self._mtime: float | None = None

    def load(self) -> dict:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            self._data, self._mtime = {}, None
            return self._data
        except OSError as e:
            logger.warning("Cannot stat %s: %s", self.path, e)
            return self._data

        if mtime == self._mtime:
            return self._data

        try:
            runtime = _read_mapping(self.path).get("runtime") or {}
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.warning("Ignoring unreadable %s: %s", self.path, e)
            return self._data

        self._data = runtime if isinstance(runtime, dict) else {}
        self._mtime = mtime
        return self._data

    def set(self, key: str, value) -> bool:
        """Write one key under `runtime:`. False if the file cannot be written."""
        try:
            data = _read_mapping(self.path) if self.path.exists() else {}
            if not isinstance(data.get("runtime"), dict):
                data["runtime"] = {}
            data["runtime"][key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.error("Could not write %s to %s: %s", key, self.path, e)
            return False

        self._mtime = None
        return True

    def pricing_overrides(self) -> dict[str, dict[str, float]]:
        """Per-model USD-per-1M prices; malformed entries are skipped."""
        raw = self.load().get("pricing") or {}
        if not isinstance(raw, dict):
            logger.warning("runtime.pricing in %s is not a mapping, ignoring it", self.path)
            return {}

        overrides: dict[str, dict[str, float]] = {}
        for model, prices in raw.items():
            if not isinstance(prices, dict):
                logger.warning("Ignoring price override for %s: %r", model, prices)
                continue
            try:
                overrides[str(model)] = {
                    d: float(prices[d]) for d in PRICE_DIRECTIONS if prices.get(d) is not None
                }
            except (TypeError, ValueError) as e:
                logger.warning("Ignoring price override for %s: %s", model, e)
        return overrides

    def set_pricing_overrides(self, overrides: dict[str, dict[str, float]]) -> bool:
        return self.set("pricing", overrides)


def get_runtime() -> RuntimeOverrides:
    global _runtime
    if _runtime is None:
        _runtime = RuntimeOverrides()
    return _runtime


def pricing_overrides() -> dict[str, dict[str, float]]:
    return get_runtime().pricing_overrides()
