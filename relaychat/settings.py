"""
Generation settings: the explicit configuration value threaded into the
orchestrator. Built from the `generation:` block of config.yaml; every
field falls back to the defaults below.

    generation:
      stream_update_interval: 0.2   # seconds between mid-stream flushes
      persist_attempts: 1
      persist_backoff: 0.1
      name_persist_attempts: 3
      name_context_size: 3
      name_temperature: 0.6
      default_context_size: 10
      default_temperature: 0.7
      reasoning_models: [o1, o1-mini, ...]
      search_triggers: [...]        # optional, replaces the built-in list
"""

from __future__ import annotations

from dataclasses import dataclass, field

from relaychat.config import generation_block

DEFAULT_SYSTEM_MESSAGE = (
    "You are Large Language Model. Answer as concisely as possible. "
    "Your answers should be informative, helpful and engaging."
)

CHAT_NAME_INSTRUCTION = (
    "Return a short chat name as summary for this chat based on the previous message "
    "content and system message if it's not default. Start chat name with one appropriate "
    "emoji. Don't answer to my message, just generate a name."
)

# Models that reject a system-role message and only accept temperature 1
REASONING_MODELS = (
    "o1",
    "o1-preview",
    "o1-mini",
    "o3-mini",
    "o3-mini-high",
    "o3-mini-2025-01-31",
    "o1-preview-2024-09-12",
    "o1-mini-2024-09-12",
    "o1-2024-12-17",
)

FIXED_TEMPERATURE = 1.0


@dataclass(frozen=True)
class GenerationSettings:
    stream_update_interval: float = 0.2
    persist_attempts: int = 1
    persist_backoff: float = 0.1
    name_persist_attempts: int = 3
    name_context_size: int = 3
    name_temperature: float = 0.6
    default_context_size: int = 10
    default_temperature: float = 0.7
    reasoning_models: frozenset[str] = field(default_factory=lambda: frozenset(REASONING_MODELS))
    search_triggers: tuple[str, ...] | None = None

    @classmethod
    def from_config(cls, cfg: dict) -> "GenerationSettings":
        g = generation_block(cfg)
        defaults = cls()
        triggers = g.get("search_triggers")
        return cls(
            stream_update_interval=float(g.get("stream_update_interval", defaults.stream_update_interval)),
            persist_attempts=int(g.get("persist_attempts", defaults.persist_attempts)),
            persist_backoff=float(g.get("persist_backoff", defaults.persist_backoff)),
            name_persist_attempts=int(g.get("name_persist_attempts", defaults.name_persist_attempts)),
            name_context_size=int(g.get("name_context_size", defaults.name_context_size)),
            name_temperature=float(g.get("name_temperature", defaults.name_temperature)),
            default_context_size=int(g.get("default_context_size", defaults.default_context_size)),
            default_temperature=float(g.get("default_temperature", defaults.default_temperature)),
            reasoning_models=frozenset(g.get("reasoning_models") or REASONING_MODELS),
            search_triggers=tuple(triggers) if triggers else None,
        )

    def is_no_system_role_model(self, model: str) -> bool:
        return model in self.reasoning_models

    def is_fixed_temperature_model(self, model: str) -> bool:
        return model in self.reasoning_models

    def effective_temperature(self, model: str, temperature: float) -> float:
        """Temperature actually sent to the backend."""
        if self.is_fixed_temperature_model(model):
            return FIXED_TEMPERATURE
        return round(float(temperature), 1)
