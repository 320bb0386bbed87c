#!/usr/bin/env python3
"""
relaychat CLI: talk to any configured backend from the terminal.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    chat            ask, say        Send a message and print the answer
    models          ls              List models served by a backend
    history         log             List recent conversations
    price           pricing         Set a per-model price override
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from relaychat import __version__

logger = logging.getLogger(__name__)


def setup_logging(cfg: dict) -> None:
    from relaychat.config import logging_block

    log_cfg = logging_block(cfg)
    level = getattr(logging, str(log_cfg.get("level", "WARNING")).upper(), logging.WARNING)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        from pathlib import Path
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _store(cfg: dict):
    from relaychat.config import storage_path
    from relaychat.storage.sqlite_store import SQLiteStore
    return SQLiteStore(storage_path(cfg))


def _registry(cfg: dict):
    from relaychat.backends.registry import BackendRegistry
    from relaychat.secrets import EnvSecretStore
    return BackendRegistry.from_config(cfg, EnvSecretStore.from_config(cfg))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class _StreamPrinter:
    """Conversation observer that prints only the new tail of the last message."""

    def __init__(self):
        self.message_id = None
        self.printed = ""

    def __call__(self, conversation) -> None:
        last = conversation.last_message
        if last is None or last.own:
            return
        if last.id != self.message_id:
            self.message_id = last.id
            self.printed = ""
        if last.body.startswith(self.printed):
            sys.stdout.write(last.body[len(self.printed):])
        else:
            # Placeholder replaced by the answer
            sys.stdout.write("\n" + last.body)
        sys.stdout.flush()
        self.printed = last.body


async def _chat(args, cfg: dict) -> int:
    from relaychat.config import chat_block, pricing_overrides
    from relaychat.orchestrator import GenerationOrchestrator
    from relaychat.pricing import PricingTable
    from relaychat.settings import DEFAULT_SYSTEM_MESSAGE, GenerationSettings
    from relaychat.storage.models import Conversation

    store = _store(cfg)
    registry = _registry(cfg)
    settings = GenerationSettings.from_config(cfg)
    pricing = PricingTable(pricing_overrides())

    conversation = None
    if args.conversation:
        conversation = store.load_conversation(args.conversation)
        if conversation is None:
            print(f"  ✗  No conversation {args.conversation}")
            return 1
    else:
        backend_id = args.backend
        if not backend_id:
            llms = [c for c in registry.configs if registry.is_llm(c)]
            if not llms:
                print("  ✗  No LLM backend configured")
                return 1
            backend_id = llms[0].id
        cfg_b = registry.get_config(backend_id)
        if cfg_b is None:
            print(f"  ✗  Unknown backend '{backend_id}'")
            return 1
        chat_cfg = chat_block(cfg)
        conversation = Conversation(
            system_message=chat_cfg.get("system_message", DEFAULT_SYSTEM_MESSAGE),
            model=args.model or cfg_b.model,
            backend_id=cfg_b.id,
            temperature=float(chat_cfg.get("temperature", settings.default_temperature)),
        )

    orchestrator = GenerationOrchestrator(registry, store, settings, pricing)
    message = " ".join(args.message)
    conversation.add_user_message(message)

    if args.no_stream:
        result = await orchestrator.generate(message, conversation, args.context)
        if result.content:
            print(result.content)
    else:
        printer = _StreamPrinter()
        conversation.subscribe(printer)
        try:
            result = await orchestrator.generate_stream(message, conversation, args.context)
        finally:
            conversation.unsubscribe(printer)
        print()

    if not result.ok:
        print(f"  ✗  {result.error}")
        return 1

    name = await orchestrator.generate_chat_name(conversation)
    last = conversation.last_message
    print()
    print(f"  💬 {conversation.name or '(unnamed)'}  [{conversation.id}]")
    if last is not None and last.cost_usd is not None:
        print(f"  📊 ~{last.token_count:,} tokens, ${last.cost_usd:.6f}")
    if name:
        logger.debug("Chat named %r", name)
    return 0


def cmd_chat(args, cfg: dict) -> int:
    """Send a message and print the answer."""
    return asyncio.run(_chat(args, cfg))


def cmd_models(args, cfg: dict) -> int:
    """List models served by a backend."""
    from relaychat.errors import BackendError

    registry = _registry(cfg)
    ids = [args.backend] if args.backend else [c.id for c in registry.configs]
    status = 0
    for backend_id in ids:
        try:
            models = asyncio.run(registry.list_models(backend_id))
        except BackendError as e:
            print(f"  ✗  {backend_id}: {e}")
            status = 1
            continue
        print(f"  {backend_id}")
        for i, model in enumerate(models):
            prefix = "└─" if i == len(models) - 1 else "├─"
            print(f"  {prefix} {model}")
    return status


def cmd_history(args, cfg: dict) -> int:
    """List recent conversations."""
    store = _store(cfg)
    rows = store.list_conversations(limit=args.limit)
    if not rows:
        print("  No conversations yet.")
        return 0

    for row in rows:
        last = (row.get("last_message") or "").replace("\n", " ")
        if len(last) > 60:
            last = last[:60] + "..."
        print(f"  {row['id']}  {row['name'] or '(unnamed)'}  [{row['model']}] {row['message_count']} msgs")
        print(f"      {last}")

    stats = store.get_stats()
    print()
    print(f"  📼 Conversations: {stats['conversations']} | Messages: {stats['messages']}")
    print(f"  📊 Tokens: ~{stats['tokens']:,} | Spend: ${stats['cost_usd']:.4f}")
    return 0


def cmd_price(args, cfg: dict) -> int:
    """Set a per-model price override in runtime_config.yaml."""
    from relaychat.config import get_runtime, pricing_overrides
    from relaychat.pricing import PricingTable

    runtime = get_runtime()
    table = PricingTable(pricing_overrides())
    table.set_price(args.model, args.input, args.output)
    if not runtime.set_pricing_overrides(table.overrides):
        print(f"  ✗  Could not write {runtime.path}")
        return 1
    print(
        f"  ✓  {args.model}: ${table.input_price(args.model):.4f} in / "
        f"${table.output_price(args.model):.4f} out per 1M tokens"
    )
    return 0


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name plus aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relaychat",
        description="relaychat: one chat core, many backends.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"relaychat {__version__}",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_chat(p):
        p.add_argument("message", nargs="+", help="Message to send")
        p.add_argument("--conversation", default=None, help="Continue an existing conversation")
        p.add_argument("--backend", "-b", default=None, help="Backend id for a new conversation")
        p.add_argument("--model", "-m", default=None, help="Model override for a new conversation")
        p.add_argument("--no-stream", action="store_true", help="Wait for the full answer")
        p.add_argument("--context", "-n", type=int, default=None, help="History turns to send")

    _add_command(sub, ["chat", "ask", "say"], "Send a message and print the answer", cmd_chat, setup_chat)

    def setup_models(p):
        p.add_argument("--backend", "-b", default=None, help="Only this backend")

    _add_command(sub, ["models", "ls"], "List models served by a backend", cmd_models, setup_models)

    def setup_history(p):
        p.add_argument("--limit", "-n", type=int, default=20, help="How many conversations")

    _add_command(sub, ["history", "log"], "List recent conversations", cmd_history, setup_history)

    def setup_price(p):
        p.add_argument("model", help="Model id")
        p.add_argument("--input", type=float, default=None, help="USD per 1M input tokens")
        p.add_argument("--output", type=float, default=None, help="USD per 1M output tokens")

    _add_command(sub, ["price", "pricing"], "Set a per-model price override", cmd_price, setup_price)

    return parser


def main(argv: list[str] | None = None) -> int:
    from relaychat.config import load_config

    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    try:
        cfg = load_config(args.config)
    except FileNotFoundError as e:
        print(f"  ✗  {e}")
        return 1
    setup_logging(cfg)
    return args.func(args, cfg)


if __name__ == "__main__":
    sys.exit(main())
