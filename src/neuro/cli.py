"""Command-line administration for Neuro.

Provides subcommands for seeding the account pool, inspecting a
subject's context usage, forcing a compression pass, and moving memory
between installations.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from .accounts import AccountPool, StateStore
from .assistant import Assistant
from .config import Config, accounts_from_env, config_from_env
from .errors import NeuroError
from .logging import configure_logger
from .memory import export_memory, import_memory


def _get_config() -> Config:
    """Load configuration and point the event log at its directory."""
    config = config_from_env()
    if config.log_dir is not None:
        configure_logger(config.log_dir)
    return config


def _get_pool(config: Config) -> AccountPool:
    assert config.state_path is not None
    state = StateStore(config.state_path)
    state.init_db()
    return AccountPool(state)


def _get_assistant(config: Config) -> Assistant:
    return Assistant.from_config(config)


def _format_until(until: int | None, now: int) -> str:
    if until is None or until <= now:
        return "\033[32mavailable\033[0m"
    return f"\033[33mrate limited ({(until - now) / 1000:.0f}s left)\033[0m"


def cmd_accounts_init(args: argparse.Namespace) -> int:
    """Seed the account pool from the environment."""
    raw = accounts_from_env()
    if not raw:
        print("Error: No accounts configured. Set GOOGLE_ACCOUNTS or GOOGLE_REFRESH_TOKEN.")
        return 1

    pool = _get_pool(_get_config())
    accounts = pool.init_from_dicts(raw)
    if not accounts:
        print("Error: No valid accounts (each needs email and refreshToken).")
        return 1

    print(f"Initialized {len(accounts)} account(s)")
    return 0


def cmd_accounts_list(args: argparse.Namespace) -> int:
    """List pooled accounts and their rate-limit status."""
    pool = _get_pool(_get_config())
    accounts = pool.list_accounts()

    if not accounts:
        print("No accounts found.")
        return 0

    now = pool.clock()
    print(f"\n{'Account':<36} {'Project':<24} Status")
    print("-" * 80)
    for account in accounts:
        project = account.project_id or "-"
        print(f"{account.identity:<36} {project:<24} {_format_until(account.unavailable_until, now)}")

    print(f"\nTotal: {len(accounts)} account(s)")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Show context usage for a subject."""
    config = _get_config()
    assistant = _get_assistant(config)
    stats = assistant.context_stats(args.subject)
    memory = assistant.store.list_memory_items(args.subject)

    print(f"\nSubject: {args.subject}")
    print("-" * 40)
    print(f"Messages: {stats.message_count}")
    print(f"History tokens: ~{stats.history_tokens:,}")
    print(f"System prompt tokens: ~{stats.system_tokens:,}")
    print(f"Context: ~{stats.tokens:,} / {config.max_context_tokens:,} ({stats.percent}%)")
    print(f"Compression threshold: {config.compress_threshold:,}")
    print(
        f"Memory: {len(memory.facts)} facts, "
        f"{len(memory.preferences)} preferences, {len(memory.goals)} goals"
    )
    return 0


def cmd_compress(args: argparse.Namespace) -> int:
    """Run a compression check for a subject."""
    assistant = _get_assistant(_get_config())
    try:
        result = asyncio.run(assistant.engine.maybe_compress(args.subject))
    except NeuroError as e:
        print(f"Error: {e}")
        return 1

    if not result.compressed:
        print(f"Nothing to compress (~{result.tokens_before:,} tokens).")
        return 0

    suffix = " (fallback summary)" if result.fallback else ""
    print(
        f"Compressed {result.messages_compressed} messages{suffix}: "
        f"~{result.tokens_before:,} -> ~{result.tokens_after:,} tokens, "
        f"{result.facts_extracted} memory item(s) extracted"
    )
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export a subject's memory as JSON."""
    assistant = _get_assistant(_get_config())
    data = export_memory(assistant.store, args.subject)
    text = json.dumps(data, ensure_ascii=False, indent=2)

    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"Exported {len(data['history'])} message(s) to {args.output}")
    else:
        print(text)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import a subject's memory from a JSON export."""
    path = Path(args.file)
    if not path.exists():
        print(f"Error: File '{path}' not found.")
        return 1

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in '{path}': {e}")
        return 1
    if not isinstance(data, dict):
        print("Error: Export must be a JSON object.")
        return 1

    config = _get_config()
    assistant = _get_assistant(config)
    counts = import_memory(
        assistant.store, args.subject, data, max_history=config.max_history_messages
    )
    print(
        f"Imported {counts['messages']} message(s), {counts['items']} memory item(s)"
        + (", insights" if counts["insights"] else "")
    )
    return 0


def cmd_bot(args: argparse.Namespace) -> int:
    """Run the Telegram bot."""
    from .telegram import TelegramBot

    bot = TelegramBot(config=_get_config())
    bot.run()
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the Neuro CLI."""
    parser = argparse.ArgumentParser(
        prog="neuro",
        description="Neuro assistant administration",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    # accounts command
    accounts_parser = subparsers.add_parser("accounts", help="Manage upstream accounts")
    accounts_sub = accounts_parser.add_subparsers(dest="accounts_command")
    accounts_sub.add_parser("init", help="Load accounts from the environment")
    accounts_sub.add_parser("list", help="List accounts and rate-limit status")

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Show context usage")
    stats_parser.add_argument("subject", help="Subject (chat user) id")

    # compress command
    compress_parser = subparsers.add_parser("compress", help="Compress history if over threshold")
    compress_parser.add_argument("subject", help="Subject (chat user) id")

    # export command
    export_parser = subparsers.add_parser("export", help="Export memory as JSON")
    export_parser.add_argument("subject", help="Subject (chat user) id")
    export_parser.add_argument("-o", "--output", help="Write to file instead of stdout")

    # import command
    import_parser = subparsers.add_parser("import", help="Import memory from JSON")
    import_parser.add_argument("subject", help="Subject (chat user) id")
    import_parser.add_argument("file", help="Path to a JSON export")

    # bot command
    subparsers.add_parser("bot", help="Run the Telegram bot")

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "accounts":
        handler = {
            "init": cmd_accounts_init,
            "list": cmd_accounts_list,
        }.get(args.accounts_command)
    else:
        handler = {
            "stats": cmd_stats,
            "compress": cmd_compress,
            "export": cmd_export,
            "import": cmd_import,
            "bot": cmd_bot,
        }.get(args.command)

    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(run_cli())
