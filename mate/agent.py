"""Mate runtime entry point."""

from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path

import structlog

from mate.api_usage import ApiUsageStore
from mate.assistant import Assistant
from mate.config import Settings, SettingsError, ensure_data_directories, load_settings
from mate.llm.providers import ProviderSelector
from mate.logging_config import setup_logging
from mate.memory.conversation import ConversationStore
from mate.memory.conversation_log import ConversationLog
from mate.memory.engine import MemoryEngine
from mate.memory.longterm import LongTermMemoryStore
from mate.orchestrator.flow import FlowExecutor
from mate.orchestrator.router import ModeRegistry, Router
from mate.orchestrator.simple import SimpleExecutor
from mate.security.audit import AuditLog
from mate.security.rate_limit import RateLimiter
from mate.security.whitelist import UserWhitelist
from mate.telegram_bot import TelegramBot

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Mate Telegram assistant")
    parser.add_argument("--config", default=None, help="Optional YAML config file")
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Storage root override (defaults to DATA_DIR or ./data)",
    )
    return parser


def build_services(settings: Settings, engine: MemoryEngine) -> tuple[TelegramBot, RateLimiter]:
    conn = engine.connect()
    audit = AuditLog(conn)
    usage = ApiUsageStore(conn)
    conversations = ConversationStore(settings.conversation_max_messages, log=ConversationLog(conn))
    memory = LongTermMemoryStore(settings.memory_root, recent_notes_limit=settings.recent_notes_limit)
    providers = ProviderSelector(settings)

    simple = SimpleExecutor(
        conversations=conversations,
        memory=memory,
        runner=settings.simple_runner,
        cli_command=settings.cli_command,
        timeout=settings.simple_timeout_seconds,
        max_output_bytes=settings.simple_max_output_bytes,
        history_limit=settings.simple_history_limit,
        providers=providers,
        usage=usage,
    )
    flow = FlowExecutor(
        conversations=conversations,
        memory=memory,
        providers=providers,
        simple=simple,
        fallback_to_simple=settings.flow_fallback_to_simple,
        timeout=settings.flow_timeout_seconds,
        max_tokens=settings.flow_max_tokens,
        thinking_budget=settings.flow_thinking_budget,
        history_limit=settings.flow_history_limit,
        usage=usage,
        audit=audit,
    )
    assistant = Assistant(
        Router(simple, flow, memory),
        ModeRegistry(),
        conversations,
        memory,
    )
    limiter = RateLimiter(
        settings.rate_limit_capacity,
        settings.rate_limit_refill_rate,
        idle_seconds=settings.rate_limit_idle_seconds,
        cleanup_interval=settings.rate_limit_cleanup_interval,
    )
    bot = TelegramBot(
        token=settings.telegram_token,
        bot_name=settings.bot_name,
        assistant=assistant,
        whitelist=UserWhitelist(settings.allowed_users),
        rate_limiter=limiter,
        audit=audit,
        usage=usage,
        providers=providers,
    )
    return bot, limiter


def main() -> int:
    args = build_parser().parse_args()
    try:
        settings = load_settings(Path(args.config) if args.config else None)
    except SettingsError as exc:
        setup_logging()
        logger.error("invalid_configuration", error=str(exc))
        return 2
    if args.data_dir:
        settings = replace(settings, data_dir=Path(args.data_dir).expanduser())

    setup_logging(json_mode=settings.log_json, level=settings.log_level)
    ensure_data_directories(settings)
    if not settings.allowed_users:
        logger.warning("whitelist_empty")

    engine = MemoryEngine(settings.db_path)
    engine.initialize()
    bot, limiter = build_services(settings, engine)

    exit_code = 0
    try:
        # run_polling installs its own SIGINT/SIGTERM handlers
        if not bot.start():
            exit_code = 1
    finally:
        bot.stop()
        limiter.destroy()
        engine.close()
        logger.info("mate_shutdown")
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
