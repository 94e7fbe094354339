"""Telegram front-end using python-telegram-bot: whitelist, rate limit, routing modes."""

from __future__ import annotations

import re
import time
from typing import Any

import structlog
from telegram import Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from mate.api_usage import ApiUsageStore
from mate.assistant import Assistant
from mate.llm.providers import ProviderSelector
from mate.orchestrator.base import GENERIC_ERROR_MESSAGE, ExecutionError, RoutingMode
from mate.security.audit import AuditLog
from mate.security.rate_limit import RateLimiter
from mate.security.whitelist import UserWhitelist

logger = structlog.get_logger()

MAX_TELEGRAM_MESSAGE_LEN = 3900
UNAUTHORIZED_MESSAGE = "You are not authorized to use this bot."
RATE_LIMITED_MESSAGE = "You are being rate limited. Please wait before sending more messages."
UNSUPPORTED_MESSAGE = "Only text messages are supported. Please send your request as text."

_MARKDOWN_RULES: tuple[tuple[re.Pattern[str], Any], ...] = (
    (re.compile(r"```(?:[\w+-]*\n)?([\s\S]*?)```"), lambda m: m.group(1).strip()),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"__([^_]+)__"), r"\1"),
    (re.compile(r"\*([^*]+)\*"), r"\1"),
    (re.compile(r"(?<!\w)_([^_]+)_(?!\w)"), r"\1"),
    (re.compile(r"~~([^~]+)~~"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r" {2,}"), " "),
)


def strip_markdown(text: str) -> str:
    """Plain text for Telegram; model replies are not sent with a parse mode."""
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def _truncate(text: str) -> str:
    if len(text) <= MAX_TELEGRAM_MESSAGE_LEN:
        return text
    return text[: MAX_TELEGRAM_MESSAGE_LEN - 3] + "..."


def _user_id(update: Update) -> str | None:
    user = update.effective_user
    return str(user.id) if user is not None else None


class TelegramBot:
    def __init__(
        self,
        *,
        token: str | None,
        bot_name: str,
        assistant: Assistant,
        whitelist: UserWhitelist,
        rate_limiter: RateLimiter,
        audit: AuditLog,
        usage: ApiUsageStore | None = None,
        providers: ProviderSelector | None = None,
    ) -> None:
        self._token = token
        self._bot_name = bot_name
        self._assistant = assistant
        self._whitelist = whitelist
        self._limiter = rate_limiter
        self._audit = audit
        self._usage = usage
        self._providers = providers
        self._started_at = 0.0
        self._app: Application | None = None

    def build_application(self) -> Application:
        if not self._token:
            raise RuntimeError("Telegram bot token is not configured")
        self._app = (
            Application.builder()
            .token(self._token)
            .post_init(self._post_init)
            .build()
        )
        self._setup_handlers(self._app)
        return self._app

    def start(self) -> bool:
        """Run polling in the main thread until SIGINT/SIGTERM; False when no token."""
        if not self._token:
            logger.error("telegram_token_missing")
            return False
        app = self.build_application()
        self._started_at = time.time()
        self._audit.record("bot_started", None, {"allowed_users": self._whitelist.size})
        logger.info("telegram_bot_starting", bot_name=self._bot_name, allowed_users=self._whitelist.size)
        app.run_polling(drop_pending_updates=False, allowed_updates=Update.ALL_TYPES)
        return True

    def stop(self) -> None:
        if self._app is not None:
            self._audit.record("bot_stopped", None, {})
            logger.info("telegram_bot_stopped")
        self._app = None

    async def _post_init(self, app: Application) -> None:
        await self.notify_startup(app)

    async def notify_startup(self, app: Application) -> int:
        sent = 0
        for user_id in self._whitelist.user_ids():
            try:
                await app.bot.send_message(chat_id=int(user_id), text=f"{self._bot_name} is online.")
                sent += 1
            except TelegramError as exc:
                logger.warning("startup_notification_failed", user_id=user_id, error=str(exc))
        return sent

    def _setup_handlers(self, app: Application) -> None:
        app.add_handler(CommandHandler("start", self._cmd_start))
        app.add_handler(CommandHandler("flow", self._cmd_flow))
        app.add_handler(CommandHandler("simple", self._cmd_simple))
        app.add_handler(CommandHandler("status", self._cmd_status))
        app.add_handler(CommandHandler("clear", self._cmd_clear))
        app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_text))
        app.add_handler(MessageHandler(~filters.TEXT & ~filters.COMMAND, self._handle_unsupported))
        app.add_error_handler(self._on_error)

    async def _reply_text(self, update: Update, text: str) -> None:
        if update.effective_message is None:
            return
        await update.effective_message.reply_text(_truncate(text))

    async def _guard(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> str | None:
        """Auth, then rate limit, then inbound logging. Returns the user id when allowed."""
        user_id = _user_id(update)
        if user_id is None or not self._whitelist.is_allowed(user_id):
            logger.warning("unauthorized_access", user_id=user_id)
            self._audit.record("unauthorized_access", user_id, {})
            await self._reply_text(update, UNAUTHORIZED_MESSAGE)
            return None
        if not self._limiter.check_and_consume(user_id):
            logger.warning("rate_limit_exceeded", user_id=user_id)
            self._audit.record("rate_limit_exceeded", user_id, {})
            await self._reply_text(update, RATE_LIMITED_MESSAGE)
            return None
        message = update.effective_message
        text = (message.text or "") if message is not None else ""
        logger.info(
            "message_received",
            user_id=user_id,
            is_command=text.startswith("/"),
            length=len(text),
        )
        return user_id

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._guard(update, context)
        if user_id is None:
            return
        msg = (
            f"Hi! I'm {self._bot_name}, your personal assistant.\n\n"
            "Commands:\n"
            "/simple - Fast answers (default)\n"
            "/flow - Deep reasoning for complex, multi-step tasks\n"
            "/status - Show bot status\n"
            "/clear - Clear conversation history"
        )
        await self._reply_text(update, msg)

    async def _set_mode(self, update: Update, context: ContextTypes.DEFAULT_TYPE, mode: RoutingMode) -> None:
        user_id = await self._guard(update, context)
        if user_id is None:
            return
        self._assistant.set_mode(user_id, mode)
        self._audit.record("mode_changed", user_id, {"mode": mode.value})
        if mode == RoutingMode.FLOW:
            await self._reply_text(update, "Flow mode on: deep reasoning for complex tasks. Send /simple to go back.")
        else:
            await self._reply_text(update, "Simple mode on: fast answers.")

    async def _cmd_flow(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._set_mode(update, context, RoutingMode.FLOW)

    async def _cmd_simple(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._set_mode(update, context, RoutingMode.SIMPLE)

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._guard(update, context)
        if user_id is None:
            return
        lines = [
            f"{self._bot_name} status",
            f"  Mode: {self._assistant.mode_of(user_id).value}",
            f"  Messages: {self._assistant.history_size(user_id)}",
            f"  Uptime: {int(time.time() - self._started_at) if self._started_at else 0}s",
            f"  Active rate limit buckets: {self._limiter.size()}",
        ]
        if self._providers is not None:
            selection = self._providers.select()
            thinking = "on" if selection.thinking else "off"
            lines.append(f"  Provider: {selection.name} ({selection.model}, thinking {thinking})")
        if self._usage is not None:
            summary = self._usage.summary(user_id=user_id)
            lines.append(f"  LLM calls: {summary['total_calls']}, tokens: {summary['total_tokens']}")
        await self._reply_text(update, "\n".join(lines))

    async def _cmd_clear(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._guard(update, context)
        if user_id is None:
            return
        self._assistant.clear_history(user_id)
        self._audit.record("history_cleared", user_id, {})
        await self._reply_text(update, "Conversation history cleared.")

    async def _handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._guard(update, context)
        if user_id is None:
            return
        text = (update.effective_message.text or "").strip()
        if not text:
            return
        try:
            reply = await self._assistant.handle(user_id, text)
        except ExecutionError as exc:
            await self._reply_text(update, str(exc))
            return
        except Exception as exc:
            logger.error("message_handling_failed", user_id=user_id, error_type=type(exc).__name__, error=str(exc))
            await self._reply_text(update, GENERIC_ERROR_MESSAGE)
            return
        body = strip_markdown(reply.text)
        if reply.hint:
            body = f"{body}\n\n{reply.hint}"
        await self._reply_text(update, body)

    async def _handle_unsupported(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = await self._guard(update, context)
        if user_id is None:
            return
        await self._reply_text(update, UNSUPPORTED_MESSAGE)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("telegram_handler_error", error=str(context.error), error_type=type(context.error).__name__)
