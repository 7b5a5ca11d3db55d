"""Telegram bot integration for Neuro."""

import asyncio
import io
import json
import logging
import re
from datetime import date
from html import escape

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..assistant import Assistant, TurnResult
from ..config import Config, config_from_env
from ..errors import format_error
from ..logging import get_logger
from ..memory import GroupedMemory, MemoryKind, Role, export_memory, import_memory

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096
CHUNK_LENGTH = 4000

WELCOME_MESSAGE = """<b>Команды:</b>
/stats — статистика и контекст
/memory — долгосрочная память
/sources — источники последнего ответа
/search — поиск в интернете
/export — экспорт данных
/insights — установить контекст о себе
/clear — очистить историю

<b>Память:</b>
/fact — добавить факт
/pref — добавить предпочтение
/goal — добавить цель"""

PRIVATE_MESSAGE = "Извини, этот бот приватный."
BUSY_MESSAGE = "⏳ Я ещё отвечаю на предыдущее сообщение. Подожди немного."

MEMORY_COMMANDS = {
    "fact": (MemoryKind.FACT, "✅ Факт сохранён в долгосрочную память!"),
    "pref": (MemoryKind.PREFERENCE, "✅ Предпочтение сохранено!"),
    "goal": (MemoryKind.GOAL, "✅ Цель сохранена!"),
}

CLEAR_CONFIRM = "clear_confirm"
CLEAR_CANCEL = "clear_cancel"


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate message to fit Telegram limits."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 20] + "\n... [обрезано]"


def split_message(text: str, limit: int = CHUNK_LENGTH) -> list[str]:
    """Split a long reply into chunks that each fit one Telegram message."""
    if not text:
        return [""]
    return [text[i : i + limit] for i in range(0, len(text), limit)]


def strip_tags(text: str) -> str:
    """Drop HTML tags so the text can be sent without a parse mode."""
    return re.sub(r"<[^>]+>", "", text)


def progress_bar(percent: int, width: int = 10) -> str:
    """Render a percentage as a block bar."""
    filled = round(percent / (100 / width))
    return "█" * filled + "░" * (width - filled)


def format_memory(memory: GroupedMemory) -> str:
    """Format long-term memory for the /memory command."""
    if memory.is_empty():
        return (
            "<b>🧠 Долгосрочная память:</b>\n\n"
            "Пока пусто. Память заполняется автоматически из наших разговоров.\n\n"
            "Ты также можешь добавить вручную:\n"
            "<code>/fact твой факт</code>\n"
            "<code>/pref твоё предпочтение</code>\n"
            "<code>/goal твоя цель</code>"
        )

    sections = []
    for title, items in (
        ("Факты", memory.facts),
        ("Предпочтения", memory.preferences),
        ("Цели", memory.goals),
    ):
        if items:
            lines = "\n".join(f"{i}. {escape(item)}" for i, item in enumerate(items, 1))
            sections.append(f"<b>{title}:</b>\n{lines}")

    body = "\n\n".join(sections)
    return f"<b>🧠 Долгосрочная память:</b>\n\n{body}\n\nОчистить: /clearmemory"


def format_turn(result: TurnResult) -> str:
    """Append a compression note to the reply when history was compressed."""
    text = result.reply
    compression = result.compression
    if compression.compressed:
        note = f"~{round(compression.tokens_freed / 1000)}K токенов освобождено"
        if compression.facts_extracted:
            note += f", {compression.facts_extracted} фактов сохранено в память"
        text += f"\n\n<i>📚 Контекст сжат ({note})</i>"
    return text


class TelegramBot:
    """Telegram bot for Neuro."""

    def __init__(
        self,
        token: str | None = None,
        assistant: Assistant | None = None,
        config: Config | None = None,
    ) -> None:
        self.config = config or config_from_env()
        self.token = token or self.config.telegram_token
        if not self.token:
            raise ValueError("TELEGRAM_TOKEN not set")

        self.assistant = assistant or Assistant.from_config(self.config)
        self.json_logger = get_logger()
        self._locks: dict[str, asyncio.Lock] = {}
        self._app: Application | None = None

    def _get_subject(self, update: Update) -> str:
        """Get the subject id (the Telegram user) as a string."""
        assert update.effective_user is not None
        return str(update.effective_user.id)

    def _is_allowed(self, update: Update) -> bool:
        admin = self.config.admin_user_id
        return admin is None or (
            update.effective_user is not None and update.effective_user.id == admin
        )

    async def _reply(self, update: Update, text: str, **kwargs) -> None:
        assert update.message is not None
        await update.message.reply_text(
            truncate_message(text), parse_mode=ParseMode.HTML, **kwargs
        )

    async def _guard(self, update: Update) -> bool:
        """Answer non-admin users with a fixed notice. Returns True if allowed."""
        if self._is_allowed(update):
            return True
        await self._reply(update, PRIVATE_MESSAGE)
        return False

    async def _handle_start(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /start command."""
        if not await self._guard(update):
            return
        self.json_logger.log("telegram_start", subject=self._get_subject(update))
        await self._reply(update, WELCOME_MESSAGE)

    async def _handle_stats(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /stats command."""
        if not await self._guard(update):
            return
        subject = self._get_subject(update)
        store = self.assistant.store

        stats = self.assistant.context_stats(subject)
        history = store.list_messages(subject)
        memory = store.list_memory_items(subject)
        summaries = store.list_summaries(subject)
        user_count = sum(1 for m in history if m.role is Role.USER)
        insights = store.get_settings(subject)
        limit_k = self.config.max_context_tokens // 1000

        await self._reply(
            update,
            "📊 Статистика:\n"
            f"• Сообщений: {stats.message_count} "
            f"(👤 {user_count} / 🤖 {stats.message_count - user_count})\n"
            f"• Сжатий: {len(summaries)}\n\n"
            "🧠 Память:\n"
            f"• Факты: {len(memory.facts)}\n"
            f"• Предпочтения: {len(memory.preferences)}\n"
            f"• Цели: {len(memory.goals)}\n"
            f"• Контекст: {'задан' if insights else 'не задан'}\n\n"
            "📈 Контекст:\n"
            f"{progress_bar(stats.percent)} {stats.percent}%\n"
            f"~{stats.tokens:,} токенов из ~{limit_k}K",
        )

    async def _handle_memory(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /memory command."""
        if not await self._guard(update):
            return
        memory = self.assistant.store.list_memory_items(self._get_subject(update))
        await self._reply(update, format_memory(memory))

    async def _handle_remember(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /fact, /pref and /goal commands."""
        if not await self._guard(update):
            return
        assert update.message is not None and update.message.text is not None
        command = update.message.text.split()[0].lstrip("/").split("@")[0]
        kind, confirmation = MEMORY_COMMANDS[command]

        text = " ".join(context.args or [])
        if not text:
            await self._reply(update, f"Использование: <code>/{command} текст</code>")
            return

        self.assistant.remember(self._get_subject(update), kind, text)
        await self._reply(update, confirmation)

    async def _handle_clear_memory(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /clearmemory command."""
        if not await self._guard(update):
            return
        self.assistant.store.clear_memory_items(self._get_subject(update))
        await self._reply(update, "🗑️ Долгосрочная память очищена!")

    async def _handle_clear(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /clear command; asks for confirmation first."""
        if not await self._guard(update):
            return
        count = self.assistant.store.count_messages(self._get_subject(update))
        if count == 0:
            await self._reply(update, "📭 История уже пуста!")
            return

        keyboard = InlineKeyboardMarkup(
            [[
                InlineKeyboardButton("✅ Да, очистить", callback_data=CLEAR_CONFIRM),
                InlineKeyboardButton("❌ Отмена", callback_data=CLEAR_CANCEL),
            ]]
        )
        await self._reply(
            update,
            "⚠️ Ты уверен, что хочешь очистить историю?\n\n"
            f"Будет удалено <b>{count}</b> сообщений.",
            reply_markup=keyboard,
        )

    async def _handle_callback(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle inline keyboard buttons."""
        query = update.callback_query
        assert query is not None
        if not self._is_allowed(update):
            await query.answer()
            return

        if query.data == CLEAR_CONFIRM:
            self.assistant.clear_history(self._get_subject(update))
            self.json_logger.log("telegram_clear", subject=self._get_subject(update))
            await query.edit_message_text("🗑️ История очищена!")
            await query.answer("Готово!")
        elif query.data == CLEAR_CANCEL:
            await query.edit_message_text("❌ Очистка отменена.")
            await query.answer()
        else:
            await query.answer()

    async def _handle_insights(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /insights: show or replace the user's self-description."""
        if not await self._guard(update):
            return
        subject = self._get_subject(update)
        text = " ".join(context.args or [])

        if text:
            self.assistant.store.upsert_settings(subject, text)
            preview = text[:100] + ("..." if len(text) > 100 else "")
            await self._reply(update, f"✅ Контекст сохранён!\n\n<i>\"{escape(preview)}\"</i>")
            return

        insights = self.assistant.store.get_settings(subject)
        if insights:
            await self._reply(
                update,
                f"📝 <b>Текущий контекст:</b>\n\n<i>\"{escape(insights)}\"</i>\n\n"
                "Чтобы изменить: <code>/insights новый текст</code>",
            )
        else:
            await self._reply(
                update,
                "📝 Контекст не задан.\n\nИспользуй: <code>/insights расскажи о себе</code>",
            )

    async def _handle_sources(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /sources command."""
        if not await self._guard(update):
            return
        sources = self.assistant.store.get_last_sources(self._get_subject(update))
        if not sources:
            await self._reply(
                update,
                "📚 Источников нет.\n\nИсточники сохраняются когда я использую поиск для ответа.",
            )
            return

        lines = [
            f'{i}. <a href="{escape(s.url)}">{escape(s.title)}</a>'
            for i, s in enumerate(sources, 1)
        ]
        await self._reply(update, "<b>📚 Источники последнего ответа:</b>\n\n" + "\n".join(lines))

    async def _handle_export(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /export: send the user's memory as a JSON document."""
        if not await self._guard(update):
            return
        assert update.message is not None
        data = export_memory(self.assistant.store, self._get_subject(update))
        payload = json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")

        await update.message.reply_document(
            document=io.BytesIO(payload),
            filename=f"neuro-memory-{date.today().isoformat()}.json",
            caption="💾 Экспорт памяти.",
        )

    async def _handle_document(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle an uploaded JSON export: restore it into the user's memory."""
        if not await self._guard(update):
            return
        assert update.message is not None and update.message.document is not None
        subject = self._get_subject(update)

        file = await update.message.document.get_file()
        payload = await file.download_as_bytearray()
        try:
            data = json.loads(bytes(payload).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Rejected import for {subject}: {e}")
            await self._reply(update, "❌ Не удалось прочитать файл: это не JSON.")
            return
        if not isinstance(data, dict):
            await self._reply(update, "❌ Неверный формат экспорта.")
            return

        counts = import_memory(
            self.assistant.store, subject, data, max_history=self.config.max_history_messages
        )
        self.json_logger.log("telegram_import", subject=subject, **counts)
        await self._reply(
            update,
            "✅ Импорт завершён!\n\n"
            f"• Сообщений: {counts['messages']}\n"
            f"• Записей памяти: {counts['items']}\n"
            f"• Контекст: {'восстановлен' if counts['insights'] else 'без изменений'}",
        )

    async def _handle_search(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /search: answer with a forced web lookup."""
        if not await self._guard(update):
            return
        query = " ".join(context.args or [])
        if not query:
            await self._reply(update, "🔍 Напиши запрос: <code>/search твой запрос</code>")
            return
        await self._run_turn(update, query, force_lookup=True)

    async def _handle_message(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle incoming text messages."""
        if not await self._guard(update):
            return
        assert update.message is not None and update.message.text is not None
        await self._run_turn(update, update.message.text)

    async def _run_turn(self, update: Update, text: str, force_lookup: bool = False) -> None:
        assert update.message is not None
        subject = self._get_subject(update)

        lock = self._locks.setdefault(subject, asyncio.Lock())
        if lock.locked():
            await self._reply(update, BUSY_MESSAGE)
            return

        try:
            async with lock:
                await self._answer(update, subject, text, force_lookup)
        finally:
            # Busy turns are rejected, never queued on the lock.
            self._locks.pop(subject, None)

    async def _answer(
        self, update: Update, subject: str, text: str, force_lookup: bool
    ) -> None:
        assert update.message is not None
        self.json_logger.log(
            "telegram_message",
            subject=subject,
            message_length=len(text),
            force_lookup=force_lookup,
        )
        try:
            await update.message.chat.send_action(ChatAction.TYPING)
            result = await self.assistant.handle_turn(subject, text, force_lookup=force_lookup)
        except Exception as e:
            logger.exception("Error processing message")
            self.json_logger.log("turn_error", subject=subject, error=str(e))
            await self._reply(update, format_error(e))
            return

        try:
            await self._send_reply(update, format_turn(result))
        except TelegramError as e:
            logger.exception("Error sending reply")
            self.json_logger.log("turn_error", subject=subject, error=str(e))

    async def _send_reply(self, update: Update, text: str) -> None:
        """Send a model reply in chunks; only the first quotes the user's message.

        A chunk Telegram refuses to parse as HTML is resent as plain text.
        """
        assert update.message is not None
        for index, chunk in enumerate(split_message(text)):
            kwargs = {"reply_to_message_id": update.message.message_id} if index == 0 else {}
            try:
                await update.message.reply_text(chunk, parse_mode=ParseMode.HTML, **kwargs)
            except BadRequest as e:
                logger.warning(f"HTML rejected, sending plain text: {e}")
                self.json_logger.log(
                    "telegram_plain_fallback", subject=self._get_subject(update), error=str(e)
                )
                await update.message.reply_text(strip_tags(chunk), **kwargs)

    def build_app(self) -> Application:
        """Build the Telegram application."""
        self._app = Application.builder().token(self.token).build()

        self._app.add_handler(CommandHandler("start", self._handle_start))
        self._app.add_handler(CommandHandler("stats", self._handle_stats))
        self._app.add_handler(CommandHandler("memory", self._handle_memory))
        self._app.add_handler(
            CommandHandler(list(MEMORY_COMMANDS), self._handle_remember)
        )
        self._app.add_handler(CommandHandler("clearmemory", self._handle_clear_memory))
        self._app.add_handler(CommandHandler("clear", self._handle_clear))
        self._app.add_handler(CommandHandler("insights", self._handle_insights))
        self._app.add_handler(CommandHandler("sources", self._handle_sources))
        self._app.add_handler(CommandHandler("export", self._handle_export))
        self._app.add_handler(CommandHandler("search", self._handle_search))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))
        self._app.add_handler(
            MessageHandler(filters.Document.FileExtension("json"), self._handle_document)
        )
        self._app.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message)
        )

        return self._app

    def run(self) -> None:
        """Run the bot (blocking)."""
        app = self.build_app()

        logger.info("Starting Telegram bot...")
        app.run_polling()
