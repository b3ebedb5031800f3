"""Entry point and wiring for the Telegram name-ban bot.

Contains handlers for messages, new members and admin commands. Filter
lists live in a `filters.GroupPatternStore` persisted in
`nameban_telegram.storage` (SQLite).

Features:
- users whose username or display name hits a group filter are banned,
  both when they write and when they join
- new members are re-checked for a short while (name changes after join)
- admin commands: /addfilter, /removefilter, /listfilters, /testpattern, /hits
- ban and filter notifications sent to chats from `AUDIT_CHAT_IDS`
- file logging with rotation
"""
from __future__ import annotations

import asyncio
import html
import logging
import os
import random
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from aiogram import Bot, Dispatcher
from aiogram.types import Message, User

from . import storage
from .errors import FilterError
from .filters import MAX_PATTERNS_PER_GROUP, GroupPatternStore
from .matcher import SafeMatcher
from .patterns import Pattern

logger = logging.getLogger(__name__)

DB_PATH = os.environ.get("DB_PATH", storage.DEFAULT_DB)
AUDIT_CHAT_IDS_RAW = os.environ.get("AUDIT_CHAT_IDS", "")
AUTO_DELETE_SECONDS = int(os.environ.get("AUTO_DELETE_SECONDS", "0"))
MATCH_TIMEOUT_MS = int(os.environ.get("MATCH_TIMEOUT_MS", "100"))

MONITOR_INTERVAL_SECONDS = 5
MONITOR_ATTEMPTS = 6
GROUP_CHAT_TYPES = ("group", "supergroup")
ADMIN_STATUSES = ("administrator", "creator")

BAN_MESSAGES = (
    "Hasta la vista, baby! Пользователь {user_id} заблокирован.",
    "I'll be back... а пользователь {user_id} уже нет.",
    "Пользователь {user_id} заблокирован. Судный день настал.",
    "Talk to the hand! Пользователь {user_id} заблокирован.",
)

_store: Optional[GroupPatternStore] = None
_monitors: dict[tuple[int, int], asyncio.Task] = {}


def _parse_ids(raw: str, env_name: str) -> list[int]:
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            logger.warning("Invalid chat id in %s: %s", env_name, part)
    return ids


def _get_audit_chats() -> list[int]:
    return _parse_ids(AUDIT_CHAT_IDS_RAW, "AUDIT_CHAT_IDS")


def _get_allowed_chats() -> list[int]:
    return _parse_ids(os.environ.get("ALLOWED_CHAT_IDS", ""), "ALLOWED_CHAT_IDS")


def _get_admins() -> set[int]:
    return set(_parse_ids(os.environ.get("ADMINS", ""), "ADMINS"))


def _get_store() -> GroupPatternStore:
    if _store is None:
        raise RuntimeError("Filter store is not initialized")
    return _store


def _is_enforced_chat(chat) -> bool:
    """Filters are enforced only in groups, optionally limited to ALLOWED_CHAT_IDS."""
    if chat is None or getattr(chat, "type", None) not in GROUP_CHAT_TYPES:
        return False
    allowed = _get_allowed_chats()
    # If no chats configured, enforce everywhere
    return not allowed or chat.id in allowed


def _user_display(u) -> str:
    """Return a sanitized display name for a user object (prefer username)."""
    if not u:
        return "user"
    username = getattr(u, "username", None)
    if username:
        return html.escape(f"@{username}")
    first = getattr(u, "first_name", "") or ""
    last = getattr(u, "last_name", "") or ""
    full = (first + " " + last).strip()
    if full:
        return html.escape(full)
    return html.escape(str(getattr(u, "id", "user")))


async def _safe_send_audit(chat_id: int, text: str, bot: Bot) -> None:
    try:
        await bot.send_message(chat_id, text, parse_mode="HTML")
    except Exception:
        logger.exception("Failed to send audit message to chat %s", chat_id)


async def _reply_with_optional_delete(orig_message: Message, text: str, parse_mode: Optional[str] = None) -> None:
    """Send a reply and optionally delete it after AUTO_DELETE_SECONDS."""
    try:
        sent = await orig_message.answer(text, parse_mode=parse_mode)
    except Exception:
        logger.exception("Failed to send reply message")
        return

    if AUTO_DELETE_SECONDS and AUTO_DELETE_SECONDS > 0:
        async def _del_after(m):
            await asyncio.sleep(AUTO_DELETE_SECONDS)
            try:
                await m.delete()
            except Exception:
                logger.debug("Auto-delete failed for bot message", exc_info=True)

        asyncio.create_task(_del_after(sent))


def _notify_audit_chats_fire_and_forget(bot: Bot, text: str) -> None:
    """Schedule sending audit notifications to configured chats without awaiting them."""
    for chat_id in _get_audit_chats():
        asyncio.create_task(_safe_send_audit(chat_id, text, bot))


async def _is_authorized(message: Message) -> bool:
    """ADMINS may always edit filters; otherwise the user must administer this group."""
    user = message.from_user
    if user is None:
        return False
    if user.id in _get_admins():
        return True
    chat = message.chat
    if chat.type not in GROUP_CHAT_TYPES:
        return False
    try:
        member = await message.bot.get_chat_member(chat.id, user.id)
    except Exception:
        logger.exception("Failed to check admin status of %s in chat %s", user.id, chat.id)
        return False
    return member.status in ADMIN_STATUSES


async def _find_match(chat_id: int, user: User) -> Optional[Pattern]:
    # matching blocks on worker processes; keep it off the event loop
    return await asyncio.to_thread(
        _get_store().find_match, chat_id, user.username, user.first_name, user.last_name
    )


async def _ban(bot: Bot, chat_id: int, user: User, pattern: Pattern, source: str) -> None:
    try:
        await bot.ban_chat_member(chat_id, user.id)
    except Exception:
        logger.exception("Failed to ban user %s in chat %s", user.id, chat_id)
        return

    storage.record_hit(chat_id, pattern.raw, DB_PATH)
    storage.log_action("ban", user.id, None, details=f"pattern={pattern.raw} ({source})", chat_id=chat_id, db_path=DB_PATH)
    logger.info("Banned user %s in chat %s (%s) by pattern %r", user.id, chat_id, source, pattern.raw)

    ts = datetime.now(timezone.utc).isoformat()
    text_fmt = (
        f"<b>Action:</b> ban\n"
        f"<b>User:</b> <a href=\"tg://user?id={user.id}\">{_user_display(user)}</a> (id: {user.id})\n"
        f"<b>Chat:</b> {chat_id}\n"
        f"<b>Pattern:</b> <code>{html.escape(pattern.raw)}</code>\n"
        f"<b>Source:</b> {html.escape(source)}\n"
        f"<b>Time (UTC):</b> {html.escape(ts)}\n"
    )
    _notify_audit_chats_fire_and_forget(bot, text_fmt)
    try:
        await bot.send_message(chat_id, random.choice(BAN_MESSAGES).format(user_id=user.id))
    except Exception:
        logger.exception("Failed to send ban message to chat %s", chat_id)


async def _monitor_new_user(bot: Bot, chat_id: int, user: User) -> None:
    """Re-check a fresh member a few times, in case they rename right after joining."""
    key = (chat_id, user.id)
    try:
        for _ in range(MONITOR_ATTEMPTS):
            await asyncio.sleep(MONITOR_INTERVAL_SECONDS)
            member = await bot.get_chat_member(chat_id, user.id)
            pattern = await _find_match(chat_id, member.user)
            if pattern is not None:
                await _ban(bot, chat_id, member.user, pattern, "name change after join")
                return
        logger.debug("Stopped monitoring user %s in chat %s", user.id, chat_id)
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Error monitoring user %s in chat %s", user.id, chat_id)
    finally:
        _monitors.pop(key, None)


async def _on_new_members(message: Message) -> None:
    if not _is_enforced_chat(message.chat):
        return
    chat_id = message.chat.id
    for user in message.new_chat_members or []:
        if user.is_bot:
            continue
        pattern = await _find_match(chat_id, user)
        if pattern is not None:
            await _ban(message.bot, chat_id, user, pattern, "join")
            continue
        key = (chat_id, user.id)
        if key not in _monitors:
            _monitors[key] = asyncio.create_task(_monitor_new_user(message.bot, chat_id, user))


async def _on_message(message: Message) -> None:
    # ignore bots
    user = message.from_user
    if user is None or user.is_bot:
        return
    if not _is_enforced_chat(message.chat):
        return

    pattern = await _find_match(message.chat.id, user)
    if pattern is None:
        return
    try:
        await message.delete()
    except Exception:
        logger.debug("Failed to delete message from banned user", exc_info=True)
    await _ban(message.bot, message.chat.id, user, pattern, "message")


def _command_argument(text: str) -> str:
    parts = text.split(maxsplit=1)
    return parts[1].strip() if len(parts) == 2 else ""


async def _on_command(message: Message) -> None:
    """Handle filter commands.

    Commands supported: /help, /chatinfo, /addfilter, /removefilter,
    /listfilters, /testpattern, /hits
    """
    text = (message.text or "").strip()
    if not text:
        return
    cmd = text.split()[0].lower().split("@")[0]
    arg = _command_argument(text)

    if cmd in ("/help", "/start"):
        help_text = (
            "Фильтры имён пользователей. Фильтр может быть:\n"
            "- текстом: <code>spam</code> — имя содержит 'spam'\n"
            "- шаблоном: <code>*bot</code> — имя заканчивается на 'bot', "
            "<code>max*</code> — начинается с 'max', <code>*bad*</code> — содержит 'bad'\n"
            "- регулярным выражением: <code>/^evil.*$/i</code>\n\n"
            "Доступные команды (админы, в группе):\n"
            "<b>/addfilter</b> &lt;pattern&gt; — добавить фильтр\n"
            "<b>/removefilter</b> &lt;pattern&gt; — удалить фильтр\n"
            "<b>/listfilters</b> — показать фильтры группы\n"
            "<b>/testpattern</b> &lt;pattern&gt; &lt;text&gt; — проверить фильтр без добавления\n"
            "<b>/hits</b> — статистика срабатываний\n"
            "<b>/chatinfo</b> — информация о чате"
        )
        await _reply_with_optional_delete(message, help_text, parse_mode="HTML")
        return

    if cmd == "/chatinfo":
        chat = message.chat
        is_auth = await _is_authorized(message)
        reply = (
            f"Chat: {chat.title or 'Private chat'}\n"
            f"ID: {chat.id}\n"
            f"Type: {chat.type}\n"
            f"Фильтры применяются: {'да' if _is_enforced_chat(chat) else 'нет'}\n"
            f"Вы можете настраивать фильтры: {'да' if is_auth else 'нет'}"
        )
        await _reply_with_optional_delete(message, reply)
        return

    filter_cmds = {"/addfilter", "/removefilter", "/listfilters", "/testpattern", "/hits"}
    if cmd not in filter_cmds:
        return

    if not await _is_authorized(message):
        await _reply_with_optional_delete(message, "Только администраторы могут использовать эту команду.")
        return

    store = _get_store()
    admin = message.from_user
    chat = message.chat

    if cmd == "/testpattern":
        args = arg.split(maxsplit=1)
        if len(args) < 2:
            await _reply_with_optional_delete(message, "Использование: /testpattern <pattern> <text>")
            return
        try:
            hit = await asyncio.to_thread(store.test_pattern, args[0], args[1])
        except FilterError as err:
            await _reply_with_optional_delete(message, f"Ошибка: {err}")
            return
        verdict = "совпадает" if hit else "не совпадает"
        await _reply_with_optional_delete(message, f"Фильтр \"{args[0]}\" {verdict} с \"{args[1]}\".")
        return

    if chat.type not in GROUP_CHAT_TYPES:
        await _reply_with_optional_delete(message, "Фильтры настраиваются в группе: выполните команду там.")
        return

    if cmd == "/addfilter":
        if not arg:
            await _reply_with_optional_delete(message, "Использование: /addfilter <pattern>\nПримеры: spam, *bad*, /^evil.*$/i")
            return
        try:
            pattern = await asyncio.to_thread(store.add_pattern, chat.id, arg)
        except FilterError as err:
            await _reply_with_optional_delete(message, f"Фильтр не добавлен: {err}")
            return
        storage.log_action("add_filter", None, admin.id, details=pattern.raw, chat_id=chat.id, db_path=DB_PATH)
        _notify_audit_chats_fire_and_forget(
            message.bot,
            f"<b>Action:</b> add filter\n<b>Chat:</b> {chat.id}\n"
            f"<b>Admin:</b> {_user_display(admin)} (id: {admin.id})\n"
            f"<b>Pattern:</b> <code>{html.escape(pattern.raw)}</code>\n",
        )
        await _reply_with_optional_delete(message, f"Фильтр добавлен: \"{pattern.raw}\" ({pattern.kind.value})")
        return

    if cmd == "/removefilter":
        if not arg:
            await _reply_with_optional_delete(message, "Использование: /removefilter <pattern>")
            return
        if not await asyncio.to_thread(store.remove_pattern, chat.id, arg):
            await _reply_with_optional_delete(message, f"Фильтр \"{arg}\" не найден.")
            return
        storage.log_action("remove_filter", None, admin.id, details=arg, chat_id=chat.id, db_path=DB_PATH)
        _notify_audit_chats_fire_and_forget(
            message.bot,
            f"<b>Action:</b> remove filter\n<b>Chat:</b> {chat.id}\n"
            f"<b>Admin:</b> {_user_display(admin)} (id: {admin.id})\n"
            f"<b>Pattern:</b> <code>{html.escape(arg)}</code>\n",
        )
        await _reply_with_optional_delete(message, f"Фильтр удалён: \"{arg}\"")
        return

    if cmd == "/listfilters":
        patterns = await asyncio.to_thread(store.list_patterns, chat.id)
        if not patterns:
            await _reply_with_optional_delete(message, "Фильтры не заданы.")
            return
        lines = [f"- <code>{html.escape(p.raw)}</code>" for p in patterns]
        await _reply_with_optional_delete(
            message,
            f"Фильтры ({len(patterns)}/{MAX_PATTERNS_PER_GROUP}):\n" + "\n".join(lines),
            parse_mode="HTML",
        )
        return

    if cmd == "/hits":
        stats = storage.get_hit_stats(chat.id, DB_PATH)
        if not stats:
            await _reply_with_optional_delete(message, "Срабатываний пока нет.")
            return
        lines = [f"{count} — <code>{html.escape(raw)}</code>" for raw, count in stats[:20]]
        await _reply_with_optional_delete(message, "\n".join(lines), parse_mode="HTML")


async def _run_async(token: str) -> None:
    bot = Bot(token=token)
    dp = Dispatcher()

    dp.message.register(_on_new_members, lambda message: bool(message.new_chat_members))
    dp.message.register(_on_command, lambda message: (message.text or "").startswith('/'))
    dp.message.register(_on_message)

    logger.info("Starting polling")
    try:
        await dp.start_polling(bot)
    finally:
        for task in list(_monitors.values()):
            task.cancel()
        _monitors.clear()


def _configure_logging(log_path: str = "nameban_telegram.log") -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    root.setLevel(logging.INFO)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    root.addHandler(ch)

    fh = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(fmt)
    root.addHandler(fh)


def run(token: Optional[str] = None) -> None:
    """Run the bot. Reads BOT_TOKEN from env if not provided."""
    global _store
    _configure_logging()

    if token is None:
        token = os.environ.get("BOT_TOKEN", "")
    if not token:
        raise RuntimeError("BOT_TOKEN environment variable is required")

    storage.init_db(DB_PATH)
    with SafeMatcher(timeout=MATCH_TIMEOUT_MS / 1000) as safe_matcher:
        _store = GroupPatternStore(safe_matcher, db_path=DB_PATH)
        try:
            _store.load()
        except Exception:
            logger.exception("Failed to load filter patterns")
        asyncio.run(_run_async(token))
