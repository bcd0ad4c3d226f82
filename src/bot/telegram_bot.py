"""
TIPs Tracker — Telegram Bot.

A caregiver-facing chat surface over one room: today's doses, the week view,
logging a dose and marking today as missed. Reminders are pushed from a
repeating job.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
)

from src.config import settings
from src.core.app_state import AppState, NotAuthorizedError
from src.core.dose_resolver import item_display_text

if TYPE_CHECKING:
    from src.data.db import RoomDB, UserDB
    from src.data.models import User
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def _active_room_id(user: User) -> str | None:
    """Owned rooms first, then the earliest joined active room."""
    access = user.room_access or {}
    for room_id in user.owned_rooms or []:
        if room_id in access and access[room_id].is_active:
            return room_id
    joined = sorted(
        (a.joined_at, room_id) for room_id, a in access.items() if a.is_active
    )
    return joined[0][1] if joined else None


async def _load_state(
    update: Update, context: ContextTypes.DEFAULT_TYPE,
) -> AppState | None:
    """State for the linked user's room, or None after replying why not."""
    user_db: UserDB = context.bot_data["user_db"]
    room_db: RoomDB = context.bot_data["room_db"]

    user = user_db.get_user_by_chat(update.effective_chat.id)
    if user is None:
        await update.message.reply_text("This chat isn't linked yet. Use /link <user-id>.")
        return None

    room_id = _active_room_id(user)
    if room_id is None:
        await update.message.reply_text("You don't have access to any room yet.")
        return None

    state = AppState.load(room_db, user, room_id, tz=_tz())
    if state.current_cycle() is None:
        await update.message.reply_text("This room has no cycle yet.")
        return None
    return state


def _format_today(state: AppState, now: datetime | None = None) -> str:
    today = state.today(now)
    week = state.current_week_number(today)
    items = state.items_for_day(today)
    if not items:
        return f"Nothing due today ({today:%a %d %b})."

    lines = [f"*Today, {today:%a %d %b}* (week {week})"]
    if state.has_missed_dose(today):
        lines.append("_Marked as missed: treatment doses skipped._")
    for n, item in enumerate(items, start=1):
        mark = "✅" if state.was_taken_on(item.id, today) else "▫️"
        lines.append(f"{n}. {mark} {item_display_text(item, week)}")
    return "\n".join(lines)


def _format_week(state: AppState, week_number: int, now: datetime | None = None) -> str:
    today = state.today(now)
    window = state.week_window(week_number - 1, today)
    missed = state.missed_dates()

    lines = [f"*Week {week_number}*: {window[0]:%d %b} – {window[-1]:%d %b}"]
    if len(window) > 7:
        lines.append(f"_Extended by {len(window) - 7} missed day(s)._")
    for day in window:
        if day in missed:
            lines.append(f"• {day:%a %d %b} — missed")
    for item in state.items_for():
        taken, expected = state.weekly_progress(item, week_number - 1, today)
        lines.append(f"{item.name}: {taken}/{expected}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *TIPs Tracker*!\n\n"
        "I keep track of your food-challenge doses:\n"
        "• Use /link <user-id> to connect this chat to your account\n"
        "• Use /today to see what's due, /taken <n> to log a dose\n"
        "• Use /week to see the current week\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/link <user-id> — Link this chat to your account\n"
        "/today — Items due today\n"
        "/taken <n> — Log item n from /today as taken\n"
        "/week [n] — Week view (current week by default)\n"
        "/missed — Mark today as a missed dose day (admins)\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_link(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /link <user-id> — attach this chat to an account."""
    args = context.args
    if not args:
        await update.message.reply_text("Usage: /link <user-id>")
        return

    user_db: UserDB = context.bot_data["user_db"]
    try:
        user = user_db.get_user(args[0])
        if user is None:
            await update.message.reply_text("No account with that id.")
            return
        previous = user_db.get_user_by_chat(update.effective_chat.id)
        if previous is not None and previous.id != user.id:
            previous.telegram_chat_id = None
            user_db.save_user(previous)
        user.telegram_chat_id = update.effective_chat.id
        user_db.save_user(user)
    except Exception as exc:
        logger.error("/link error: %s", exc)
        await update.message.reply_text("Couldn't link this chat. Please try again.")
        return

    logger.info("Chat %d linked to user %s", update.effective_chat.id, user.id)
    await update.message.reply_text(f"Linked to *{user.name}*.", parse_mode="Markdown")


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — list items due today with their dose."""
    try:
        state = await _load_state(update, context)
        if state is None:
            return
        text = _format_today(state)
    except Exception as exc:
        logger.error("/today error: %s", exc)
        await update.message.reply_text("Couldn't load today's doses. Please try again.")
        return
    await update.message.reply_text(text, parse_mode="Markdown")


@authorized_only
async def cmd_week(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /week [n] — show week n (1-based) of the current cycle."""
    args = context.args
    week_number = None
    if args:
        try:
            week_number = int(args[0])
        except ValueError:
            week_number = 0
        if week_number < 1:
            await update.message.reply_text("Usage: /week [n] where n is 1 or more.")
            return

    try:
        state = await _load_state(update, context)
        if state is None:
            return
        if week_number is None:
            week_number = state.current_week_number(state.today())
        text = _format_week(state, week_number)
    except Exception as exc:
        logger.error("/week error: %s", exc)
        await update.message.reply_text("Couldn't load the week view. Please try again.")
        return
    await update.message.reply_text(text, parse_mode="Markdown")


@authorized_only
async def cmd_taken(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /taken <n> — log item n of today's list."""
    args = context.args
    if not args:
        await update.message.reply_text("Usage: /taken <n>\nUse /today to see the numbers.")
        return
    try:
        index = int(args[0])
    except ValueError:
        await update.message.reply_text("Invalid number. Use /today to see the numbers.")
        return

    try:
        state = await _load_state(update, context)
        if state is None:
            return
        items = state.items_for_day(state.today())
        if not 1 <= index <= len(items):
            await update.message.reply_text(f"There's no item {index} today.")
            return
        item = items[index - 1]
        state.log_consumption(item.id, datetime.now(timezone.utc))
    except Exception as exc:
        logger.error("/taken error: %s", exc)
        await update.message.reply_text("Couldn't log that dose. Please try again.")
        return

    logger.info("User %s logged %s", state.user.id, item.name)
    await update.message.reply_text(f"✅ Logged *{item.name}*.", parse_mode="Markdown")


@authorized_only
async def cmd_missed(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /missed — record today as a missed dose day."""
    try:
        state = await _load_state(update, context)
        if state is None:
            return
        today = state.today()
        missed = state.record_missed_dose(today)
    except NotAuthorizedError:
        await update.message.reply_text("Only room admins can record missed doses.")
        return
    except Exception as exc:
        logger.error("/missed error: %s", exc)
        await update.message.reply_text("Couldn't record the missed dose. Please try again.")
        return

    if missed is None:
        await update.message.reply_text(f"{today:%a %d %b} was already marked as missed.")
        return
    await update.message.reply_text(
        f"Marked {today:%a %d %b} as missed. The current week is extended by a day."
    )


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    notifier: NotificationPort | None = None,
    room_db: RoomDB | None = None,
    user_db: UserDB | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
        room_db, user_db: Storage. Default to the configured DATABASE_PATH.
    """
    from src.data.db import RoomDB, UserDB

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    app.bot_data["notifier"] = notifier
    app.bot_data["room_db"] = room_db or RoomDB()
    app.bot_data["user_db"] = user_db or UserDB()

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("link", cmd_link))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("week", cmd_week))
    app.add_handler(CommandHandler("taken", cmd_taken))
    app.add_handler(CommandHandler("missed", cmd_missed))

    _setup_reminders(app)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_reminders(app: Application) -> None:
    """Register the repeating reminder check."""
    from src.core.reminders import send_due_reminders

    interval = settings.REMINDER_CHECK_SECONDS

    async def _reminder_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await send_due_reminders(
            context.bot_data["notifier"],
            context.bot_data["user_db"],
            context.bot_data["room_db"],
            tz=_tz(),
            window=timedelta(seconds=interval),
        )

    app.job_queue.run_repeating(
        _reminder_job_callback,
        interval=interval,
        first=interval,
        name="dose_reminders",
    )

    logger.info("Dose reminders checked every %ds (%s)", interval, settings.TIMEZONE)


def main() -> None:
    """Entry point: build the app and start polling."""
    logger.info("Starting TIPs Tracker bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
