"""
Purple OS — Telegram Bot.

Telegram is the chat surface of Purple OS. Free text, voice notes and photos
become chat turns with the agent; slash commands are the direct (non-AI)
path to tasks, schedule, stats, water and the focus timers.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import base64
import logging
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from purple.config import settings
from purple.ports.store_port import StoreError

if TYPE_CHECKING:
    from purple.core.chat import ChatSession
    from purple.core.focus import FocusTimer
    from purple.core.tasks import TaskManager
    from purple.ports.notification_port import NotificationPort
    from purple.ports.store_port import StorePort

logger = logging.getLogger(__name__)

_MAX_MESSAGE_LENGTH = 4096
_DEFAULT_WATER_ML = 250
_PHOTO_PROMPT = "Take a look at this."

# "Flat Bench Press 100x5x3" -> name, weight, reps, sets (sets optional)
_EXERCISE_RE = re.compile(r"^(?P<name>.+?)\s+(?P<weight>\d+(?:\.\d+)?)x(?P<reps>\d+)(?:x(?P<sets>\d+))?$")


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
# Per-user wiring
# ---------------------------------------------------------------------------


@dataclass
class OwnerState:
    """Stateful objects kept per Telegram user for the life of the process."""

    chat: ChatSession
    tasks: TaskManager
    focus: FocusTimer


def _now() -> datetime:
    return datetime.now(ZoneInfo(settings.TIMEZONE))


def _owner_id(update: Update) -> str:
    return str(update.effective_user.id)


async def _owner_state(update: Update, context: ContextTypes.DEFAULT_TYPE) -> OwnerState:
    """Return (creating on first use) the owner's chat, tasks and timers.

    Raises StoreError when the chat history cannot be loaded.
    """
    from purple.core.chat import ChatSession
    from purple.core.commands import CommandExecutor
    from purple.core.focus import FocusTimer
    from purple.core.tasks import TaskManager

    owners: dict[str, OwnerState] = context.bot_data.setdefault("owners", {})
    user_id = _owner_id(update)
    state = owners.get(user_id)
    if state is not None:
        return state

    store: StorePort = context.bot_data["store"]
    chat = ChatSession(store, user_id, executor=CommandExecutor(store), clock=_now)
    await chat.initialize()

    state = OwnerState(
        chat=chat,
        tasks=TaskManager(store, context.bot_data["stats"]),
        focus=FocusTimer(
            context.bot_data["stats"], user_id,
            notifier=context.bot_data.get("notifier"),
            chat_id=update.effective_chat.id,
        ),
    )
    owners[user_id] = state
    await context.bot_data["stats"].visit(user_id, _now().date())
    return state


async def _reply(update: Update, text: str) -> None:
    for start in range(0, len(text), _MAX_MESSAGE_LENGTH):
        await update.message.reply_text(text[start:start + _MAX_MESSAGE_LENGTH])


async def _chat_turn(
    text: str, update: Update, context: ContextTypes.DEFAULT_TYPE, attachment: str | None = None,
) -> None:
    """Shared logic: one chat turn with the agent, reply with its text."""
    try:
        state = await _owner_state(update, context)
    except StoreError as exc:
        logger.error("Chat init failed: %s", exc)
        await update.message.reply_text("Couldn't reach my memory right now. Please try again.")
        return

    result = await state.chat.send(text, attachment)
    await _reply(update, result.reply)


# ---------------------------------------------------------------------------
# Basic commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        f"Purple online. Hey {update.effective_user.first_name}.\n\n"
        "Talk to me (text, voice or a photo) and I'll remember it.\n"
        "Ask me to add tasks, schedule things or log a note.\n\n"
        "Send /help for the direct commands."
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list commands."""
    await update.message.reply_text(
        "Chat:\n"
        "/new — start a new session\n"
        "/sessions — list sessions\n"
        "/switch <n> — open session n\n"
        "/forget [n] — delete the current (or n-th) session\n\n"
        "Direct:\n"
        "/tasks — open tasks\n"
        "/addtask <title> [#category] [#weekly|#monthly]\n"
        "/done <n> — toggle task n\n"
        "/schedule [YYYY-MM-DD] — the day's blocks\n"
        "/note <title> | <text>\n"
        "/workout <session> [| Bench Press 100x5x3, ...]\n"
        "/stats — level, streak, hydration, training\n"
        "/water [ml] — log water (default 250)\n"
        "/weight <kg>\n"
        "/pomo [start|pause|reset|deep|standard|quick]\n"
        "/focus [start|stop] — focus stopwatch"
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def _session_arg(context: ContextTypes.DEFAULT_TYPE, count: int) -> int | None:
    """Parse a 1-based session index argument into a list index."""
    if not context.args:
        return None
    try:
        index = int(context.args[0]) - 1
    except ValueError:
        return None
    return index if 0 <= index < count else None


@authorized_only
async def cmd_new(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /new — open a fresh chat session."""
    try:
        state = await _owner_state(update, context)
    except StoreError:
        await update.message.reply_text("Couldn't reach my memory right now. Please try again.")
        return
    state.chat.new_session()
    await update.message.reply_text("New neural link open. What's on your mind?")


@authorized_only
async def cmd_sessions(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /sessions — list sessions, newest first."""
    try:
        state = await _owner_state(update, context)
        sessions = await state.chat.load_sessions()
    except StoreError as exc:
        logger.error("/sessions error: %s", exc)
        await update.message.reply_text("Couldn't load sessions. Please try again.")
        return

    if not sessions:
        await update.message.reply_text("No sessions yet. Just start talking.")
        return

    lines = ["Sessions:"]
    for i, s in enumerate(sessions, start=1):
        marker = " ◀" if s.id == state.chat.session_id else ""
        lines.append(f"{i}. [{s.date}] {s.preview}{marker}")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_switch(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /switch <n> — make session n the active one."""
    try:
        state = await _owner_state(update, context)
    except StoreError:
        await update.message.reply_text("Couldn't reach my memory right now. Please try again.")
        return

    index = _session_arg(context, len(state.chat.sessions))
    if index is None:
        await update.message.reply_text("Usage: /switch <n>\nUse /sessions to see numbers.")
        return

    summary = state.chat.sessions[index]
    messages = await state.chat.switch_session(summary.id)
    tail = messages[-1].content if messages else summary.preview
    await update.message.reply_text(f"Switched to session {index + 1}. Last: {tail[:200]}")


@authorized_only
async def cmd_forget(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /forget [n] — delete the current (or n-th) session."""
    try:
        state = await _owner_state(update, context)
    except StoreError:
        await update.message.reply_text("Couldn't reach my memory right now. Please try again.")
        return

    if context.args:
        index = _session_arg(context, len(state.chat.sessions))
        if index is None:
            await update.message.reply_text("Usage: /forget [n]\nUse /sessions to see numbers.")
            return
        session_id = state.chat.sessions[index].id
    else:
        session_id = state.chat.session_id

    if session_id is None:
        await update.message.reply_text("Nothing to forget.")
        return
    await state.chat.delete_session(session_id)
    await update.message.reply_text("Session deleted.")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def _parse_task_args(args: list[str]) -> tuple[str, str, str]:
    """Split /addtask arguments into (title, category, frequency)."""
    from purple.data.models import Frequency, TaskCategory

    category = TaskCategory.SYSTEM.value
    frequency = Frequency.DAILY.value
    words = []
    for arg in args:
        tag = arg[1:].upper() if arg.startswith("#") else ""
        if tag in TaskCategory.__members__:
            category = tag
        elif tag in Frequency.__members__:
            frequency = tag
        else:
            words.append(arg)
    return " ".join(words).strip(), category, frequency


@authorized_only
async def cmd_tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tasks — list tasks after the expiry sweep."""
    try:
        state = await _owner_state(update, context)
    except StoreError:
        await update.message.reply_text("Couldn't reach my memory right now. Please try again.")
        return

    tasks = await state.tasks.load(_owner_id(update), _now())
    context.user_data["task_ids"] = [t.id for t in tasks]
    if not tasks:
        await update.message.reply_text("Protocol clear. No tasks.")
        return

    lines = ["Tasks:"]
    for i, t in enumerate(tasks, start=1):
        box = "✅" if t.status == "DONE" else "▫️"
        lines.append(f"{i}. {box} {t.title} ({t.category}, {t.frequency.lower()})")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_addtask(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addtask <title> [#category] [#frequency]."""
    title, category, frequency = _parse_task_args(context.args or [])
    if not title:
        await update.message.reply_text("Usage: /addtask <title> [#work] [#weekly]")
        return

    try:
        state = await _owner_state(update, context)
    except StoreError:
        await update.message.reply_text("Couldn't reach my memory right now. Please try again.")
        return

    task = await state.tasks.add(_owner_id(update), title, category, frequency)
    if task is None:
        await update.message.reply_text("Couldn't save that task. Please try again.")
        return
    await update.message.reply_text(f"Added: {task.title} ({task.category}, {task.frequency.lower()})")


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <n> — toggle task n from the last /tasks listing."""
    task_ids: list[str] = context.user_data.get("task_ids", [])
    try:
        index = int(context.args[0]) - 1
        if index < 0:
            raise IndexError(index)
        task_id = task_ids[index]
    except (IndexError, TypeError, ValueError):
        await update.message.reply_text("Usage: /done <n>\nUse /tasks to see numbers.")
        return

    try:
        state = await _owner_state(update, context)
    except StoreError:
        await update.message.reply_text("Couldn't reach my memory right now. Please try again.")
        return

    task = await state.tasks.toggle(_owner_id(update), task_id)
    if task is None:
        await update.message.reply_text("Couldn't update that task. Try /tasks again.")
        return
    if task.status == "DONE":
        await update.message.reply_text(f"✅ {task.title} done. +50 XP")
    else:
        await update.message.reply_text(f"↩️ {task.title} reopened.")


# ---------------------------------------------------------------------------
# Schedule & journal
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_schedule(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /schedule [YYYY-MM-DD] — list the day's blocks."""
    day = context.args[0] if context.args else _now().date().isoformat()
    if not re.fullmatch(r"\d{4}-\d{2}-\d{2}", day):
        await update.message.reply_text("Usage: /schedule [YYYY-MM-DD]")
        return

    blocks = await context.bot_data["schedule"].for_date(_owner_id(update), day)
    if not blocks:
        await update.message.reply_text(f"Nothing scheduled on {day}.")
        return
    lines = [f"Schedule for {day}:"]
    lines += [f"{b.start_time} {b.title} ({b.type})" for b in blocks]
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_note(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /note <title> | <text>."""
    raw = " ".join(context.args or [])
    title, _, content = raw.partition("|")
    if not title.strip():
        await update.message.reply_text("Usage: /note <title> | <text>")
        return
    note = await context.bot_data["journal"].add(_owner_id(update), title.strip(), content.strip())
    if note is None:
        await update.message.reply_text("Couldn't save that note. Please try again.")
        return
    await update.message.reply_text(f"Logged: {note.title}")


# ---------------------------------------------------------------------------
# Training & stats
# ---------------------------------------------------------------------------


def _parse_exercises(text: str) -> list:
    """Parse "Bench Press 100x5x3, Squat 120x5" into Exercise entries (bad items skipped)."""
    from purple.data.models import Exercise

    exercises = []
    for item in text.split(","):
        match = _EXERCISE_RE.match(item.strip())
        if not match:
            continue
        exercises.append(Exercise(
            name=match.group("name").strip(),
            weight=float(match.group("weight")),
            reps=int(match.group("reps")),
            sets=int(match.group("sets") or 1),
        ))
    return exercises


@authorized_only
async def cmd_workout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /workout <session> [| exercises] — log a completed session."""
    raw = " ".join(context.args or [])
    session_name, _, detail = raw.partition("|")
    if not session_name.strip():
        await update.message.reply_text("Usage: /workout Push A | Flat Bench Press 100x5x3, ...")
        return

    log = await context.bot_data["training"].log_workout(
        _owner_id(update), session_name.strip(), _parse_exercises(detail), _now(),
    )
    if log is None:
        await update.message.reply_text("Couldn't log that workout. Please try again.")
        return
    await update.message.reply_text(
        f"💪 {log.session_name} logged: {log.total_volume:g}kg volume. +150 XP"
    )


@authorized_only
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats — gamification snapshot and training dashboard."""
    user_id = _owner_id(update)
    stats = await context.bot_data["stats"].visit(user_id, _now().date())
    gym = await context.bot_data["training"].dashboard(user_id, _now())

    hours, minutes = divmod(stats.focus_time // 60, 60)
    lines = [
        f"Level {stats.level} | {stats.xp} XP",
        f"Streak: {stats.streak} days",
        f"Focus: {hours}h {minutes}m",
        f"Hydration: {stats.hydration}ml",
        f"Weight: {stats.current_weight:g}kg",
        f"Weekly sync: {gym['adherence']}%",
    ]
    for group, (score, status) in gym["fatigue"].items():
        lines.append(f"{group}: {score}% {status}")
    for pr in gym["records"]:
        lines.append(f"PR {pr.name}: {pr.weight:g}kg")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_water(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /water [ml] — add (or with a negative amount, remove) water."""
    try:
        amount = int(context.args[0]) if context.args else _DEFAULT_WATER_ML
    except ValueError:
        await update.message.reply_text("Usage: /water [ml]")
        return
    stats = await context.bot_data["stats"].add_hydration(_owner_id(update), amount, _now().date())
    await update.message.reply_text(f"💧 {stats.hydration}ml today")


@authorized_only
async def cmd_weight(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /weight <kg>."""
    try:
        weight = float(context.args[0])
    except (IndexError, TypeError, ValueError):
        await update.message.reply_text("Usage: /weight <kg>")
        return
    stats = await context.bot_data["stats"].log_weight(_owner_id(update), weight)
    await update.message.reply_text(f"Weight logged: {stats.current_weight:g}kg")


# ---------------------------------------------------------------------------
# Focus timers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_pomo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pomo [start|pause|reset|deep|standard|quick]."""
    from purple.core.focus import FocusMode

    arg = (context.args[0] if context.args else "start").upper()
    try:
        state = await _owner_state(update, context)
    except StoreError:
        await update.message.reply_text("Couldn't reach my memory right now. Please try again.")
        return

    if arg in FocusMode.__members__:
        pomo = await state.focus.pomo_control("MODE", FocusMode(arg))
    elif arg in ("START", "PAUSE", "RESET"):
        pomo = await state.focus.pomo_control(arg)
    else:
        await update.message.reply_text("Usage: /pomo [start|pause|reset|deep|standard|quick]")
        return

    minutes, seconds = divmod(pomo.time_left, 60)
    await update.message.reply_text(f"⏱ {pomo.mode.value} {minutes:02d}:{seconds:02d} — {pomo.status.value}")


@authorized_only
async def cmd_focus(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /focus [start|stop] — the focus stopwatch."""
    arg = (context.args[0] if context.args else "start").upper()
    if arg not in ("START", "STOP"):
        await update.message.reply_text("Usage: /focus [start|stop]")
        return
    try:
        state = await _owner_state(update, context)
    except StoreError:
        await update.message.reply_text("Couldn't reach my memory right now. Please try again.")
        return

    if arg == "START":
        stats = await context.bot_data["stats"].get(_owner_id(update))
        await state.focus.stopwatch_control("START", seed_seconds=stats.focus_time)
        await update.message.reply_text("Focus stopwatch running. /focus stop when done.")
    else:
        watch = await state.focus.stopwatch_control("STOP")
        hours, minutes = divmod(watch.elapsed // 60, 60)
        await update.message.reply_text(f"Focus stopwatch stopped. Total focus: {hours}h {minutes}m")


# ---------------------------------------------------------------------------
# Chat input: text, voice, photo
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — one chat turn."""
    await _chat_turn(update.message.text, update, context)


@authorized_only
async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle voice messages — transcribe via Whisper, then chat."""
    from purple.core.transcriber import transcribe_audio

    voice = update.message.voice
    tmp_path: str | None = None

    try:
        # Download voice file to a temp directory
        voice_file = await context.bot.get_file(voice.file_id)
        with tempfile.NamedTemporaryFile(suffix=".ogg", delete=False) as tmp:
            tmp_path = tmp.name
        await voice_file.download_to_drive(tmp_path)

        text = await transcribe_audio(tmp_path)
        logger.info("Voice transcribed: %s", text[:80])
    except Exception as exc:
        logger.error("Voice handling error: %s", exc)
        await update.message.reply_text(
            "Sorry, I couldn't process your voice message. Please try again."
        )
        return
    finally:
        if tmp_path:
            try:
                Path(tmp_path).unlink(missing_ok=True)
            except OSError:
                pass

    if not text:
        await update.message.reply_text("I couldn't hear anything in that one.")
        return
    await update.message.reply_text(f"🎤 I heard: {text}")
    await _chat_turn(text, update, context)


@authorized_only
async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle photos — send the largest size inline with the caption."""
    photo = update.message.photo[-1]
    try:
        photo_file = await context.bot.get_file(photo.file_id)
        data = await photo_file.download_as_bytearray()
    except Exception as exc:
        logger.error("Photo download error: %s", exc)
        await update.message.reply_text("Sorry, I couldn't download that photo. Please try again.")
        return

    data_uri = f"data:image/jpeg;base64,{base64.b64encode(bytes(data)).decode('ascii')}"
    await _chat_turn(update.message.caption or _PHOTO_PROMPT, update, context, attachment=data_uri)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _shutdown(app: Application) -> None:
    """Stop every running focus timer so no tick task outlives the app."""
    for state in app.bot_data.get("owners", {}).values():
        await state.focus.stop()
    logger.info("Focus timers stopped")


def build_app(
    store: StorePort | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: Persistence port. Defaults to SQLiteStore at DATABASE_PATH.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    from purple.core.journal import JournalService
    from purple.core.schedule import ScheduleService
    from purple.core.stats import StatsService
    from purple.core.training import TrainingService

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).post_shutdown(_shutdown).build()

    # Wire default adapters if not provided
    if store is None:
        from purple.adapters.sqlite_store import SQLiteStore
        store = SQLiteStore()

    if notifier is None:
        from purple.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    # Store ports and shared services in bot_data for handler access
    stats = StatsService(store)
    app.bot_data["store"] = store
    app.bot_data["notifier"] = notifier
    app.bot_data["stats"] = stats
    app.bot_data["training"] = TrainingService(store, stats)
    app.bot_data["schedule"] = ScheduleService(store)
    app.bot_data["journal"] = JournalService(store)
    app.bot_data["owners"] = {}

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("new", cmd_new))
    app.add_handler(CommandHandler("sessions", cmd_sessions))
    app.add_handler(CommandHandler("switch", cmd_switch))
    app.add_handler(CommandHandler("forget", cmd_forget))
    app.add_handler(CommandHandler("tasks", cmd_tasks))
    app.add_handler(CommandHandler("addtask", cmd_addtask))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("schedule", cmd_schedule))
    app.add_handler(CommandHandler("note", cmd_note))
    app.add_handler(CommandHandler("workout", cmd_workout))
    app.add_handler(CommandHandler("stats", cmd_stats))
    app.add_handler(CommandHandler("water", cmd_water))
    app.add_handler(CommandHandler("weight", cmd_weight))
    app.add_handler(CommandHandler("pomo", cmd_pomo))
    app.add_handler(CommandHandler("focus", cmd_focus))

    # Chat input
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))
    app.add_handler(MessageHandler(filters.PHOTO, handle_photo))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logger.info("Starting Purple OS bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
