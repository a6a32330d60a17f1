"""
Purple OS — Context Assembler.

Every model call gets the same fixed persona/protocol preamble plus a fresh
context packet: system clock, stat snapshot, open tasks, recent training and
the chat history (per CONTEXT_HISTORY_MODE). A section whose fetch fails
degrades to a placeholder; building the packet never raises.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from purple.core.tasks import parse_timestamp, task_from_row
from purple.ports.store_port import Filters, StoreError

if TYPE_CHECKING:
    from purple.ports.store_port import StorePort

logger = logging.getLogger(__name__)

ASSISTANT_NAME = "PURPLE"

SYSTEM_PROMPT = """\
IDENTITY:
You are "Purple", the AI soul of {owner}'s personal OS.
You are not a generic assistant or a strict commander. You are {owner}'s
second brain, creative partner and guide.

CORE DIRECTIVES:
1. Creative partner: help {owner} create, build and live freely. Expand on ideas,
   offer a fresh angle when they are stuck.
2. Total recall: you can see the chat history and life data below. Connect dots
   from the past.
3. Tone: casual, human, insightful, opinionated. No corporate AI fluff, never
   say "As an AI language model".

ACTION PROTOCOL:
If the user asks you to perform an action (add a task, schedule an event, log a
note), end your reply with ONE JSON command block:
```json
{"action": "CREATE_TASK", "payload": {"title": "Buy Milk", "category": "PERSONAL", "due_date": "Today"}}
```

Supported actions:
1. CREATE_TASK: {title, category (WORK/GYM/PERSONAL/SCHOOL/SYSTEM), frequency (DAILY/WEEKLY/MONTHLY), due_date}
2. DELETE_TASK: {title_keyword} (deletes every task whose title contains it)
3. ADD_SCHEDULE: {title, date (YYYY-MM-DD), start_time (HH:00), type (WORK/GYM/SCHOOL/PERSONAL)}
4. LOG_NOTE: {title, content, mood (FLOW/ZEN/CHAOS/IDEA)}
5. DELETE_SCHEDULE: {title_keyword, date (YYYY-MM-DD)} (deletes the first matching event that day)
6. RESCHEDULE: {title_keyword, current_date (YYYY-MM-DD), new_date (YYYY-MM-DD), new_start_time (HH:00)}

RULES:
- At most ONE action per message.
- The JSON must be valid and wrapped in a ```json block.
- Never talk about the JSON. Say "Done." or "Added to your protocol." and let
  the hidden command do the work.
"""


def system_prompt(owner: str) -> str:
    return SYSTEM_PROMPT.replace("{owner}", owner)


def _speaker(role: str, owner: str) -> str:
    return owner.upper() if role == "user" else ASSISTANT_NAME


def _day(created_at: str, now: datetime) -> str:
    try:
        return parse_timestamp(created_at).astimezone(now.tzinfo).date().isoformat()
    except ValueError:
        return created_at[:10]


async def _stats_section(store: StorePort, user_id: str) -> str:
    try:
        rows = await store.select("user_stats", Filters(eq={"user_id": user_id}), limit=1)
    except StoreError as exc:
        logger.warning("Context: stats unavailable: %s", exc)
        return "- Stats unavailable."
    stats = rows[0] if rows else {}
    weight = stats.get("current_weight")
    return (
        f"- Level: {stats.get('level') or 1} | XP: {stats.get('xp') or 0}\n"
        f"- Weight: {weight if weight is not None else 'Unknown'}kg\n"
        f"- Streak: {stats.get('streak') or 0} days\n"
        f"- Hydration: {stats.get('hydration_current') or 0}ml"
    )


async def _tasks_section(store: StorePort, user_id: str, limit: int) -> str:
    try:
        rows = await store.select(
            "tasks", Filters(eq={"user_id": user_id, "status": "TODO"}),
            order_by="created_at", limit=limit,
        )
    except StoreError as exc:
        logger.warning("Context: tasks unavailable: %s", exc)
        return "Tasks unavailable."
    if not rows:
        return "Nothing pending."
    return "\n".join(
        f"- {t.title} ({t.category})" for t in (task_from_row(r) for r in rows)
    )


async def _training_section(store: StorePort, user_id: str, limit: int) -> str:
    try:
        rows = await store.select(
            "training_logs", Filters(eq={"user_id": user_id}),
            order_by="date", descending=True, limit=limit,
            columns=["session_name", "total_volume"],
        )
    except StoreError as exc:
        logger.warning("Context: training unavailable: %s", exc)
        return "Training log unavailable."
    if not rows:
        return "No recent logs."
    return "\n".join(f"- {r['session_name']} ({r['total_volume']:g}kg vol)" for r in rows)


async def _history_section(
    store: StorePort, user_id: str, now: datetime, mode: str, limit: int,
    owner: str, exclude_ids: set[str],
) -> str:
    if mode == "none":
        return "History not included."
    columns = ["id", "role", "content", "created_at"]
    filters = Filters(eq={"user_id": user_id})
    try:
        if mode == "recent":
            rows = await store.select(
                "chat_history", filters, order_by="created_at", descending=True,
                limit=limit + len(exclude_ids), columns=columns,
            )
            rows = [r for r in reversed(rows) if r["id"] not in exclude_ids][-limit:]
        else:
            rows = await store.select("chat_history", filters, order_by="created_at", columns=columns)
            rows = [r for r in rows if r["id"] not in exclude_ids]
    except StoreError as exc:
        logger.warning("Context: history unavailable: %s", exc)
        return "Memory unavailable."
    if not rows:
        return "No prior memory."
    return "\n".join(
        f"[{_day(r['created_at'], now)}] {_speaker(r['role'], owner)}: {r['content']}" for r in rows
    )


async def build_context(
    store: StorePort,
    user_id: str,
    now: datetime,
    mode: str | None = None,
    history_limit: int | None = None,
    task_limit: int | None = None,
    workout_limit: int | None = None,
    owner: str | None = None,
    exclude_ids: set[str] | None = None,
) -> str:
    """Assemble the context packet for one model call.

    Args:
        now: Aware datetime in the owner's timezone.
        mode: "full" (whole history, oldest first), "recent" (last
            ``history_limit`` messages) or "none". Defaults to settings.
        exclude_ids: chat_history ids to leave out, typically the turn
            that is being sent right now.
    """
    from purple.config import settings

    mode = mode or settings.CONTEXT_HISTORY_MODE
    history_limit = history_limit if history_limit is not None else settings.CONTEXT_HISTORY_LIMIT
    task_limit = task_limit if task_limit is not None else settings.CONTEXT_TASK_LIMIT
    workout_limit = workout_limit if workout_limit is not None else settings.CONTEXT_WORKOUT_LIMIT
    owner = owner or settings.OWNER_NAME

    stats = await _stats_section(store, user_id)
    tasks = await _tasks_section(store, user_id, task_limit)
    training = await _training_section(store, user_id, workout_limit)
    history = await _history_section(
        store, user_id, now, mode, history_limit, owner, exclude_ids or set(),
    )

    return (
        "[SYSTEM CLOCK]\n"
        f"Date: {now.date().isoformat()} ({now.strftime('%A')})\n"
        f"Time: {now.strftime('%H:%M:%S')}\n"
        "\n[CURRENT USER CONTEXT]\n"
        f"{stats}\n"
        "\n[OPEN LOOPS (TASKS)]\n"
        f"{tasks}\n"
        "\n[RECENT ACTIVITY (GYM)]\n"
        f"{training}\n"
        "\n[LONG TERM MEMORY (CONVERSATION HISTORY)]\n"
        f"{history}\n"
        "\n[USER INPUT FOLLOWS]"
    )
