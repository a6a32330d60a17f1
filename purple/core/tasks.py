"""
Purple OS — Task Lifecycle.

Tasks recur by frequency and expire on load:

    DAILY    created before local midnight of "now"
    WEEKLY   created more than 7 x 24 h ago
    MONTHLY  created more than 30 x 24 h ago

Expired tasks are hard-deleted in one batched call when the list is
loaded. Toggling status never triggers expiry.

Older rows stored the frequency inside the category as
"<FREQUENCY>::<CATEGORY>". The store now keeps two columns (LifeDB migrates
old rows on startup) but the read path still decodes any compound value.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from purple.data.models import Frequency, Task, TaskCategory, TaskStatus
from purple.ports.store_port import Filters, StoreError

if TYPE_CHECKING:
    from purple.core.stats import StatsService
    from purple.ports.store_port import StorePort

logger = logging.getLogger(__name__)

CATEGORY_SEPARATOR = "::"

TASK_XP = 50

_MAX_AGE: dict[str, timedelta] = {
    Frequency.WEEKLY.value: timedelta(days=7),
    Frequency.MONTHLY.value: timedelta(days=30),
}


# ---------------------------------------------------------------------------
# Category / frequency convention
# ---------------------------------------------------------------------------


def encode_category(frequency: str, category: str) -> str:
    """Legacy single-column form: ``encode_category("WEEKLY", "WORK") == "WEEKLY::WORK"``."""
    return f"{frequency}{CATEGORY_SEPARATOR}{category}"


def decode_category(raw: str | None) -> tuple[str, str]:
    """Split a stored category into (frequency, category).

    A bare category (no separator) is a legacy DAILY task.
    """
    if not raw:
        return Frequency.DAILY.value, TaskCategory.SYSTEM.value
    if CATEGORY_SEPARATOR not in raw:
        return Frequency.DAILY.value, raw
    frequency, category = raw.split(CATEGORY_SEPARATOR, 1)
    return frequency or Frequency.DAILY.value, category or TaskCategory.SYSTEM.value


def task_from_row(row: dict) -> Task:
    raw_category = row.get("category") or TaskCategory.SYSTEM.value
    if CATEGORY_SEPARATOR in raw_category:
        frequency, category = decode_category(raw_category)
    else:
        frequency = row.get("frequency") or Frequency.DAILY.value
        category = raw_category
    return Task(
        id=row["id"],
        title=row["title"],
        status=row.get("status") or TaskStatus.TODO.value,
        category=category,
        frequency=frequency,
        due_date=row.get("due_date"),
        created_at=row.get("created_at") or "",
        user_id=row.get("user_id"),
    )


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


def parse_timestamp(value: str, tz=None) -> datetime:
    """Parse an ISO timestamp; naive values are taken to be in ``tz`` (UTC by default)."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz or timezone.utc)
    return parsed


def is_expired(task: Task, now: datetime) -> bool:
    """True when the task's frequency window has elapsed as of ``now``."""
    if now.tzinfo is None:
        now = now.astimezone()
    try:
        created = parse_timestamp(task.created_at, now.tzinfo)
    except ValueError:
        logger.warning("Task %s has unreadable created_at %r, keeping it", task.id, task.created_at)
        return False

    max_age = _MAX_AGE.get(task.frequency)
    if max_age is not None:
        return now - created > max_age

    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return created < midnight


def sweep(tasks: list[Task], now: datetime) -> tuple[list[Task], list[Task]]:
    """Partition tasks into (keep, expired), preserving order."""
    keep: list[Task] = []
    expired: list[Task] = []
    for task in tasks:
        (expired if is_expired(task, now) else keep).append(task)
    return keep, expired


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class TaskManager:
    """Loads, sweeps and edits one owner's tasks.

    Keeps the last successfully loaded list so a failed fetch degrades to
    stale data rather than an empty view.
    """

    def __init__(self, store: StorePort, stats: StatsService | None = None) -> None:
        self._store = store
        self._stats = stats
        self.tasks: list[Task] = []

    async def load(self, user_id: str, now: datetime) -> list[Task]:
        try:
            rows = await self._store.select(
                "tasks", Filters(eq={"user_id": user_id}),
                order_by="created_at", descending=True,
            )
        except StoreError as exc:
            logger.error("Failed to load tasks: %s", exc)
            return self.tasks

        keep, expired = sweep([task_from_row(r) for r in rows], now)
        if expired:
            try:
                await self._store.delete(
                    "tasks",
                    Filters(eq={"user_id": user_id}, in_={"id": [t.id for t in expired]}),
                )
                logger.info("Expired %d task(s)", len(expired))
            except StoreError as exc:
                logger.error("Failed to delete %d expired task(s): %s", len(expired), exc)

        self.tasks = keep
        return keep

    async def add(
        self,
        user_id: str,
        title: str,
        category: str = TaskCategory.SYSTEM.value,
        frequency: str = Frequency.DAILY.value,
        due_date: str = "Today",
    ) -> Task | None:
        try:
            row = await self._store.insert("tasks", {
                "user_id": user_id,
                "title": title,
                "status": TaskStatus.TODO.value,
                "category": category,
                "frequency": frequency,
                "due_date": due_date,
            })
        except StoreError as exc:
            logger.error("Failed to add task %r: %s", title, exc)
            return None
        task = task_from_row(row)
        self.tasks.insert(0, task)
        return task

    async def _get(self, user_id: str, task_id: str) -> Task | None:
        rows = await self._store.select(
            "tasks", Filters(eq={"user_id": user_id, "id": task_id}), limit=1,
        )
        return task_from_row(rows[0]) if rows else None

    async def toggle(self, user_id: str, task_id: str) -> Task | None:
        """Flip DONE <-> TODO. Completing awards XP, reopening takes it back."""
        try:
            task = await self._get(user_id, task_id)
            if task is None:
                return None
            done = task.status != TaskStatus.DONE.value
            task.status = TaskStatus.DONE.value if done else TaskStatus.TODO.value
            await self._store.update(
                "tasks", {"status": task.status}, Filters(eq={"user_id": user_id, "id": task_id}),
            )
        except StoreError as exc:
            logger.error("Failed to toggle task %s: %s", task_id, exc)
            return None

        self._replace_cached(task)
        if self._stats is not None:
            await self._stats.award_xp(user_id, TASK_XP if done else -TASK_XP)
        return task

    async def edit(
        self,
        user_id: str,
        task_id: str,
        title: str | None = None,
        category: str | None = None,
        frequency: str | None = None,
    ) -> bool:
        values = {
            k: v for k, v in
            (("title", title), ("category", category), ("frequency", frequency))
            if v is not None
        }
        if not values:
            return False
        try:
            changed = await self._store.update(
                "tasks", values, Filters(eq={"user_id": user_id, "id": task_id}),
            )
        except StoreError as exc:
            logger.error("Failed to edit task %s: %s", task_id, exc)
            return False
        for task in self.tasks:
            if task.id == task_id:
                for key, value in values.items():
                    setattr(task, key, value)
        return bool(changed)

    async def delete(self, user_id: str, task_id: str) -> bool:
        """Delete a task. Deleting a completed task forfeits its XP."""
        try:
            task = await self._get(user_id, task_id)
            if task is None:
                return False
            await self._store.delete("tasks", Filters(eq={"user_id": user_id, "id": task_id}))
        except StoreError as exc:
            logger.error("Failed to delete task %s: %s", task_id, exc)
            return False

        self.tasks = [t for t in self.tasks if t.id != task_id]
        if self._stats is not None and task.status == TaskStatus.DONE.value:
            await self._stats.award_xp(user_id, -TASK_XP)
        return True

    def _replace_cached(self, task: Task) -> None:
        self.tasks = [task if t.id == task.id else t for t in self.tasks]
