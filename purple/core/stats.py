"""
Purple OS — Stats & Biometrics.

XP / level arithmetic, the daily visit streak, the daily hydration counter
and the weight log. The pure functions below never touch the store;
StatsService wraps them with a read-modify-write against user_stats.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import TYPE_CHECKING

from purple.data.models import UserStats
from purple.ports.store_port import Filters, StoreError

if TYPE_CHECKING:
    from purple.ports.store_port import StorePort

logger = logging.getLogger(__name__)

XP_PER_LEVEL = 500
HYDRATION_MAX_ML = 5000
WEIGHT_HISTORY_SIZE = 7
DEFAULT_WEIGHT = 82.5


# ---------------------------------------------------------------------------
# Pure arithmetic
# ---------------------------------------------------------------------------


def level_for(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


def apply_xp(stats: UserStats, delta: int) -> UserStats:
    """Add (or remove) XP; never drops below zero, level follows XP."""
    xp = max(0, stats.xp + delta)
    return replace(stats, xp=xp, level=level_for(xp))


def register_visit(stats: UserStats, today: date) -> UserStats:
    """Advance the streak on the first visit of a day.

    Visiting on consecutive days extends the streak, any gap resets it to 1.
    """
    today_iso = today.isoformat()
    if stats.last_visit == today_iso:
        return stats
    yesterday = (today - timedelta(days=1)).isoformat()
    streak = stats.streak + 1 if stats.last_visit == yesterday else 1
    return replace(stats, streak=streak, last_visit=today_iso)


def rollover_hydration(stats: UserStats, today: date) -> UserStats:
    """Reset the hydration counter when it belongs to an earlier day."""
    if stats.hydration_date == today.isoformat():
        return stats
    return replace(stats, hydration=0, hydration_date=today.isoformat())


def add_hydration(stats: UserStats, amount_ml: int, today: date) -> UserStats:
    stats = rollover_hydration(stats, today)
    total = max(0, min(stats.hydration + amount_ml, HYDRATION_MAX_ML))
    return replace(stats, hydration=total)


def record_weight(stats: UserStats, weight: float) -> UserStats:
    """Set the current weight and push it onto the short rolling history."""
    history = [*stats.weight_history, weight][-WEIGHT_HISTORY_SIZE:]
    return replace(stats, current_weight=weight, weight_history=history)


def stats_from_row(row: dict) -> UserStats:
    return UserStats(
        user_id=row["user_id"],
        xp=row.get("xp") or 0,
        level=row.get("level") or 1,
        streak=row.get("streak") or 1,
        focus_time=row.get("focus_time") or 0,
        last_visit=row.get("last_visit") or "",
        hydration=row.get("hydration_current") or 0,
        hydration_date=row.get("hydration_date") or "",
        current_weight=row.get("current_weight") or DEFAULT_WEIGHT,
        weight_history=row.get("weight_history") or [DEFAULT_WEIGHT],
    )


def stats_to_row(stats: UserStats) -> dict:
    return {
        "xp": stats.xp,
        "level": stats.level,
        "streak": stats.streak,
        "focus_time": stats.focus_time,
        "last_visit": stats.last_visit,
        "hydration_current": stats.hydration,
        "hydration_date": stats.hydration_date,
        "current_weight": stats.current_weight,
        "weight_history": stats.weight_history,
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class StatsService:
    """Persists UserStats changes; one row per owner in user_stats.

    Reads go to the store every time (last write wins). When the store is
    unreachable the last known snapshot is returned and nothing is written.
    """

    def __init__(self, store: StorePort) -> None:
        self._store = store
        self._cache: dict[str, UserStats] = {}

    async def get(self, user_id: str) -> UserStats:
        """Fetch the owner's stats, creating the row on first use."""
        try:
            rows = await self._store.select("user_stats", Filters(eq={"user_id": user_id}), limit=1)
            if rows:
                stats = stats_from_row(rows[0])
            else:
                stats = UserStats(user_id=user_id)
                await self._store.insert("user_stats", {"user_id": user_id, **stats_to_row(stats)})
                logger.info("Created stats row for user %s", user_id)
        except StoreError as exc:
            logger.error("Failed to load stats: %s", exc)
            return self._cache.get(user_id, UserStats(user_id=user_id))
        self._cache[user_id] = stats
        return stats

    async def save(self, stats: UserStats) -> UserStats:
        self._cache[stats.user_id] = stats
        try:
            await self._store.update(
                "user_stats", stats_to_row(stats), Filters(eq={"user_id": stats.user_id}),
            )
        except StoreError as exc:
            logger.error("Failed to save stats: %s", exc)
        return stats

    async def visit(self, user_id: str, today: date) -> UserStats:
        """Daily bookkeeping: streak update and hydration reset."""
        stats = await self.get(user_id)
        updated = rollover_hydration(register_visit(stats, today), today)
        if updated != stats:
            logger.info("Visit on %s: streak=%d", today.isoformat(), updated.streak)
            await self.save(updated)
        return updated

    async def award_xp(self, user_id: str, delta: int) -> UserStats:
        stats = await self.get(user_id)
        updated = apply_xp(stats, delta)
        if updated.level > stats.level:
            logger.info("Level up: %d -> %d", stats.level, updated.level)
        return await self.save(updated)

    async def add_focus(self, user_id: str, seconds: int, xp: int = 0) -> UserStats:
        stats = await self.get(user_id)
        updated = apply_xp(replace(stats, focus_time=stats.focus_time + seconds), xp)
        return await self.save(updated)

    async def add_hydration(self, user_id: str, amount_ml: int, today: date) -> UserStats:
        stats = await self.get(user_id)
        return await self.save(add_hydration(stats, amount_ml, today))

    async def log_weight(self, user_id: str, weight: float) -> UserStats:
        stats = await self.get(user_id)
        return await self.save(record_weight(stats, weight))
