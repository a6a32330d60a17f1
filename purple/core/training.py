"""
Purple OS — Training Estimators.

Everything here is derived from the workout history (training_logs):

- fatigue per muscle group, decaying linearly from 50 points per session,
- the Monday-based weekly split and its adherence ratio,
- tonnage of a logged workout,
- personal records for the three big lifts.

Workouts are logged through TrainingService, which also pays out XP.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from purple.core.tasks import parse_timestamp
from purple.data.models import Exercise, GymSession, PersonalRecord, WorkoutHistoryItem, WorkoutLog
from purple.ports.store_port import Filters, StoreError

if TYPE_CHECKING:
    from purple.core.stats import StatsService
    from purple.ports.store_port import StorePort

logger = logging.getLogger(__name__)

SESSION_FATIGUE = 50.0
FATIGUE_DECAY_PER_HOUR = 25 / 24
FATIGUE_CAP = 100

MUSCLE_GROUPS = ("PUSH", "PULL", "LEGS")

WORKOUT_XP = 150

PR_LIFTS = ("Bench Press", "Squat", "Deadlift")

WEEKLY_WORKOUTS: tuple[tuple[str, str], ...] = (
    ("Mon", "Push A"),
    ("Tue", "Pull A"),
    ("Wed", "Legs A"),
    ("Thu", "Rest"),
    ("Fri", "Push B"),
    ("Sat", "Pull B"),
    ("Sun", "Legs B"),
)


# ---------------------------------------------------------------------------
# Week arithmetic
# ---------------------------------------------------------------------------


def start_of_week(now: datetime) -> datetime:
    """Monday 00:00 of the week containing ``now`` (same tz as ``now``)."""
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def _logged_at(item: WorkoutHistoryItem, now: datetime) -> datetime | None:
    try:
        return parse_timestamp(item.date, now.tzinfo)
    except ValueError:
        logger.warning("Skipping workout with unreadable date %r", item.date)
        return None


def _this_week(history: list[WorkoutHistoryItem], now: datetime) -> list[tuple[WorkoutHistoryItem, datetime]]:
    if now.tzinfo is None:
        now = now.astimezone()
    week_start = start_of_week(now)
    dated = ((item, _logged_at(item, now)) for item in history)
    return [(item, at) for item, at in dated if at is not None and at >= week_start]


# ---------------------------------------------------------------------------
# Fatigue
# ---------------------------------------------------------------------------


def calculate_fatigue(group: str, history: list[WorkoutHistoryItem], now: datetime) -> int:
    """Fatigue score 0..100 for a muscle group.

    Each session this week whose name contains the group adds 50 points,
    decaying by 25 every 24 h and never contributing less than zero.
    """
    if now.tzinfo is None:
        now = now.astimezone()
    fatigue = 0.0
    for item, logged_at in _this_week(history, now):
        if group.upper() not in item.session_name.upper():
            continue
        hours = (now - logged_at).total_seconds() / 3600
        remaining = SESSION_FATIGUE - hours * FATIGUE_DECAY_PER_HOUR
        if remaining > 0:
            fatigue += remaining
    return min(round(fatigue), FATIGUE_CAP)


def system_status(fatigue: int) -> str:
    if fatigue >= 75:
        return "CRITICAL"
    if fatigue >= 26:
        return "RECOVERING"
    return "FRESH"


# ---------------------------------------------------------------------------
# Weekly split & adherence
# ---------------------------------------------------------------------------


def weekly_sessions(history: list[WorkoutHistoryItem], now: datetime) -> list[GymSession]:
    """The weekly split, each day marked completed if logged this week."""
    done = {item.session_name for item, _ in _this_week(history, now)}
    return [GymSession(day=day, focus=focus, completed=focus in done) for day, focus in WEEKLY_WORKOUTS]


def adherence(sessions: list[GymSession], now: datetime) -> int:
    """Percent of the days so far this week (Monday included) that were completed."""
    days_passed = now.weekday() + 1
    completed = sum(1 for s in sessions[:days_passed] if s.completed)
    return round(completed / days_passed * 100)


# ---------------------------------------------------------------------------
# Volume & records
# ---------------------------------------------------------------------------


def total_volume(exercises: list[Exercise]) -> float:
    """Tonnage: weight x reps x sets summed over the logged exercises."""
    return sum(ex.weight * ex.reps * ex.sets for ex in exercises)


def personal_records(logs: list[WorkoutLog]) -> list[PersonalRecord]:
    """Heaviest logged weight per big lift; 0 when never logged.

    An exercise counts towards a lift when its name contains the lift name,
    so "Flat Bench Press" and "Barbell Squat" both qualify.
    """
    records = {name: PersonalRecord(name=name, weight=0, date="") for name in PR_LIFTS}
    for log in logs:
        for ex in log.exercises:
            lift = next((name for name in reversed(PR_LIFTS) if name in ex.name), None)
            if lift and ex.weight > records[lift].weight:
                records[lift] = PersonalRecord(name=lift, weight=ex.weight, date=log.date[:10])
    return list(records.values())


def workout_from_row(row: dict) -> WorkoutLog:
    exercises = [
        Exercise(
            name=ex.get("name", ""),
            weight=ex.get("weight") or 0,
            reps=ex.get("reps") or 0,
            sets=ex.get("sets") or 1,
        )
        for ex in row.get("exercises") or []
    ]
    return WorkoutLog(
        id=row["id"],
        session_name=row["session_name"],
        total_volume=row.get("total_volume") or 0,
        exercises=exercises,
        date=row.get("date") or "",
        user_id=row.get("user_id"),
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TrainingService:
    """Workout logging and the derived gym dashboard."""

    def __init__(self, store: StorePort, stats: StatsService | None = None) -> None:
        self._store = store
        self._stats = stats

    async def history(self, user_id: str) -> list[WorkoutLog]:
        try:
            rows = await self._store.select(
                "training_logs", Filters(eq={"user_id": user_id}), order_by="date",
            )
        except StoreError as exc:
            logger.error("Failed to load training history: %s", exc)
            return []
        return [workout_from_row(r) for r in rows]

    async def log_workout(
        self, user_id: str, session_name: str, exercises: list[Exercise], now: datetime,
    ) -> WorkoutLog | None:
        """Store a completed session and award XP for it."""
        volume = total_volume(exercises)
        try:
            row = await self._store.insert("training_logs", {
                "user_id": user_id,
                "session_name": session_name,
                "total_volume": volume,
                "exercises": [asdict(ex) for ex in exercises],
                "date": now.isoformat(),
            })
        except StoreError as exc:
            logger.error("Failed to log workout %s: %s", session_name, exc)
            return None

        logger.info("Logged %s: %.0f kg volume", session_name, volume)
        if self._stats is not None:
            await self._stats.award_xp(user_id, WORKOUT_XP)
        return workout_from_row(row)

    async def reset_workout(self, user_id: str) -> None:
        """Take back the XP of a workout marked done by mistake. History is kept."""
        if self._stats is not None:
            await self._stats.award_xp(user_id, -WORKOUT_XP)

    async def dashboard(self, user_id: str, now: datetime) -> dict:
        logs = await self.history(user_id)
        items = [WorkoutHistoryItem(date=log.date, session_name=log.session_name) for log in logs]
        sessions = weekly_sessions(items, now)
        fatigue = {group: calculate_fatigue(group, items, now) for group in MUSCLE_GROUPS}
        return {
            "sessions": sessions,
            "adherence": adherence(sessions, now),
            "fatigue": {g: (score, system_status(score)) for g, score in fatigue.items()},
            "records": personal_records(logs),
        }
