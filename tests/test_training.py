"""Tests for purple.core.training — fatigue, adherence, volume and records."""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from purple.core.training import (
    TrainingService,
    adherence,
    calculate_fatigue,
    personal_records,
    start_of_week,
    system_status,
    total_volume,
    weekly_sessions,
)
from purple.data.models import Exercise, WorkoutHistoryItem, WorkoutLog

USER_ID = "12345"
WEDNESDAY = datetime(2026, 2, 18, 12, 0, tzinfo=timezone.utc)


def _item(name, at):
    return WorkoutHistoryItem(date=at.isoformat(), session_name=name)


class TestWeek:
    def test_start_of_week_is_monday_midnight(self):
        assert start_of_week(WEDNESDAY) == datetime(2026, 2, 16, tzinfo=timezone.utc)

    def test_monday_is_its_own_week_start(self):
        monday = datetime(2026, 2, 16, 0, 0, 1, tzinfo=timezone.utc)
        assert start_of_week(monday) == datetime(2026, 2, 16, tzinfo=timezone.utc)


class TestFatigue:
    def test_fresh_session(self):
        history = [_item("Push A", WEDNESDAY)]
        assert calculate_fatigue("PUSH", history, WEDNESDAY) == 50

    def test_decays_25_per_day(self):
        history = [_item("Push A", WEDNESDAY - timedelta(hours=24))]
        assert calculate_fatigue("PUSH", history, WEDNESDAY) == 25

    def test_fully_decayed_after_two_days(self):
        history = [_item("Push A", WEDNESDAY - timedelta(hours=49))]
        assert calculate_fatigue("PUSH", history, WEDNESDAY) == 0

    def test_sessions_stack_and_cap(self):
        history = [
            _item("Push A", WEDNESDAY),
            _item("Push B", WEDNESDAY - timedelta(hours=12)),
        ]
        assert calculate_fatigue("PUSH", history, WEDNESDAY) == 88
        history.append(_item("Push A", WEDNESDAY - timedelta(hours=1)))
        assert calculate_fatigue("PUSH", history, WEDNESDAY) == 100

    def test_other_groups_unaffected(self):
        history = [_item("Legs A", WEDNESDAY)]
        assert calculate_fatigue("PULL", history, WEDNESDAY) == 0
        assert calculate_fatigue("legs", history, WEDNESDAY) == 50

    def test_last_week_does_not_count(self):
        monday_early = datetime(2026, 2, 16, 1, 0, tzinfo=timezone.utc)
        history = [_item("Pull A", datetime(2026, 2, 15, 23, 0, tzinfo=timezone.utc))]
        assert calculate_fatigue("PULL", history, monday_early) == 0

    @pytest.mark.parametrize("score, status", [
        (0, "FRESH"), (25, "FRESH"), (26, "RECOVERING"), (74, "RECOVERING"), (75, "CRITICAL"),
    ])
    def test_status_thresholds(self, score, status):
        assert system_status(score) == status


class TestAdherence:
    def test_weekly_split_marks_completed(self):
        history = [
            _item("Push A", datetime(2026, 2, 16, 18, 0, tzinfo=timezone.utc)),
            _item("Legs A", WEDNESDAY),
            _item("Pull A", datetime(2026, 2, 10, 18, 0, tzinfo=timezone.utc)),  # last week
        ]
        sessions = weekly_sessions(history, WEDNESDAY)
        assert [s.completed for s in sessions] == [True, False, True, False, False, False, False]
        assert adherence(sessions, WEDNESDAY) == 67

    def test_monday_with_nothing_logged(self):
        monday = datetime(2026, 2, 16, 9, 0, tzinfo=timezone.utc)
        assert adherence(weekly_sessions([], monday), monday) == 0


class TestVolumeAndRecords:
    def test_total_volume_counts_sets(self):
        exercises = [Exercise("Bench Press", 100, 5, 3), Exercise("Row", 60, 10)]
        assert total_volume(exercises) == 2100

    def test_personal_records(self):
        logs = [
            WorkoutLog("1", "Push A", 0, [Exercise("Bench Press", 100, 5)], "2026-02-09T18:00:00+00:00"),
            WorkoutLog("2", "Push B", 0, [Exercise("Flat Bench Press", 105, 3)], "2026-02-13T18:00:00+00:00"),
            WorkoutLog("3", "Legs A", 0, [Exercise("Deadlift", 160, 3)], "2026-02-11T18:00:00+00:00"),
        ]
        records = {r.name: r for r in personal_records(logs)}
        assert (records["Bench Press"].weight, records["Bench Press"].date) == (105, "2026-02-13")
        assert records["Deadlift"].weight == 160
        assert records["Squat"].weight == 0


class TestTrainingService:
    @pytest.mark.asyncio
    async def test_log_workout_stores_volume_and_awards_xp(self, store):
        stats = MagicMock()
        stats.award_xp = AsyncMock()
        service = TrainingService(store, stats)

        log = await service.log_workout(
            USER_ID, "Push A", [Exercise("Bench Press", 100, 5, 3)], WEDNESDAY,
        )

        assert log.total_volume == 1500
        assert log.exercises == [Exercise("Bench Press", 100, 5, 3)]
        stats.award_xp.assert_awaited_once_with(USER_ID, 150)

    @pytest.mark.asyncio
    async def test_reset_workout_revokes_xp(self, store):
        stats = MagicMock()
        stats.award_xp = AsyncMock()
        await TrainingService(store, stats).reset_workout(USER_ID)
        stats.award_xp.assert_awaited_once_with(USER_ID, -150)

    @pytest.mark.asyncio
    async def test_dashboard(self, store):
        service = TrainingService(store)
        await service.log_workout(USER_ID, "Push A", [Exercise("Bench Press", 90, 5)], WEDNESDAY)

        dashboard = await service.dashboard(USER_ID, WEDNESDAY)

        assert dashboard["fatigue"]["PUSH"] == (50, "RECOVERING")
        assert dashboard["fatigue"]["LEGS"] == (0, "FRESH")
        assert dashboard["sessions"][0].completed is True
        assert dashboard["adherence"] == 33
        assert {r.name: r.weight for r in dashboard["records"]}["Bench Press"] == 90
