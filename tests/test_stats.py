"""Tests for purple.core.stats — XP, streak, hydration and weight."""

import pytest
from datetime import date
from unittest.mock import AsyncMock, MagicMock

from purple.core.stats import (
    HYDRATION_MAX_ML,
    StatsService,
    add_hydration,
    apply_xp,
    level_for,
    record_weight,
    register_visit,
    rollover_hydration,
    stats_from_row,
    stats_to_row,
)
from purple.data.models import UserStats
from purple.ports.store_port import Filters, StoreError

USER_ID = "12345"
TODAY = date(2026, 2, 14)


class TestXp:
    @pytest.mark.parametrize("xp, level", [(0, 1), (499, 1), (500, 2), (1250, 3)])
    def test_level_for(self, xp, level):
        assert level_for(xp) == level

    def test_level_follows_xp(self):
        stats = apply_xp(UserStats(user_id=USER_ID, xp=480), 50)
        assert (stats.xp, stats.level) == (530, 2)

    def test_xp_never_negative(self):
        stats = apply_xp(UserStats(user_id=USER_ID, xp=20), -150)
        assert (stats.xp, stats.level) == (0, 1)


class TestStreak:
    def test_consecutive_day_extends(self):
        stats = UserStats(user_id=USER_ID, streak=4, last_visit="2026-02-13")
        assert register_visit(stats, TODAY).streak == 5

    def test_gap_resets(self):
        stats = UserStats(user_id=USER_ID, streak=4, last_visit="2026-02-11")
        updated = register_visit(stats, TODAY)
        assert (updated.streak, updated.last_visit) == (1, "2026-02-14")

    def test_same_day_is_unchanged(self):
        stats = UserStats(user_id=USER_ID, streak=4, last_visit="2026-02-14")
        assert register_visit(stats, TODAY) is stats

    def test_first_visit(self):
        assert register_visit(UserStats(user_id=USER_ID, last_visit=""), TODAY).streak == 1

    def test_across_month_boundary(self):
        stats = UserStats(user_id=USER_ID, streak=2, last_visit="2026-02-28")
        assert register_visit(stats, date(2026, 3, 1)).streak == 3


class TestHydration:
    def test_rollover_resets_old_counter(self):
        stats = UserStats(user_id=USER_ID, hydration=1500, hydration_date="2026-02-13")
        updated = rollover_hydration(stats, TODAY)
        assert (updated.hydration, updated.hydration_date) == (0, "2026-02-14")

    def test_same_day_accumulates(self):
        stats = UserStats(user_id=USER_ID, hydration=500, hydration_date="2026-02-14")
        assert add_hydration(stats, 250, TODAY).hydration == 750

    def test_clamped_to_bounds(self):
        stats = UserStats(user_id=USER_ID, hydration=4900, hydration_date="2026-02-14")
        assert add_hydration(stats, 500, TODAY).hydration == HYDRATION_MAX_ML
        assert add_hydration(stats, -9000, TODAY).hydration == 0

    def test_stale_counter_not_carried(self):
        stats = UserStats(user_id=USER_ID, hydration=3000, hydration_date="2026-02-12")
        assert add_hydration(stats, 250, TODAY).hydration == 250


class TestWeight:
    def test_history_keeps_last_seven(self):
        stats = UserStats(user_id=USER_ID, weight_history=[80.0, 80.5, 81.0, 81.2, 81.5, 81.8, 82.0])
        updated = record_weight(stats, 82.4)
        assert updated.current_weight == 82.4
        assert updated.weight_history == [80.5, 81.0, 81.2, 81.5, 81.8, 82.0, 82.4]


class TestRowMapping:
    def test_hydration_column_name(self):
        row = stats_to_row(UserStats(user_id=USER_ID, hydration=750))
        assert row["hydration_current"] == 750
        assert "hydration" not in row

    def test_from_row(self):
        stats = stats_from_row({"user_id": USER_ID, "xp": 900, "level": 2, "hydration_current": 250})
        assert (stats.xp, stats.level, stats.hydration) == (900, 2, 250)


class TestStatsService:
    @pytest.mark.asyncio
    async def test_get_creates_row(self, store):
        stats = await StatsService(store).get(USER_ID)
        assert (stats.xp, stats.level) == (0, 1)
        rows = await store.select("user_stats", Filters(eq={"user_id": USER_ID}))
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_award_xp_persists(self, store):
        service = StatsService(store)
        await service.award_xp(USER_ID, 450)
        await service.award_xp(USER_ID, 100)
        row = (await store.select("user_stats"))[0]
        assert (row["xp"], row["level"]) == (550, 2)

    @pytest.mark.asyncio
    async def test_visit_twice_same_day(self, store):
        service = StatsService(store)
        first = await service.visit(USER_ID, TODAY)
        second = await service.visit(USER_ID, TODAY)
        assert first.streak == second.streak == 1
        assert second.last_visit == "2026-02-14"

    @pytest.mark.asyncio
    async def test_visit_next_day_extends_streak(self, store):
        service = StatsService(store)
        await service.visit(USER_ID, date(2026, 2, 13))
        stats = await service.visit(USER_ID, TODAY)
        assert stats.streak == 2

    @pytest.mark.asyncio
    async def test_add_focus_and_hydration(self, store):
        service = StatsService(store)
        await service.add_focus(USER_ID, 1500, xp=100)
        stats = await service.add_hydration(USER_ID, 250, TODAY)
        assert (stats.focus_time, stats.xp, stats.hydration) == (1500, 100, 250)

    @pytest.mark.asyncio
    async def test_log_weight_round_trips_json_history(self, store):
        service = StatsService(store)
        await service.log_weight(USER_ID, 81.9)
        stats = await service.get(USER_ID)
        assert stats.current_weight == 81.9
        assert stats.weight_history == [82.5, 81.9]

    @pytest.mark.asyncio
    async def test_store_failure_returns_cached_snapshot(self, store):
        service = StatsService(store)
        await service.award_xp(USER_ID, 100)

        service._store = MagicMock()
        service._store.select = AsyncMock(side_effect=StoreError("down"))
        stats = await service.get(USER_ID)
        assert stats.xp == 100
