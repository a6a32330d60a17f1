"""Tests for purple.core.schedule and purple.core.journal — direct edits."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from purple.core.journal import JournalService
from purple.core.schedule import ScheduleService
from purple.ports.store_port import StoreError

USER_ID = "12345"


class TestScheduleService:
    @pytest.mark.asyncio
    async def test_add_and_list_in_start_order(self, store):
        service = ScheduleService(store)
        await service.add(USER_ID, "Gym", "2026-02-14", "18:00", "gym")
        await service.add(USER_ID, "Standup", "2026-02-14", "09:00")
        await service.add(USER_ID, "Tomorrow", "2026-02-15", "09:00")

        blocks = await service.for_date(USER_ID, "2026-02-14")

        assert [(b.start_time, b.title, b.type) for b in blocks] == [
            ("09:00", "Standup", "WORK"), ("18:00", "Gym", "GYM"),
        ]

    @pytest.mark.asyncio
    async def test_unknown_type_falls_back(self, store):
        block = await ScheduleService(store).add(USER_ID, "Nap", "2026-02-14", "14:00", "SLEEP")
        assert block.type == "WORK"

    @pytest.mark.asyncio
    async def test_remove(self, store):
        service = ScheduleService(store)
        block = await service.add(USER_ID, "Standup", "2026-02-14", "09:00")
        assert await service.remove(USER_ID, block.id) is True
        assert await service.remove(USER_ID, block.id) is False

    @pytest.mark.asyncio
    async def test_store_down(self):
        store = MagicMock()
        store.select = AsyncMock(side_effect=StoreError("down"))
        assert await ScheduleService(store).for_date(USER_ID, "2026-02-14") == []


class TestJournalService:
    @pytest.mark.asyncio
    async def test_add_update_delete(self, store):
        service = JournalService(store)
        note = await service.add(USER_ID, "Idea", "garden bot", mood="idea")
        assert note.mood == "IDEA"

        note.content = "garden bot with sensors"
        assert await service.update(USER_ID, note) is True
        assert (await service.recent(USER_ID))[0].content == "garden bot with sensors"

        assert await service.delete(USER_ID, note.id) is True
        assert await service.recent(USER_ID) == []

    @pytest.mark.asyncio
    async def test_unknown_mood_defaults_to_zen(self, store):
        note = await JournalService(store).add(USER_ID, "Day", "fine", mood="meh")
        assert note.mood == "ZEN"
        assert note.is_encrypted is False

    @pytest.mark.asyncio
    async def test_insert_failure_returns_none(self):
        store = MagicMock()
        store.insert = AsyncMock(side_effect=StoreError("down"))
        assert await JournalService(store).add(USER_ID, "Idea", "x") is None
