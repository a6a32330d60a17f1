"""Tests for purple.core.commands — command extraction, validation and execution."""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

from purple.core.commands import (
    CONFIRMATION_TEXT,
    Command,
    CommandExecutor,
    CommandResult,
    CreateTask,
    LogNote,
    extract_command,
    finalize_reply,
    parse_action,
)
from purple.ports.store_port import Filters, StoreError

USER_ID = "12345"


def _block(action, payload):
    import json
    return "```json\n" + json.dumps({"action": action, "payload": payload}) + "\n```"


def _mock_store():
    store = MagicMock()
    store.insert = AsyncMock(return_value={"id": "row-1"})
    store.update = AsyncMock(return_value=1)
    store.delete = AsyncMock(return_value=1)
    store.select = AsyncMock(return_value=[])
    return store


# ---------------------------------------------------------------------------
# extract_command
# ---------------------------------------------------------------------------


class TestExtractCommand:
    def test_strips_block_and_parses(self):
        text = 'Done.\n```json\n{"action":"CREATE_TASK","payload":{"title":"Buy milk"}}\n```'
        visible, command = extract_command(text)
        assert visible == "Done."
        assert command == Command(action="CREATE_TASK", payload={"title": "Buy milk"})

    def test_block_only_becomes_confirmation(self):
        visible, command = extract_command(_block("LOG_NOTE", {"title": "x", "content": "y"}))
        assert visible == CONFIRMATION_TEXT
        assert command.action == "LOG_NOTE"

    def test_text_around_block_is_joined_and_trimmed(self):
        text = "  Sure thing. " + _block("DELETE_TASK", {"title_keyword": "milk"}) + "  "
        visible, _ = extract_command(text)
        assert visible == "Sure thing."

    def test_nested_payload_object(self):
        text = "Ok " + _block("RESCHEDULE", {
            "title_keyword": "gym", "current_date": "2026-02-14",
            "new_date": "2026-02-15", "new_start_time": "18:00",
        })
        visible, command = extract_command(text)
        assert visible == "Ok"
        assert command.payload["new_start_time"] == "18:00"

    def test_no_block(self):
        assert extract_command("Just chatting.") == ("Just chatting.", None)

    def test_malformed_json_is_fail_open(self):
        text = 'Done.\n```json\n{"action": "CREATE_TASK", "payload": {"title": }\n```'
        visible, command = extract_command(text)
        assert command is None
        assert visible == text

    def test_missing_action_keeps_text(self):
        text = 'Here:\n```json\n{"payload": {"title": "x"}}\n```'
        assert extract_command(text) == (text, None)

    def test_non_object_payload_becomes_empty(self):
        _, command = extract_command('```json\n{"action": "DELETE_TASK", "payload": "milk"}\n```')
        assert command.payload == {}

    def test_only_first_block_is_used(self):
        text = _block("DELETE_TASK", {"title_keyword": "a"}) + "\n" + _block("DELETE_TASK", {"title_keyword": "b"})
        visible, command = extract_command(text)
        assert command.payload == {"title_keyword": "a"}
        assert '"b"' in visible


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class TestParseAction:
    def test_create_task_defaults(self):
        action = parse_action(Command("CREATE_TASK", {"title": "Buy milk"}))
        assert isinstance(action, CreateTask)
        assert (action.category, action.status, action.due_date, action.frequency) == (
            "SYSTEM", "TODO", "Today", "DAILY",
        )

    def test_null_fields_fall_back_to_defaults(self):
        action = parse_action(Command("CREATE_TASK", {"title": "x", "category": None, "due_date": ""}))
        assert action.category == "SYSTEM"
        assert action.due_date == "Today"

    def test_unknown_category_falls_back(self):
        action = parse_action(Command("CREATE_TASK", {"title": "x", "category": "chores"}))
        assert action.category == "SYSTEM"

    def test_add_schedule_defaults_to_today(self):
        action = parse_action(Command("ADD_SCHEDULE", {"title": "Deep work", "start_time": "09:00"}))
        assert action.date == datetime.now(ZoneInfo("Asia/Jerusalem")).date().isoformat()
        assert action.type == "WORK"

    def test_add_schedule_today_follows_owner_timezone(self):
        payload = {"title": "Deep work", "start_time": "09:00"}
        with patch("purple.config.settings.TIMEZONE", "Pacific/Kiritimati"):
            ahead = parse_action(Command("ADD_SCHEDULE", payload))
        with patch("purple.config.settings.TIMEZONE", "Etc/GMT+12"):
            behind = parse_action(Command("ADD_SCHEDULE", payload))

        assert ahead.date == datetime.now(ZoneInfo("Pacific/Kiritimati")).date().isoformat()
        assert behind.date == datetime.now(ZoneInfo("Etc/GMT+12")).date().isoformat()
        # 26 hours apart, so never the same calendar day
        assert ahead.date != behind.date

    def test_unknown_schedule_type_falls_back(self):
        action = parse_action(Command("ADD_SCHEDULE", {"title": "Nap", "start_time": "14:00", "type": "sleep"}))
        assert action.type == "WORK"

    def test_schedule_type_is_uppercased(self):
        action = parse_action(Command("ADD_SCHEDULE", {"title": "Lift", "start_time": "18:00", "type": "gym"}))
        assert action.type == "GYM"

    def test_log_note_never_encrypted(self):
        action = parse_action(Command("LOG_NOTE", {"title": "t", "content": "c", "is_encrypted": True}))
        assert isinstance(action, LogNote)
        assert action.is_encrypted is False
        assert action.mood == "ZEN"

    def test_unknown_action_returns_none(self):
        assert parse_action(Command("LAUNCH_ROCKET", {})) is None

    def test_missing_required_field_raises(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            parse_action(Command("DELETE_TASK", {}))


# ---------------------------------------------------------------------------
# finalize_reply
# ---------------------------------------------------------------------------


class TestFinalizeReply:
    def test_no_command(self):
        assert finalize_reply("Hi", None) == "Hi"

    def test_success_keeps_text(self):
        result = CommandResult("CREATE_TASK", True, "Task added: x", 1)
        assert finalize_reply("Done.", result) == "Done."

    def test_failure_appends_warning(self):
        result = CommandResult("DELETE_SCHEDULE", False, "Couldn't find that event.")
        assert finalize_reply("Removed it.", result) == "Removed it.\n\n⚠️ Couldn't find that event."

    def test_failure_replaces_bare_confirmation(self):
        result = CommandResult("DELETE_SCHEDULE", False, "Couldn't find that event.")
        assert finalize_reply(CONFIRMATION_TEXT, result) == "⚠️ Couldn't find that event."


# ---------------------------------------------------------------------------
# CommandExecutor: gateway calls (mocked store)
# ---------------------------------------------------------------------------


class TestExecutorGatewayCalls:
    @pytest.mark.asyncio
    async def test_create_task_single_insert_with_defaults(self):
        store = _mock_store()
        result = await CommandExecutor(store).execute(Command("CREATE_TASK", {"title": "Buy milk"}), USER_ID)

        assert result.success is True
        store.insert.assert_awaited_once()
        table, record = store.insert.call_args.args
        assert table == "tasks"
        assert record["title"] == "Buy milk"
        assert record["status"] == "TODO"
        assert record["category"] == "SYSTEM"
        assert record["due_date"] == "Today"
        assert record["user_id"] == USER_ID

    @pytest.mark.asyncio
    async def test_delete_task_uses_owner_scoped_substring_filter(self):
        store = _mock_store()
        store.delete = AsyncMock(return_value=2)
        result = await CommandExecutor(store).execute(Command("DELETE_TASK", {"title_keyword": "Milk"}), USER_ID)

        assert result.affected == 2
        store.delete.assert_awaited_once_with(
            "tasks", Filters(eq={"user_id": USER_ID}, ilike={"title": "Milk"}),
        )

    @pytest.mark.asyncio
    async def test_log_note_insert(self):
        store = _mock_store()
        await CommandExecutor(store).execute(Command("LOG_NOTE", {"title": "Idea", "content": "synth"}), USER_ID)
        table, record = store.insert.call_args.args
        assert table == "neural_logs"
        assert record["mood"] == "ZEN"
        assert record["is_encrypted"] is False

    @pytest.mark.asyncio
    async def test_add_schedule_single_insert_with_defaults(self):
        store = _mock_store()
        result = await CommandExecutor(store).execute(
            Command("ADD_SCHEDULE", {"title": "Deep work", "start_time": "09:00", "type": "meditation"}),
            USER_ID,
        )

        assert result.success is True
        assert result.affected == 1
        store.insert.assert_awaited_once()
        table, record = store.insert.call_args.args
        assert table == "schedule_blocks"
        assert record["user_id"] == USER_ID
        assert record["title"] == "Deep work"
        assert record["start_time"] == "09:00"
        assert record["type"] == "WORK"
        assert record["date"] == datetime.now(ZoneInfo("Asia/Jerusalem")).date().isoformat()

    @pytest.mark.asyncio
    async def test_unknown_action_no_side_effect(self):
        store = _mock_store()
        result = await CommandExecutor(store).execute(Command("LAUNCH_ROCKET", {"x": 1}), USER_ID)
        assert result is None
        store.insert.assert_not_awaited()
        store.delete.assert_not_awaited()
        store.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_payload_reports_failure(self):
        store = _mock_store()
        result = await CommandExecutor(store).execute(Command("ADD_SCHEDULE", {"title": "Gym"}), USER_ID)
        assert result.success is False
        assert "start_time" in result.message
        store.insert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_error_is_swallowed(self):
        store = _mock_store()
        store.insert = AsyncMock(side_effect=StoreError("db down"))
        result = await CommandExecutor(store).execute(Command("CREATE_TASK", {"title": "x"}), USER_ID)
        assert result.success is False


# ---------------------------------------------------------------------------
# CommandExecutor: effects against a real store
# ---------------------------------------------------------------------------


class TestExecutorEffects:
    @pytest.mark.asyncio
    async def test_delete_task_removes_every_match(self, store):
        for title in ("Buy MILK", "milkshake", "Bread"):
            await store.insert("tasks", {"user_id": USER_ID, "title": title})
        await store.insert("tasks", {"user_id": "someone-else", "title": "milk"})

        executor = CommandExecutor(store)
        result = await executor.execute(Command("DELETE_TASK", {"title_keyword": "milk"}), USER_ID)
        assert result.affected == 2

        remaining = await store.select("tasks", Filters(eq={"user_id": USER_ID}))
        assert [r["title"] for r in remaining] == ["Bread"]
        others = await store.select("tasks", Filters(eq={"user_id": "someone-else"}))
        assert len(others) == 1

    @pytest.mark.asyncio
    async def test_delete_task_second_time_is_noop(self, store):
        await store.insert("tasks", {"user_id": USER_ID, "title": "Buy milk"})
        executor = CommandExecutor(store)
        command = Command("DELETE_TASK", {"title_keyword": "milk"})

        first = await executor.execute(command, USER_ID)
        second = await executor.execute(command, USER_ID)
        assert first.success is True
        assert second.success is False
        assert second.affected == 0

    @pytest.mark.asyncio
    async def test_create_task_appends_each_time(self, store):
        executor = CommandExecutor(store)
        command = Command("CREATE_TASK", {"title": "Stretch"})
        await executor.execute(command, USER_ID)
        await executor.execute(command, USER_ID)
        rows = await store.select("tasks", Filters(eq={"user_id": USER_ID}))
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_delete_schedule_removes_only_first_match(self, store):
        for start in ("09:00", "10:00"):
            await store.insert("schedule_blocks", {
                "user_id": USER_ID, "title": "Dentist", "start_time": start, "date": "2026-02-14",
            })
        result = await CommandExecutor(store).execute(
            Command("DELETE_SCHEDULE", {"title_keyword": "dent", "date": "2026-02-14"}), USER_ID,
        )
        assert result.success is True
        rows = await store.select("schedule_blocks", Filters(eq={"user_id": USER_ID}))
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_delete_schedule_wrong_date_reports_not_found(self, store):
        await store.insert("schedule_blocks", {
            "user_id": USER_ID, "title": "Dentist", "start_time": "09:00", "date": "2026-02-14",
        })
        result = await CommandExecutor(store).execute(
            Command("DELETE_SCHEDULE", {"title_keyword": "dentist", "date": "2026-02-15"}), USER_ID,
        )
        assert result.success is False
        assert "Couldn't find that event" in result.message
        assert len(await store.select("schedule_blocks")) == 1

    @pytest.mark.asyncio
    async def test_reschedule_moves_block(self, store):
        await store.insert("schedule_blocks", {
            "user_id": USER_ID, "title": "Gym session", "start_time": "09:00", "date": "2026-02-14",
        })
        result = await CommandExecutor(store).execute(Command("RESCHEDULE", {
            "title_keyword": "GYM", "current_date": "2026-02-14",
            "new_date": "2026-02-15", "new_start_time": "18:00",
        }), USER_ID)

        assert result.success is True
        row = (await store.select("schedule_blocks"))[0]
        assert (row["date"], row["start_time"]) == ("2026-02-15", "18:00")

    @pytest.mark.asyncio
    async def test_reschedule_second_time_is_noop(self, store):
        await store.insert("schedule_blocks", {
            "user_id": USER_ID, "title": "Gym", "start_time": "09:00", "date": "2026-02-14",
        })
        executor = CommandExecutor(store)
        command = Command("RESCHEDULE", {
            "title_keyword": "gym", "current_date": "2026-02-14",
            "new_date": "2026-02-15", "new_start_time": "18:00",
        })
        await executor.execute(command, USER_ID)
        second = await executor.execute(command, USER_ID)
        assert second.success is False
        row = (await store.select("schedule_blocks"))[0]
        assert row["date"] == "2026-02-15"
