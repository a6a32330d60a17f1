"""
Purple OS — Command Protocol.

The model may end any reply with ONE fenced JSON block:

    ```json
    {"action": "CREATE_TASK", "payload": {"title": "Buy Milk"}}
    ```

This module extracts that block from the free text, validates it against
a fixed six-action vocabulary, executes it against the store, and builds
the user-visible reply from the execution result (two-phase: execute
first, then finalize the confirmation text).

Parsing never raises: malformed JSON leaves the text untouched, unknown
actions are stripped and ignored.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from purple.core.schedule import BLOCK_TYPES
from purple.data.models import Frequency, TaskCategory, TaskStatus
from purple.ports.store_port import Filters

if TYPE_CHECKING:
    from purple.ports.store_port import StorePort

logger = logging.getLogger(__name__)


def _owner_today() -> str:
    from purple.config import settings

    return datetime.now(ZoneInfo(settings.TIMEZONE)).date().isoformat()


CONFIRMATION_TEXT = "Action executed successfully."

_FENCED_JSON_RE = re.compile(r"```json\s*(\{.*?\})\s*```", re.DOTALL)


# ---------------------------------------------------------------------------
# Wire contract: one model per action
# ---------------------------------------------------------------------------


class _ActionPayload(BaseModel):
    """Base for action payloads: null/blank values fall back to defaults."""

    @model_validator(mode="before")
    @classmethod
    def _drop_blank(cls, data):
        if isinstance(data, dict):
            return {
                k: v for k, v in data.items()
                if v is not None and not (isinstance(v, str) and not v.strip())
            }
        return data


class CreateTask(_ActionPayload):
    """JSON example: {"title": "Buy Milk", "category": "PERSONAL", "due_date": "Today"}"""

    action: str = "CREATE_TASK"
    title: str = Field(min_length=1)
    category: str = TaskCategory.SYSTEM.value
    status: str = TaskStatus.TODO.value
    frequency: str = Frequency.DAILY.value
    due_date: str = "Today"

    @field_validator("category")
    @classmethod
    def _known_category(cls, v: str) -> str:
        v = v.upper()
        if v not in TaskCategory.__members__:
            logger.warning("Unknown task category %r, using SYSTEM", v)
            return TaskCategory.SYSTEM.value
        return v

    @field_validator("status")
    @classmethod
    def _known_status(cls, v: str) -> str:
        v = v.upper()
        return v if v in TaskStatus.__members__ else TaskStatus.TODO.value

    @field_validator("frequency")
    @classmethod
    def _known_frequency(cls, v: str) -> str:
        v = v.upper()
        return v if v in Frequency.__members__ else Frequency.DAILY.value


class DeleteTask(_ActionPayload):
    """JSON example: {"title_keyword": "milk"}"""

    action: str = "DELETE_TASK"
    title_keyword: str = Field(min_length=1)


class AddSchedule(_ActionPayload):
    """JSON example: {"title": "Deep work", "date": "2026-02-14", "start_time": "09:00", "type": "WORK"}"""

    action: str = "ADD_SCHEDULE"
    title: str = Field(min_length=1)
    start_time: str = Field(min_length=1)   # "HH:00"
    type: str = "WORK"
    date: str = Field(default_factory=_owner_today)

    @field_validator("type")
    @classmethod
    def _known_type(cls, v: str) -> str:
        v = v.upper()
        if v not in BLOCK_TYPES:
            logger.warning("Unknown schedule type %r, using WORK", v)
            return "WORK"
        return v


class DeleteSchedule(_ActionPayload):
    """JSON example: {"title_keyword": "dentist", "date": "2026-02-14"}"""

    action: str = "DELETE_SCHEDULE"
    title_keyword: str = Field(min_length=1)
    date: str = Field(min_length=1)


class Reschedule(_ActionPayload):
    """JSON example: {"title_keyword": "gym", "current_date": "2026-02-14",
    "new_date": "2026-02-15", "new_start_time": "18:00"}"""

    action: str = "RESCHEDULE"
    title_keyword: str = Field(min_length=1)
    current_date: str = Field(min_length=1)
    new_date: str = Field(min_length=1)
    new_start_time: str = Field(min_length=1)


class LogNote(_ActionPayload):
    """JSON example: {"title": "Idea", "content": "Build a synth", "mood": "IDEA"}"""

    action: str = "LOG_NOTE"
    title: str = Field(min_length=1)
    content: str
    mood: str = "ZEN"
    is_encrypted: bool = False

    @field_validator("is_encrypted", mode="before")
    @classmethod
    def _never_encrypted(cls, v) -> bool:
        # Agent-written notes are always plain text
        return False


ActionPayload = CreateTask | DeleteTask | AddSchedule | DeleteSchedule | Reschedule | LogNote

_ACTIONS: dict[str, type[_ActionPayload]] = {
    "CREATE_TASK": CreateTask,
    "DELETE_TASK": DeleteTask,
    "ADD_SCHEDULE": AddSchedule,
    "DELETE_SCHEDULE": DeleteSchedule,
    "RESCHEDULE": Reschedule,
    "LOG_NOTE": LogNote,
}

ACTION_VOCABULARY = tuple(_ACTIONS)


@dataclass
class Command:
    """Transient command lifted out of one assistant reply."""

    action: str
    payload: dict = field(default_factory=dict)


@dataclass
class CommandResult:
    """Outcome of executing one command."""

    action: str
    success: bool
    message: str
    affected: int = 0


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def extract_command(text: str) -> tuple[str, Command | None]:
    """Split a model reply into (visible_text, command).

    Only the first fenced ```json block is considered. If it does not hold a
    JSON object with a string "action", the text comes back unchanged.
    """
    match = _FENCED_JSON_RE.search(text)
    if match is None:
        return text, None

    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        logger.warning("Discarding malformed command block: %s", exc)
        return text, None

    if not isinstance(data, dict) or not isinstance(data.get("action"), str):
        logger.warning("Command block has no string 'action', ignoring")
        return text, None

    payload = data.get("payload")
    if not isinstance(payload, dict):
        payload = {}

    visible = (text[:match.start()] + text[match.end():]).strip()
    if not visible:
        visible = CONFIRMATION_TEXT

    command = Command(action=data["action"].strip().upper(), payload=payload)
    logger.info("Extracted command %s", command.action)
    return visible, command


def parse_action(command: Command) -> ActionPayload | None:
    """Validate a command into its typed payload, or None if the action is unknown.

    Raises pydantic.ValidationError when a known action lacks required fields.
    """
    model = _ACTIONS.get(command.action)
    if model is None:
        logger.warning("Ignoring unknown action: '%s'", command.action)
        return None
    return model(**command.payload)


def finalize_reply(visible: str, result: CommandResult | None) -> str:
    """Build the text the user sees once the command outcome is known."""
    if result is None or result.success:
        return visible
    if visible == CONFIRMATION_TEXT:
        return f"⚠️ {result.message}"
    return f"{visible}\n\n⚠️ {result.message}"


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class CommandExecutor:
    """Applies validated commands to the store on behalf of one owner.

    Never raises: store failures are logged and reported as a failed
    CommandResult. Append actions are not idempotent; delete/reschedule
    actions are no-ops the second time round.
    """

    def __init__(self, store: StorePort) -> None:
        self._store = store

    async def execute(self, command: Command, user_id: str) -> CommandResult | None:
        """Run one command. Returns None for unknown actions (silently ignored)."""
        try:
            action = parse_action(command)
        except ValidationError as exc:
            missing = ", ".join(str(err["loc"][0]) for err in exc.errors() if err["loc"])
            logger.warning("Invalid %s payload: %s", command.action, exc)
            return CommandResult(
                action=command.action,
                success=False,
                message=f"That command was missing details ({missing}), nothing was changed.",
            )

        if action is None:
            return None

        try:
            result = await self._dispatch(action, user_id)
        except Exception as exc:
            logger.error("AI action %s failed: %s", command.action, exc)
            return CommandResult(
                action=command.action,
                success=False,
                message="I couldn't save that change right now. Please try again.",
            )

        logger.info(
            "AI action %s -> success=%s affected=%d",
            result.action, result.success, result.affected,
        )
        return result

    async def _dispatch(self, action: ActionPayload, user_id: str) -> CommandResult:
        if isinstance(action, CreateTask):
            return await self._create_task(action, user_id)
        if isinstance(action, DeleteTask):
            return await self._delete_task(action, user_id)
        if isinstance(action, AddSchedule):
            return await self._add_schedule(action, user_id)
        if isinstance(action, DeleteSchedule):
            return await self._delete_schedule(action, user_id)
        if isinstance(action, Reschedule):
            return await self._reschedule(action, user_id)
        return await self._log_note(action, user_id)

    async def _create_task(self, action: CreateTask, user_id: str) -> CommandResult:
        await self._store.insert("tasks", {
            "user_id": user_id,
            "title": action.title,
            "category": action.category,
            "frequency": action.frequency,
            "status": action.status,
            "due_date": action.due_date,
        })
        return CommandResult(action.action, True, f"Task added: {action.title}", 1)

    async def _delete_task(self, action: DeleteTask, user_id: str) -> CommandResult:
        deleted = await self._store.delete(
            "tasks",
            Filters(eq={"user_id": user_id}, ilike={"title": action.title_keyword}),
        )
        if not deleted:
            return CommandResult(
                action.action, False,
                f"Couldn't find a task matching '{action.title_keyword}'.",
            )
        return CommandResult(action.action, True, f"Deleted {deleted} task(s).", deleted)

    async def _add_schedule(self, action: AddSchedule, user_id: str) -> CommandResult:
        await self._store.insert("schedule_blocks", {
            "user_id": user_id,
            "title": action.title,
            "start_time": action.start_time,
            "type": action.type,
            "date": action.date,
        })
        return CommandResult(
            action.action, True,
            f"Scheduled {action.title} on {action.date} at {action.start_time}.", 1,
        )

    async def _find_block(self, user_id: str, keyword: str, on_date: str) -> dict | None:
        blocks = await self._store.select(
            "schedule_blocks",
            Filters(eq={"user_id": user_id, "date": on_date}, ilike={"title": keyword}),
            columns=["id", "title"],
            limit=1,
        )
        return blocks[0] if blocks else None

    async def _delete_schedule(self, action: DeleteSchedule, user_id: str) -> CommandResult:
        block = await self._find_block(user_id, action.title_keyword, action.date)
        if block is None:
            return CommandResult(
                action.action, False,
                f"Couldn't find that event ('{action.title_keyword}' on {action.date}).",
            )
        await self._store.delete("schedule_blocks", Filters(eq={"id": block["id"]}))
        return CommandResult(action.action, True, f"Removed {block['title']}.", 1)

    async def _reschedule(self, action: Reschedule, user_id: str) -> CommandResult:
        block = await self._find_block(user_id, action.title_keyword, action.current_date)
        if block is None:
            return CommandResult(
                action.action, False,
                f"Couldn't find that event ('{action.title_keyword}' on {action.current_date}).",
            )
        await self._store.update(
            "schedule_blocks",
            {"date": action.new_date, "start_time": action.new_start_time},
            Filters(eq={"id": block["id"]}),
        )
        return CommandResult(
            action.action, True,
            f"Moved {block['title']} to {action.new_date} at {action.new_start_time}.", 1,
        )

    async def _log_note(self, action: LogNote, user_id: str) -> CommandResult:
        await self._store.insert("neural_logs", {
            "user_id": user_id,
            "title": action.title,
            "content": action.content,
            "mood": action.mood,
            "is_encrypted": action.is_encrypted,
        })
        return CommandResult(action.action, True, f"Logged note: {action.title}", 1)
