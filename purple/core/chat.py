"""
Purple OS — Chat Sessions & Transcript Reconciliation.

The transcript shown for a session is the merge of what the store returned
last and what was added locally since. Local turns are written optimistically
(PENDING) and stay visible until a fetch brings back their server copy; a
message that has been confirmed once is owned by the server from then on.

Fetches can overlap (session switch, refresh after send). Each one is tagged
with a generation number at dispatch and only the latest generation is
allowed to update the transcript.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable
from zoneinfo import ZoneInfo

from purple.core.commands import CommandExecutor, CommandResult, extract_command, finalize_reply
from purple.core.context import build_context, system_prompt
from purple.core.tasks import parse_timestamp
from purple.data.models import ChatMessage, MessageState, SessionSummary
from purple.ports.store_port import Filters, StoreError

if TYPE_CHECKING:
    from purple.ports.store_port import StorePort

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Purple: Neural Link unstable. Retrying connection..."
EMPTY_REPLY = "I heard you, but my response systems are recalibrating."
NEW_SESSION_PREVIEW = "New Neural Link"
PREVIEW_LENGTH = 30

# Store-assigned ids are long opaque strings; shorter ids are client placeholders
SERVER_ID_MIN_LENGTH = 20

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

CompleteFn = Callable[..., Awaitable[str]]


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def _created(msg: ChatMessage) -> datetime:
    try:
        return parse_timestamp(msg.created_at)
    except ValueError:
        return _EPOCH


def signature(msg: ChatMessage) -> tuple[str, str, str]:
    """Content identity of a message: role, trimmed text, creation second."""
    try:
        second = parse_timestamp(msg.created_at).replace(microsecond=0).isoformat()
    except ValueError:
        second = msg.created_at[:19]
    return msg.role, msg.content.strip(), second


def message_from_row(row: dict) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        session_id=row["session_id"],
        role=row["role"],
        content=row["content"],
        created_at=row["created_at"],
        attachment=row.get("attachment"),
        client_id=row.get("client_id"),
        state=MessageState.CONFIRMED,
    )


def merge_messages(
    server: list[ChatMessage], local: list[ChatMessage], session_id: str,
) -> list[ChatMessage]:
    """Merge a fresh server fetch with the local transcript of ``session_id``.

    The server copy of a message always wins. A local message is matched to
    its server copy by id, by client id, or (for legacy rows stored without a
    client id) by signature. Unmatched PENDING messages are kept; unmatched
    CONFIRMED ones were deleted server-side and are dropped.

    Result is sorted by created_at and unique by id. Merging the same server
    set twice gives the same transcript.
    """
    server_ids: set[str] = set()
    client_ids: set[str] = set()
    signatures: set[tuple[str, str, str]] = set()
    for msg in server:
        if len(msg.id) > SERVER_ID_MIN_LENGTH:
            server_ids.add(msg.id)
        if msg.client_id:
            client_ids.add(msg.client_id)
        else:
            signatures.add(signature(msg))

    merged = [replace(msg, state=MessageState.CONFIRMED) for msg in server]
    for msg in local:
        if msg.session_id != session_id:
            continue
        if (
            msg.id in server_ids
            or (msg.client_id or msg.id) in client_ids
            or signature(msg) in signatures
        ):
            continue
        if msg.state == MessageState.PENDING:
            merged.append(msg)
        else:
            logger.debug("Dropping message %s missing from server set", msg.id)

    merged.sort(key=_created)
    seen: set[str] = set()
    unique: list[ChatMessage] = []
    for msg in merged:
        if msg.id not in seen:
            seen.add(msg.id)
            unique.append(msg)
    return unique


def _preview(text: str) -> str:
    return f"{text[:PREVIEW_LENGTH]}..."


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


@dataclass
class TurnResult:
    """Outcome of one chat turn, ready for any surface to render."""

    reply: str
    user_message: ChatMessage
    assistant_message: ChatMessage
    command: CommandResult | None = None
    degraded: bool = False        # model call failed, fallback reply used


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def _local_now() -> datetime:
    from purple.config import settings

    return datetime.now(ZoneInfo(settings.TIMEZONE))


class ChatSession:
    """One owner's chat: session list, active transcript and turn handling."""

    def __init__(
        self,
        store: StorePort,
        user_id: str,
        executor: CommandExecutor | None = None,
        complete_fn: CompleteFn | None = None,
        clock: Callable[[], datetime] = _local_now,
        owner: str | None = None,
    ) -> None:
        if complete_fn is None:
            from purple.core.llm import complete as complete_fn
        if owner is None:
            from purple.config import settings
            owner = settings.OWNER_NAME

        self._store = store
        self._user_id = user_id
        self._executor = executor or CommandExecutor(store)
        self._complete = complete_fn
        self._clock = clock
        self._owner = owner
        self._generation = 0

        self.session_id: str | None = None
        self.messages: list[ChatMessage] = []
        self.sessions: list[SessionSummary] = []

    # -- sessions ---------------------------------------------------------

    async def load_sessions(self) -> list[SessionSummary]:
        """Derive the session list from history, newest first.

        Raises StoreError: without history there is nothing to show.
        """
        rows = await self._store.select(
            "chat_history", Filters(eq={"user_id": self._user_id}),
            order_by="created_at", descending=True,
            columns=["session_id", "content", "created_at"],
        )
        summaries: dict[str, SessionSummary] = {}
        for row in rows:
            if row["session_id"] in summaries:
                continue
            summaries[row["session_id"]] = SessionSummary(
                id=row["session_id"],
                date=self._day(row["created_at"]),
                preview=_preview(row["content"]),
            )
        self.sessions = list(summaries.values())
        logger.info("Loaded %d chat session(s)", len(self.sessions))
        return self.sessions

    async def initialize(self) -> None:
        """Load sessions and open the most recent one (or a fresh one)."""
        await self.load_sessions()
        if self.sessions:
            await self.switch_session(self.sessions[0].id)
        else:
            self.new_session()

    def new_session(self) -> str:
        self._generation += 1
        self.session_id = str(uuid.uuid4())
        self.messages = []
        self.sessions.insert(0, SessionSummary(self.session_id, "Today", NEW_SESSION_PREVIEW))
        logger.info("New chat session %s", self.session_id)
        return self.session_id

    async def switch_session(self, session_id: str) -> list[ChatMessage]:
        self.session_id = session_id
        return await self.refresh()

    async def refresh(self) -> list[ChatMessage]:
        """Fetch the active session and merge it into the transcript.

        A failed fetch leaves the transcript as it was. A fetch overtaken by
        a newer one is discarded.
        """
        if self.session_id is None:
            return self.messages
        self._generation += 1
        generation = self._generation
        session_id = self.session_id

        try:
            rows = await self._store.select(
                "chat_history",
                Filters(eq={"user_id": self._user_id, "session_id": session_id}),
                order_by="created_at",
            )
        except StoreError as exc:
            logger.error("Failed to fetch session %s: %s", session_id, exc)
            return self.messages

        if generation != self._generation:
            logger.debug("Discarding stale fetch for session %s", session_id)
            return self.messages

        self.messages = merge_messages([message_from_row(r) for r in rows], self.messages, session_id)
        return self.messages

    async def delete_session(self, session_id: str) -> None:
        """Drop a session from the list now, then delete its messages."""
        self.sessions = [s for s in self.sessions if s.id != session_id]
        if session_id == self.session_id:
            self.new_session()
        try:
            deleted = await self._store.delete(
                "chat_history",
                Filters(eq={"user_id": self._user_id, "session_id": session_id}),
            )
            logger.info("Deleted session %s (%d messages)", session_id, deleted)
        except StoreError as exc:
            logger.error("Failed to delete session %s: %s", session_id, exc)

    # -- turns ------------------------------------------------------------

    async def send(self, text: str, attachment: str | None = None) -> TurnResult:
        """Run one chat turn. Never raises."""
        if self.session_id is None:
            self.new_session()
        session_id = self.session_id
        now = self._clock()

        user_msg = self._pending("user", text, session_id, attachment)
        self.messages.append(user_msg)
        stored_id = await self._persist(user_msg)

        context = await build_context(
            self._store, self._user_id, now, owner=self._owner,
            exclude_ids={stored_id} if stored_id else None,
        )

        degraded = False
        try:
            reply = await self._complete(
                system_prompt(self._owner), context,
                [{"role": "user", "content": text}], attachment,
            )
            if not reply or not reply.strip():
                reply = EMPTY_REPLY
        except Exception as exc:
            logger.error("Model call failed: %s", exc)
            reply = FALLBACK_REPLY
            degraded = True

        result = None
        if not degraded:
            visible, command = extract_command(reply)
            if command is not None:
                result = await self._executor.execute(command, self._user_id)
            reply = finalize_reply(visible, result)

        assistant_msg = self._pending("assistant", reply, session_id)
        await self._persist(assistant_msg)
        if self.session_id == session_id:
            self.messages.append(assistant_msg)
        self._touch_session(session_id, text)

        return TurnResult(
            reply=reply,
            user_message=user_msg,
            assistant_message=assistant_msg,
            command=result,
            degraded=degraded,
        )

    # -- helpers ----------------------------------------------------------

    def _pending(
        self, role: str, content: str, session_id: str, attachment: str | None = None,
    ) -> ChatMessage:
        client_id = str(uuid.uuid4())
        created = self._clock().astimezone(timezone.utc).isoformat(timespec="milliseconds")
        return ChatMessage(
            id=client_id,
            session_id=session_id,
            role=role,
            content=content,
            created_at=created,
            attachment=attachment,
            client_id=client_id,
            state=MessageState.PENDING,
        )

    async def _persist(self, msg: ChatMessage) -> str | None:
        try:
            row = await self._store.insert("chat_history", {
                "user_id": self._user_id,
                "session_id": msg.session_id,
                "role": msg.role,
                "content": msg.content,
                "attachment": msg.attachment,
                "client_id": msg.client_id,
                "created_at": msg.created_at,
            })
        except StoreError as exc:
            logger.error("Failed to save %s message: %s", msg.role, exc)
            return None
        return row["id"]

    def _touch_session(self, session_id: str, text: str) -> None:
        preview = _preview(text)
        for i, summary in enumerate(self.sessions):
            if summary.id == session_id:
                self.sessions[i] = replace(summary, preview=preview)
                return
        self.sessions.insert(0, SessionSummary(session_id, "Today", preview))

    def _day(self, created_at: str) -> str:
        try:
            return parse_timestamp(created_at).astimezone(self._clock().tzinfo).date().isoformat()
        except ValueError:
            return created_at[:10]
