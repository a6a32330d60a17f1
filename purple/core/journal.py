"""Journal ("neural log") notes: direct add / update / delete / list."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from purple.data.models import Note
from purple.ports.store_port import Filters, StoreError

if TYPE_CHECKING:
    from purple.ports.store_port import StorePort

logger = logging.getLogger(__name__)

MOODS = ("FLOW", "ZEN", "CHAOS", "IDEA")


def note_from_row(row: dict) -> Note:
    return Note(
        id=row["id"],
        title=row["title"],
        content=row.get("content") or "",
        mood=row.get("mood") or "ZEN",
        is_encrypted=bool(row.get("is_encrypted")),
        created_at=row.get("created_at") or "",
        user_id=row.get("user_id"),
    )


class JournalService:
    def __init__(self, store: StorePort) -> None:
        self._store = store

    async def recent(self, user_id: str, limit: int = 10) -> list[Note]:
        try:
            rows = await self._store.select(
                "neural_logs", Filters(eq={"user_id": user_id}),
                order_by="created_at", descending=True, limit=limit,
            )
        except StoreError as exc:
            logger.error("Failed to load notes: %s", exc)
            return []
        return [note_from_row(r) for r in rows]

    async def add(
        self, user_id: str, title: str, content: str, mood: str = "ZEN", is_encrypted: bool = False,
    ) -> Note | None:
        mood = mood.upper() if mood.upper() in MOODS else "ZEN"
        try:
            row = await self._store.insert("neural_logs", {
                "user_id": user_id,
                "title": title,
                "content": content,
                "mood": mood,
                "is_encrypted": is_encrypted,
            })
        except StoreError as exc:
            logger.error("Failed to add note %r: %s", title, exc)
            return None
        return note_from_row(row)

    async def update(self, user_id: str, note: Note) -> bool:
        try:
            changed = await self._store.update(
                "neural_logs",
                {
                    "title": note.title,
                    "content": note.content,
                    "mood": note.mood,
                    "is_encrypted": note.is_encrypted,
                },
                Filters(eq={"user_id": user_id, "id": note.id}),
            )
        except StoreError as exc:
            logger.error("Failed to update note %s: %s", note.id, exc)
            return False
        return changed > 0

    async def delete(self, user_id: str, note_id: str) -> bool:
        try:
            deleted = await self._store.delete(
                "neural_logs", Filters(eq={"user_id": user_id, "id": note_id}),
            )
        except StoreError as exc:
            logger.error("Failed to delete note %s: %s", note_id, exc)
            return False
        return deleted > 0
