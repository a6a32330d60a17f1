"""Direct schedule edits (non-AI path): add, remove and list blocks for a day."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from purple.data.models import ScheduleBlock
from purple.ports.store_port import Filters, StoreError

if TYPE_CHECKING:
    from purple.ports.store_port import StorePort

logger = logging.getLogger(__name__)

BLOCK_TYPES = ("WORK", "GYM", "SCHOOL", "PERSONAL")


def block_from_row(row: dict) -> ScheduleBlock:
    return ScheduleBlock(
        id=row["id"],
        title=row["title"],
        start_time=row["start_time"],
        type=row.get("type") or "WORK",
        date=row.get("date") or "",
        user_id=row.get("user_id"),
    )


class ScheduleService:
    def __init__(self, store: StorePort) -> None:
        self._store = store

    async def for_date(self, user_id: str, day: str) -> list[ScheduleBlock]:
        """Blocks on ``day`` (YYYY-MM-DD) ordered by start time; [] if the store is down."""
        try:
            rows = await self._store.select(
                "schedule_blocks", Filters(eq={"user_id": user_id, "date": day}),
                order_by="start_time",
            )
        except StoreError as exc:
            logger.error("Failed to load schedule for %s: %s", day, exc)
            return []
        return [block_from_row(r) for r in rows]

    async def add(
        self, user_id: str, title: str, day: str, start_time: str, block_type: str = "WORK",
    ) -> ScheduleBlock | None:
        block_type = block_type.upper() if block_type.upper() in BLOCK_TYPES else "WORK"
        try:
            row = await self._store.insert("schedule_blocks", {
                "user_id": user_id,
                "title": title,
                "date": day,
                "start_time": start_time,
                "type": block_type,
            })
        except StoreError as exc:
            logger.error("Failed to add schedule block %r: %s", title, exc)
            return None
        return block_from_row(row)

    async def remove(self, user_id: str, block_id: str) -> bool:
        try:
            deleted = await self._store.delete(
                "schedule_blocks", Filters(eq={"user_id": user_id, "id": block_id}),
            )
        except StoreError as exc:
            logger.error("Failed to remove schedule block %s: %s", block_id, exc)
            return False
        return deleted > 0
