"""Store port — abstract interface for the persistence gateway.

Core modules depend on this protocol, never on a specific backend.
Every call is scoped by owner through an ``eq={"user_id": ...}`` filter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class StoreError(Exception):
    """Raised when any persistence operation fails."""


@dataclass
class Filters:
    """Row filters understood by every store implementation.

    eq:    column == value
    ilike: column contains value, case-insensitively
    in_:   column IN values (an empty list matches nothing)
    """

    eq: dict[str, Any] = field(default_factory=dict)
    ilike: dict[str, str] = field(default_factory=dict)
    in_: dict[str, list[Any]] = field(default_factory=dict)


class StorePort(Protocol):
    """Abstract record store used by core modules."""

    async def insert(self, table: str, record: dict) -> dict: ...

    async def update(self, table: str, values: dict, filters: Filters) -> int: ...

    async def delete(self, table: str, filters: Filters) -> int: ...

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
        columns: list[str] | None = None,
    ) -> list[dict]: ...
