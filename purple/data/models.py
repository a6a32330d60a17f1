"""
Purple OS — Data Models.

Every record is owned by exactly one user (user_id). The persistence
gateway enforces that boundary; these dataclasses only carry the values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskCategory(str, Enum):
    WORK = "WORK"
    GYM = "GYM"
    PERSONAL = "PERSONAL"
    SCHOOL = "SCHOOL"
    SYSTEM = "SYSTEM"


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class MessageState(str, Enum):
    """Local reconciliation tag — never persisted."""

    PENDING = "PENDING"        # optimistic, not yet seen in a server fetch
    CONFIRMED = "CONFIRMED"    # came back from the store


@dataclass
class Task:
    """A to-do item. Expiry is computed from frequency + created_at, never stored."""

    id: str
    title: str
    status: str = TaskStatus.TODO.value
    category: str = TaskCategory.SYSTEM.value
    frequency: str = Frequency.DAILY.value
    due_date: str | None = None
    created_at: str = ""          # ISO datetime
    user_id: str | None = None


@dataclass
class ScheduleBlock:
    """One calendar block on a given day."""

    id: str
    title: str
    start_time: str               # "HH:00"
    type: str = "WORK"            # WORK | GYM | SCHOOL | PERSONAL
    date: str = ""                # ISO date YYYY-MM-DD
    user_id: str | None = None


@dataclass
class Note:
    """A journal entry ("neural log")."""

    id: str
    title: str
    content: str
    mood: str = "ZEN"             # FLOW | ZEN | CHAOS | IDEA
    is_encrypted: bool = False
    created_at: str = ""
    user_id: str | None = None


@dataclass
class ChatMessage:
    """A single chat turn belonging to exactly one session.

    ``client_id`` is the id the client generated before the store assigned
    one; it is persisted alongside the row so a pending local copy can be
    matched exactly once the server echoes it back.
    """

    id: str
    session_id: str
    role: str                     # "user" | "assistant"
    content: str
    created_at: str               # ISO datetime
    attachment: str | None = None  # data URI
    client_id: str | None = None
    state: MessageState = MessageState.CONFIRMED


@dataclass
class SessionSummary:
    """Derived sidebar entry for a chat session (never stored)."""

    id: str
    date: str
    preview: str


@dataclass
class Exercise:
    name: str
    weight: float
    reps: int
    sets: int = 1


@dataclass
class WorkoutLog:
    """A completed training session."""

    id: str
    session_name: str
    total_volume: float
    exercises: list[Exercise] = field(default_factory=list)
    date: str = ""                # ISO datetime
    user_id: str | None = None


@dataclass
class WorkoutHistoryItem:
    date: str                     # ISO datetime
    session_name: str


@dataclass
class GymSession:
    """One day of the weekly split."""

    day: str
    focus: str
    completed: bool = False


@dataclass
class PersonalRecord:
    name: str
    weight: float
    date: str


@dataclass
class PhysiqueEntry:
    id: str
    date: str
    image_url: str
    stats: dict = field(default_factory=dict)
    user_id: str | None = None


@dataclass
class UserStats:
    """Gamification + biometrics snapshot for the owner."""

    user_id: str
    xp: int = 0
    level: int = 1
    streak: int = 1
    focus_time: int = 0           # seconds
    last_visit: str = ""          # ISO date
    hydration: int = 0            # ml today
    hydration_date: str = ""      # ISO date the hydration counter belongs to
    current_weight: float = 82.5
    weight_history: list[float] = field(default_factory=lambda: [82.5])
