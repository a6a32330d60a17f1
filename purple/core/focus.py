"""
Purple OS — Focus Timers.

Two explicit state machines share one tick source:

- the pomodoro countdown (IDLE -> ENGAGED -> PAUSED / COMPLETE),
- the focus stopwatch, which accrues focus time while running.

Both are pure reducers: ``reduce(state, event, payload) -> (state, effects)``.
Rewards are tied to checkpoints rather than to individual ticks, so a
coalesced tick of N seconds (event loop stall, sleep/wake) pays out exactly
what N separate one-second ticks would have, and a completion is rewarded
once. FocusTimer is the asyncio driver that feeds real elapsed time into
the reducers and applies their effects.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from purple.core.stats import StatsService
    from purple.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


class FocusMode(str, Enum):
    DEEP = "DEEP"
    STANDARD = "STANDARD"
    QUICK = "QUICK"


class PomoStatus(str, Enum):
    IDLE = "IDLE"
    ENGAGED = "ENGAGED"
    PAUSED = "PAUSED"
    COMPLETE = "COMPLETE"


# mode -> (minutes, xp reward)
POMO_MODES: dict[FocusMode, tuple[int, int]] = {
    FocusMode.DEEP: (50, 150),
    FocusMode.STANDARD: (25, 60),
    FocusMode.QUICK: (15, 30),
}

STOPWATCH_XP = 10
STOPWATCH_XP_EVERY = 600     # seconds of focus per XP payout
STOPWATCH_SAVE_EVERY = 60    # seconds of focus per stats write


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionComplete:
    """A pomodoro ran to zero: credit its full length and reward."""

    mode: FocusMode
    seconds: int
    xp: int


@dataclass(frozen=True)
class FocusProgress:
    """Stopwatch checkpoint: seconds and XP accrued since the last save."""

    seconds: int
    xp: int


# ---------------------------------------------------------------------------
# Pomodoro
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PomoState:
    mode: FocusMode = FocusMode.STANDARD
    time_left: int = 25 * 60
    initial_time: int = 25 * 60
    status: PomoStatus = PomoStatus.IDLE
    rewarded: bool = False

    @classmethod
    def for_mode(cls, mode: FocusMode) -> PomoState:
        seconds = POMO_MODES[mode][0] * 60
        return cls(mode=mode, time_left=seconds, initial_time=seconds)


def pomo_reduce(state: PomoState, event: str, payload=None) -> tuple[PomoState, list]:
    """Events: START, PAUSE, RESET, MODE (payload=FocusMode), TICK (payload=seconds)."""
    if event == "START":
        if state.status == PomoStatus.COMPLETE:
            state = PomoState.for_mode(state.mode)
        return replace(state, status=PomoStatus.ENGAGED), []

    if event == "PAUSE":
        if state.status != PomoStatus.ENGAGED:
            return state, []
        return replace(state, status=PomoStatus.PAUSED), []

    if event == "RESET":
        return replace(
            state, time_left=state.initial_time, status=PomoStatus.IDLE, rewarded=False,
        ), []

    if event == "MODE":
        return PomoState.for_mode(FocusMode(payload)), []

    if event == "TICK":
        if state.status != PomoStatus.ENGAGED:
            return state, []
        time_left = max(0, state.time_left - int(payload or 1))
        if time_left > 0:
            return replace(state, time_left=time_left), []
        effects = []
        if not state.rewarded:
            effects.append(SessionComplete(state.mode, state.initial_time, POMO_MODES[state.mode][1]))
        return replace(state, time_left=0, status=PomoStatus.COMPLETE, rewarded=True), effects

    raise ValueError(f"Unknown pomodoro event: {event!r}")


# ---------------------------------------------------------------------------
# Stopwatch
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StopwatchState:
    running: bool = False
    elapsed: int = 0          # total focus seconds (lifetime, seeds from stats)
    unsaved_seconds: int = 0
    unsaved_xp: int = 0


def stopwatch_reduce(state: StopwatchState, event: str, payload=None) -> tuple[StopwatchState, list]:
    """Events: START, STOP (flushes unsaved progress), TICK (payload=seconds)."""
    if event == "START":
        return replace(state, running=True), []

    if event == "STOP":
        state = replace(state, running=False)
        if not state.unsaved_seconds and not state.unsaved_xp:
            return state, []
        flushed = FocusProgress(state.unsaved_seconds, state.unsaved_xp)
        return replace(state, unsaved_seconds=0, unsaved_xp=0), [flushed]

    if event == "TICK":
        if not state.running:
            return state, []
        seconds = int(payload or 1)
        before, after = state.elapsed, state.elapsed + seconds
        xp = (after // STOPWATCH_XP_EVERY - before // STOPWATCH_XP_EVERY) * STOPWATCH_XP
        state = replace(
            state,
            elapsed=after,
            unsaved_seconds=state.unsaved_seconds + seconds,
            unsaved_xp=state.unsaved_xp + xp,
        )
        if after // STOPWATCH_SAVE_EVERY == before // STOPWATCH_SAVE_EVERY:
            return state, []
        progress = FocusProgress(state.unsaved_seconds, state.unsaved_xp)
        return replace(state, unsaved_seconds=0, unsaved_xp=0), [progress]

    raise ValueError(f"Unknown stopwatch event: {event!r}")


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class FocusTimer:
    """Runs both focus machines off one asyncio tick task for a single owner.

    The tick task is started lazily by the first START and must be stopped
    with ``await stop()`` on teardown.
    """

    def __init__(
        self,
        stats: StatsService,
        user_id: str,
        notifier: NotificationPort | None = None,
        chat_id: int | None = None,
        tick_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stats = stats
        self._user_id = user_id
        self._notifier = notifier
        self._chat_id = chat_id
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._task: asyncio.Task | None = None
        self.pomo = PomoState()
        self.stopwatch = StopwatchState()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def pomo_control(self, event: str, payload=None) -> PomoState:
        self.pomo, effects = pomo_reduce(self.pomo, event, payload)
        await self._apply(effects)
        if self.pomo.status == PomoStatus.ENGAGED:
            self._ensure_ticking()
        return self.pomo

    async def stopwatch_control(self, event: str, seed_seconds: int | None = None) -> StopwatchState:
        if event == "START" and seed_seconds is not None and not self.stopwatch.running:
            self.stopwatch = replace(self.stopwatch, elapsed=seed_seconds)
        self.stopwatch, effects = stopwatch_reduce(self.stopwatch, event)
        await self._apply(effects)
        if self.stopwatch.running:
            self._ensure_ticking()
        return self.stopwatch

    async def tick(self, seconds: int) -> None:
        """Advance both machines by ``seconds`` of wall time."""
        self.pomo, pomo_effects = pomo_reduce(self.pomo, "TICK", seconds)
        self.stopwatch, watch_effects = stopwatch_reduce(self.stopwatch, "TICK", seconds)
        await self._apply(pomo_effects + watch_effects)

    async def stop(self) -> None:
        """Cancel the tick task and flush any unsaved stopwatch progress."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.stopwatch, effects = stopwatch_reduce(self.stopwatch, "STOP")
        await self._apply(effects)

    def _ensure_ticking(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        last = self._clock()
        carry = 0.0
        while self.pomo.status == PomoStatus.ENGAGED or self.stopwatch.running:
            await asyncio.sleep(self._tick_seconds)
            now = self._clock()
            carry += now - last
            last = now
            seconds = int(carry)
            if seconds:
                carry -= seconds
                await self.tick(seconds)
        logger.debug("Focus tick loop idle, exiting")

    async def _apply(self, effects: list) -> None:
        for effect in effects:
            if isinstance(effect, SessionComplete):
                logger.info("Pomodoro %s complete: +%d XP", effect.mode.value, effect.xp)
                await self._stats.add_focus(self._user_id, effect.seconds, effect.xp)
                await self._notify(
                    f"⏰ {effect.mode.value} focus session complete. +{effect.xp} XP"
                )
            elif isinstance(effect, FocusProgress):
                await self._stats.add_focus(self._user_id, effect.seconds, effect.xp)

    async def _notify(self, text: str) -> None:
        if self._notifier is None or self._chat_id is None:
            return
        try:
            await self._notifier.send_message(self._chat_id, text)
        except Exception as exc:
            logger.error("Failed to send focus notification: %s", exc)
