from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

import structlog

from weathershield.schemas import AlertSeverity


logger = structlog.get_logger(__name__)

ALARM_WINDOW = timedelta(seconds=15)


@dataclass(frozen=True)
class Tone:
    frequency_hz: float
    duration_s: float


@dataclass(frozen=True)
class TonePattern:
    """A burst of tones (offset from burst start, tone) repeated every `period_s`."""

    period_s: float
    tones: tuple[tuple[float, Tone], ...]


PAIRED_BURST = TonePattern(
    period_s=0.8,
    tones=((0.0, Tone(880.0, 0.4)), (0.2, Tone(660.0, 0.4))),
)
SINGLE_TONE = TonePattern(period_s=2.5, tones=((0.0, Tone(440.0, 0.5)),))

TONE_PATTERNS: dict[AlertSeverity, TonePattern] = {
    AlertSeverity.CRITICAL: PAIRED_BURST,
    AlertSeverity.HIGH: PAIRED_BURST,
    AlertSeverity.MEDIUM: SINGLE_TONE,
}


def tone_pattern_for(severity: AlertSeverity | None) -> TonePattern | None:
    if severity is None:
        return None
    return TONE_PATTERNS.get(severity)


@dataclass(frozen=True)
class AlarmState:
    armed: bool = True
    active_severity: AlertSeverity | None = None
    window_expiry: datetime | None = None

    @property
    def sounding(self) -> bool:
        return self.window_expiry is not None


def observe_severity(
    state: AlarmState, severity: AlertSeverity | None, *, now: datetime, window: timedelta = ALARM_WINDOW
) -> AlarmState:
    """Edge-triggered: only a distinct severity value (re)opens the sounding window."""
    if severity == state.active_severity:
        return state
    if severity is None or not state.armed:
        return replace(state, active_severity=severity, window_expiry=None)
    return replace(state, active_severity=severity, window_expiry=now + window)


def set_armed(state: AlarmState, armed: bool) -> AlarmState:
    # Unmuting never re-opens a window for the severity already observed.
    if not armed:
        return replace(state, armed=False, window_expiry=None)
    return replace(state, armed=True)


def expire_window(state: AlarmState, *, now: datetime) -> AlarmState:
    if state.window_expiry is not None and now >= state.window_expiry:
        return replace(state, window_expiry=None)
    return state


class ToneSink(Protocol):
    def play(self, tone: Tone) -> None: ...


class ToneRecorder:
    """Keeps the most recent tones so a client can render them."""

    def __init__(self, maxlen: int = 64, clock: Callable[[], datetime] | None = None) -> None:
        self.played: deque[tuple[datetime, Tone]] = deque(maxlen=maxlen)
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def play(self, tone: Tone) -> None:
        self.played.append((self._clock(), tone))
        logger.debug("Alarm tone", frequency_hz=tone.frequency_hz, duration_s=tone.duration_s)


class AlarmScheduler:
    """
    Drives a ToneSink from the aggregated severity signal.

    The sounding window and the tone loop are asyncio tasks; both are cancelled
    on every exit from the sounding state (window expiry, severity cleared,
    muted, severity change) so tone loops never overlap.
    """

    def __init__(
        self,
        sink: ToneSink,
        *,
        window: timedelta = ALARM_WINDOW,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.sink = sink
        self.window = window
        self.clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self.state = AlarmState()
        self._window_task: asyncio.Task | None = None
        self._tone_task: asyncio.Task | None = None

    @property
    def has_pending_timers(self) -> bool:
        return any(task is not None and not task.done() for task in (self._window_task, self._tone_task))

    def observe(self, severity: AlertSeverity | None) -> None:
        self._transition(observe_severity(self.state, severity, now=self.clock(), window=self.window))

    def set_armed(self, armed: bool) -> None:
        self._transition(set_armed(self.state, armed))

    def close(self) -> None:
        self._cancel_timers()
        self.state = replace(self.state, window_expiry=None)

    def _transition(self, new_state: AlarmState) -> None:
        old_state = self.state
        self.state = new_state
        if new_state == old_state:
            return

        window_changed = (
            new_state.window_expiry != old_state.window_expiry
            or new_state.active_severity != old_state.active_severity
        )
        if not window_changed:
            return

        if old_state.sounding:
            self._cancel_timers()
            logger.info("Alarm silenced", severity=_label(old_state.active_severity), armed=new_state.armed)

        if new_state.sounding:
            self._start_window(new_state)

    def _start_window(self, state: AlarmState) -> None:
        logger.info("Alarm sounding", severity=_label(state.active_severity), expires_at=state.window_expiry)
        self._window_task = asyncio.create_task(self._run_window(self.window.total_seconds()))
        pattern = tone_pattern_for(state.active_severity)
        if pattern is not None:
            self._tone_task = asyncio.create_task(self._run_tones(pattern))

    async def _run_window(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self._window_task = None
        expiry = self.state.window_expiry
        if expiry is None:
            return
        # Expiry is driven by the loop timer, not the wall clock.
        self._transition(expire_window(self.state, now=max(self.clock(), expiry)))

    async def _run_tones(self, pattern: TonePattern) -> None:
        loop = asyncio.get_running_loop()
        while True:
            burst_start = loop.time()
            for offset, tone in pattern.tones:
                await asyncio.sleep(max(0.0, burst_start + offset - loop.time()))
                self.sink.play(tone)
            await asyncio.sleep(max(0.0, burst_start + pattern.period_s - loop.time()))

    def _cancel_timers(self) -> None:
        current = asyncio.current_task() if _loop_running() else None
        for task in (self._window_task, self._tone_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._window_task = None
        self._tone_task = None


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _label(severity: AlertSeverity | None) -> str:
    return severity.value if severity is not None else "none"
