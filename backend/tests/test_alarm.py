import asyncio
from datetime import timedelta

from fakes import T0
from weathershield.schemas import AlertSeverity
from weathershield.services.alarm import (
    PAIRED_BURST,
    SINGLE_TONE,
    AlarmScheduler,
    AlarmState,
    Tone,
    ToneRecorder,
    expire_window,
    observe_severity,
    set_armed,
    tone_pattern_for,
)


WINDOW = timedelta(seconds=15)


def _count_window_starts_and_stops(sequence):
    state = AlarmState()
    starts = stops = 0
    for step, severity in enumerate(sequence):
        new_state = observe_severity(state, severity, now=T0 + timedelta(seconds=step), window=WINDOW)
        if not state.sounding and new_state.sounding:
            starts += 1
        elif state.sounding and new_state.window_expiry != state.window_expiry:
            stops += 1
            if new_state.sounding:
                starts += 1
        state = new_state
    return starts, stops, state


def test_repeated_severity_does_not_restart_window() -> None:
    starts, stops, state = _count_window_starts_and_stops([None, AlertSeverity.HIGH, AlertSeverity.HIGH, None])

    assert starts == 1
    assert stops == 1
    assert state.sounding is False
    assert state.active_severity is None


def test_unchanged_severity_keeps_original_expiry() -> None:
    state = observe_severity(AlarmState(), AlertSeverity.CRITICAL, now=T0, window=WINDOW)
    again = observe_severity(state, AlertSeverity.CRITICAL, now=T0 + timedelta(seconds=10), window=WINDOW)

    assert again is state
    assert again.window_expiry == T0 + WINDOW


def test_new_distinct_severity_restarts_window() -> None:
    state = observe_severity(AlarmState(), AlertSeverity.MEDIUM, now=T0, window=WINDOW)
    escalated = observe_severity(state, AlertSeverity.CRITICAL, now=T0 + timedelta(seconds=5), window=WINDOW)

    assert escalated.active_severity is AlertSeverity.CRITICAL
    assert escalated.window_expiry == T0 + timedelta(seconds=5) + WINDOW


def test_window_expires_after_fifteen_seconds() -> None:
    state = observe_severity(AlarmState(), AlertSeverity.HIGH, now=T0, window=WINDOW)

    assert expire_window(state, now=T0 + timedelta(seconds=14)).sounding is True
    assert expire_window(state, now=T0 + timedelta(seconds=15)).sounding is False


def test_mute_silences_and_unmute_does_not_resume() -> None:
    state = observe_severity(AlarmState(), AlertSeverity.HIGH, now=T0, window=WINDOW)
    muted = set_armed(state, False)
    unmuted = set_armed(muted, True)
    reobserved = observe_severity(unmuted, AlertSeverity.HIGH, now=T0 + timedelta(seconds=3), window=WINDOW)

    assert muted.sounding is False
    assert unmuted.sounding is False
    assert reobserved.sounding is False


def test_severity_seen_while_muted_does_not_sound_later() -> None:
    muted = set_armed(AlarmState(), False)
    observed = observe_severity(muted, AlertSeverity.CRITICAL, now=T0, window=WINDOW)
    unmuted = set_armed(observed, True)

    assert observed.sounding is False
    assert unmuted.sounding is False
    assert unmuted.active_severity is AlertSeverity.CRITICAL


def test_tone_patterns_by_level() -> None:
    assert tone_pattern_for(AlertSeverity.CRITICAL) is PAIRED_BURST
    assert tone_pattern_for(AlertSeverity.HIGH) is PAIRED_BURST
    assert tone_pattern_for(AlertSeverity.MEDIUM) is SINGLE_TONE
    assert tone_pattern_for(AlertSeverity.LOW) is None
    assert tone_pattern_for(None) is None
    assert PAIRED_BURST.period_s == 0.8
    assert [tone.frequency_hz for _, tone in PAIRED_BURST.tones] == [880.0, 660.0]
    assert SINGLE_TONE.period_s == 2.5
    assert SINGLE_TONE.tones[0][1] == Tone(440.0, 0.5)


def test_scheduler_plays_one_burst_then_returns_to_silent() -> None:
    async def scenario():
        recorder = ToneRecorder()
        scheduler = AlarmScheduler(recorder, window=timedelta(seconds=0.5))
        scheduler.observe(AlertSeverity.CRITICAL)
        sounding = scheduler.state.sounding
        await asyncio.sleep(0.9)
        return sounding, scheduler, recorder

    sounding, scheduler, recorder = asyncio.run(scenario())

    assert sounding is True
    assert scheduler.state.sounding is False
    assert scheduler.state.active_severity is AlertSeverity.CRITICAL
    assert scheduler.has_pending_timers is False
    assert [tone.frequency_hz for _, tone in recorder.played] == [880.0, 660.0]


def test_scheduler_mute_cancels_pending_tones() -> None:
    async def scenario():
        recorder = ToneRecorder()
        scheduler = AlarmScheduler(recorder, window=timedelta(seconds=5))
        scheduler.observe(AlertSeverity.HIGH)
        await asyncio.sleep(0.05)
        scheduler.set_armed(False)
        muted_pending = scheduler.has_pending_timers
        await asyncio.sleep(0.4)
        scheduler.set_armed(True)
        scheduler.observe(AlertSeverity.HIGH)
        resumed = scheduler.state.sounding
        await asyncio.sleep(0.1)
        return muted_pending, resumed, scheduler, recorder

    muted_pending, resumed, scheduler, recorder = asyncio.run(scenario())

    assert muted_pending is False
    assert resumed is False
    assert scheduler.has_pending_timers is False
    assert [tone.frequency_hz for _, tone in recorder.played] == [880.0]


def test_scheduler_stops_early_when_alerts_clear() -> None:
    async def scenario():
        recorder = ToneRecorder()
        scheduler = AlarmScheduler(recorder, window=timedelta(seconds=5))
        scheduler.observe(AlertSeverity.MEDIUM)
        await asyncio.sleep(0.05)
        scheduler.observe(None)
        stopped = (scheduler.state.sounding, scheduler.has_pending_timers)
        await asyncio.sleep(0.1)
        return stopped, recorder

    stopped, recorder = asyncio.run(scenario())

    assert stopped == (False, False)
    assert [tone.frequency_hz for _, tone in recorder.played] == [440.0]


def test_low_severity_opens_window_without_tones() -> None:
    async def scenario():
        recorder = ToneRecorder()
        scheduler = AlarmScheduler(recorder, window=timedelta(seconds=0.2))
        scheduler.observe(AlertSeverity.LOW)
        await asyncio.sleep(0.3)
        return scheduler, recorder

    scheduler, recorder = asyncio.run(scenario())

    assert list(recorder.played) == []
    assert scheduler.state.sounding is False
