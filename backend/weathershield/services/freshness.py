from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

import structlog

from weathershield.errors import MissingCredentialError, WeatherShieldError
from weathershield.schemas import (
    Coordinates,
    LocationState,
    RawTelemetry,
    RefreshPath,
    RefreshTrigger,
    ResolvedLocation,
    SyncClock,
    WeatherState,
)


logger = structlog.get_logger(__name__)

STALE_THRESHOLD = timedelta(minutes=30)

SYNC_FAILED_MESSAGE = "sync failed"
MANUAL_SYNC_FAILED_MESSAGE = "refresh failed"
MISSING_CREDENTIAL_MESSAGE = "API key missing"

STATUS_APPLIED = "applied"
STATUS_STALE = "stale"
STATUS_FAILED = "failed"


class TelemetrySource(Protocol):
    async def fetch_telemetry(self, coordinates: Coordinates) -> RawTelemetry: ...


class NarrativeSource(Protocol):
    async def synthesize(
        self, coordinates: Coordinates, raw: RawTelemetry, *, now: datetime | None = None
    ) -> WeatherState: ...


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def choose_refresh_path(
    *,
    trigger: RefreshTrigger,
    state: WeatherState | None,
    clock: SyncClock,
    now: datetime,
    stale_threshold: timedelta = STALE_THRESHOLD,
) -> RefreshPath:
    if trigger is RefreshTrigger.MANUAL:
        return RefreshPath.FULL
    if state is None or clock.last_full_sync is None:
        return RefreshPath.FULL
    if now - clock.last_full_sync > stale_threshold:
        return RefreshPath.FULL
    return RefreshPath.CHEAP


def apply_cheap_update(state: WeatherState, raw: RawTelemetry, *, now: datetime) -> WeatherState:
    """Refresh live numbers only; narrative fields are carried over untouched."""
    return state.model_copy(
        update={
            "temperature": raw.temperature,
            "humidity": raw.humidity,
            "wind_speed": raw.wind_speed,
            "timestamp": now,
        }
    )


@dataclass(frozen=True)
class RefreshOutcome:
    epoch: int
    trigger: RefreshTrigger
    path: RefreshPath
    status: str
    error: str | None = None

    @property
    def applied(self) -> bool:
        return self.status == STATUS_APPLIED


class RefreshOrchestrator:
    """
    Sole writer of WeatherState, SyncClock and LocationState.

    Every refresh is stamped with a monotonically increasing epoch. A result is
    applied only if it is newer than the last applied result and was issued for
    the current location (a location change raises the minimum valid epoch), so
    a slow response can never overwrite a fresher one.
    """

    def __init__(
        self,
        telemetry: TelemetrySource,
        synthesis: NarrativeSource,
        *,
        stale_threshold: timedelta = STALE_THRESHOLD,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.telemetry = telemetry
        self.synthesis = synthesis
        self.stale_threshold = stale_threshold
        self.clock = clock

        self.weather_state: WeatherState | None = None
        self.sync_clock = SyncClock()
        self.location_state = LocationState()
        self.is_refreshing = False

        self._state_coordinates: Coordinates | None = None
        self._epoch = 0
        self._min_valid_epoch = 0
        self._applied_epoch = 0
        self._in_flight = 0
        self._manual_in_flight = 0
        self._listeners: list[Callable[[WeatherState | None], None]] = []

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def in_flight(self) -> bool:
        return self._in_flight > 0

    def add_listener(self, listener: Callable[[WeatherState | None], None]) -> None:
        self._listeners.append(listener)

    def begin_location_lookup(self) -> None:
        self.location_state = self.location_state.model_copy(update={"loading": True})

    def set_location(self, location: ResolvedLocation) -> int:
        self._epoch += 1
        self._min_valid_epoch = self._epoch
        self.location_state = LocationState(
            latitude=location.coordinates.latitude,
            longitude=location.coordinates.longitude,
            address=location.name,
            loading=True,
            error=None,
        )
        logger.info(
            "Location changed",
            epoch=self._epoch,
            address=location.name,
            latitude=location.coordinates.latitude,
            longitude=location.coordinates.longitude,
        )
        return self._epoch

    def fail_location(self, message: str) -> None:
        self.location_state = self.location_state.model_copy(update={"loading": False, "error": message})

    def decide(self, coordinates: Coordinates, trigger: RefreshTrigger, *, now: datetime) -> RefreshPath:
        state = self.weather_state if self._state_coordinates == coordinates else None
        return choose_refresh_path(
            trigger=trigger,
            state=state,
            clock=self.sync_clock,
            now=now,
            stale_threshold=self.stale_threshold,
        )

    async def refresh(self, coordinates: Coordinates, trigger: RefreshTrigger) -> RefreshOutcome:
        self._epoch += 1
        epoch = self._epoch
        path = self.decide(coordinates, trigger, now=self.clock())
        manual = trigger is RefreshTrigger.MANUAL

        log = logger.bind(epoch=epoch, trigger=trigger.value, path=path.value)
        log.info("Refresh started", latitude=coordinates.latitude, longitude=coordinates.longitude)

        self._in_flight += 1
        if manual:
            self._manual_in_flight += 1
            self.is_refreshing = True
            self.location_state = self.location_state.model_copy(update={"loading": True})
        try:
            path, next_state = await self._run_path(coordinates, path)
        except WeatherShieldError as exc:
            if not self._is_current(epoch):
                log.info("Discarding failure from superseded refresh", error=str(exc))
                return RefreshOutcome(epoch=epoch, trigger=trigger, path=path, status=STATUS_STALE, error=str(exc))

            message = _failure_message(exc, manual=manual)
            log.warning("Refresh failed", error=str(exc), message=message)
            self.location_state = self.location_state.model_copy(update={"loading": False, "error": message})
            return RefreshOutcome(epoch=epoch, trigger=trigger, path=path, status=STATUS_FAILED, error=message)
        finally:
            self._in_flight -= 1
            if manual:
                self._manual_in_flight -= 1
                self.is_refreshing = self._manual_in_flight > 0

        if not self._is_current(epoch):
            log.info("Discarding superseded refresh result", applied_epoch=self._applied_epoch)
            return RefreshOutcome(epoch=epoch, trigger=trigger, path=path, status=STATUS_STALE)

        self._applied_epoch = epoch
        self.weather_state = next_state
        self._state_coordinates = coordinates
        if path is RefreshPath.FULL:
            self.sync_clock = SyncClock(last_full_sync=next_state.timestamp)
        self.location_state = self.location_state.model_copy(update={"loading": False, "error": None})
        log.info("Refresh applied", alerts=len(next_state.alerts))

        for listener in self._listeners:
            listener(self.weather_state)
        return RefreshOutcome(epoch=epoch, trigger=trigger, path=path, status=STATUS_APPLIED)

    async def _run_path(self, coordinates: Coordinates, path: RefreshPath) -> tuple[RefreshPath, WeatherState]:
        raw = await self.telemetry.fetch_telemetry(coordinates)
        if path is RefreshPath.CHEAP:
            # Patch whatever state is current after the fetch, not the one seen at decision time.
            base = self.weather_state if self._state_coordinates == coordinates else None
            if base is not None:
                return path, apply_cheap_update(base, raw, now=self.clock())

        state = await self.synthesis.synthesize(coordinates, raw, now=self.clock())
        return RefreshPath.FULL, state

    def _is_current(self, epoch: int) -> bool:
        return epoch >= self._min_valid_epoch and epoch > self._applied_epoch


def _failure_message(exc: WeatherShieldError, *, manual: bool) -> str:
    if isinstance(exc, MissingCredentialError):
        return MISSING_CREDENTIAL_MESSAGE
    return MANUAL_SYNC_FAILED_MESSAGE if manual else SYNC_FAILED_MESSAGE
