from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path
from typing import Any

import httpx
import structlog

from weathershield.config import Settings
from weathershield.errors import GeolocationUnavailableError, LocationResolutionError, MissingCredentialError
from weathershield.schemas import AlertSeverity, RefreshTrigger, ResolvedLocation
from weathershield.services.alarm import AlarmScheduler, ToneRecorder
from weathershield.services.freshness import (
    MISSING_CREDENTIAL_MESSAGE,
    STATUS_FAILED,
    RefreshOrchestrator,
    RefreshOutcome,
)
from weathershield.services.llm_client import GeminiClient
from weathershield.services.location_resolver import DeviceLocator, LocationResolver
from weathershield.services.radar import RadarClient
from weathershield.services.severity import overlay_color, state_severity
from weathershield.services.storage import LocalStore
from weathershield.services.synthesis import NarrativeSynthesisClient
from weathershield.services.telemetry_client import TelemetryClient


logger = structlog.get_logger(__name__)

LOCATION_NOT_FOUND_MESSAGE = "location not found"
POSITIONING_UNAVAILABLE_MESSAGE = "positioning unavailable"


class DashboardSession:
    """One active location per process: resolution, refresh policy, alarm and background tick."""

    def __init__(
        self,
        *,
        settings: Settings,
        orchestrator: RefreshOrchestrator,
        resolver: LocationResolver,
        store: LocalStore,
        alarm: AlarmScheduler,
        radar: RadarClient | None = None,
        closeables: tuple[Any, ...] = (),
    ) -> None:
        self.settings = settings
        self.orchestrator = orchestrator
        self.resolver = resolver
        self.store = store
        self.alarm = alarm
        self.radar = radar
        self._closeables = closeables
        self._tick_task: asyncio.Task | None = None
        orchestrator.add_listener(lambda state: self.alarm.observe(state_severity(state)))

    @classmethod
    def from_settings(
        cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "DashboardSession":
        store = LocalStore(path=Path(settings.storage_path))
        llm = GeminiClient(
            settings=settings,
            api_key_provider=lambda: store.get_api_key() or settings.gemini_api_key,
            transport=transport,
        )
        telemetry = TelemetryClient(settings=settings, transport=transport)
        radar = RadarClient(settings=settings, transport=transport)
        orchestrator = RefreshOrchestrator(
            telemetry,
            NarrativeSynthesisClient(llm=llm),
            stale_threshold=timedelta(seconds=settings.stale_threshold_seconds),
        )
        return cls(
            settings=settings,
            orchestrator=orchestrator,
            resolver=LocationResolver(llm=llm),
            store=store,
            alarm=AlarmScheduler(ToneRecorder(), window=timedelta(seconds=settings.alarm_window_seconds)),
            radar=radar,
            closeables=(telemetry, llm, radar),
        )

    @property
    def severity(self) -> AlertSeverity | None:
        return state_severity(self.orchestrator.weather_state)

    async def start(self, device_locator: DeviceLocator | None = None) -> None:
        saved = self.store.get_saved_location()
        if saved is not None:
            logger.info("Restoring saved location", address=saved.name)
            await self._switch_location(saved)
        else:
            await self.locate_device(device_locator)

        if self.radar is not None:
            await self.radar.refresh()
        if self._tick_task is None:
            self._tick_task = asyncio.create_task(self._tick_loop())

    async def stop(self) -> None:
        if self._tick_task is not None:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None

        self.alarm.close()
        for closeable in self._closeables:
            await closeable.close()
        logger.info("Session stopped")

    async def search(self, query: str) -> RefreshOutcome | None:
        self.orchestrator.begin_location_lookup()
        try:
            resolved = await self.resolver.resolve_by_query(query)
        except MissingCredentialError:
            self.orchestrator.fail_location(MISSING_CREDENTIAL_MESSAGE)
            return None
        except LocationResolutionError as exc:
            logger.info("Location search failed", query=query, error=str(exc))
            self.orchestrator.fail_location(LOCATION_NOT_FOUND_MESSAGE)
            return None

        self.store.save_location(resolved)
        return await self._switch_location(resolved)

    async def locate_device(self, device_locator: DeviceLocator | None) -> RefreshOutcome | None:
        self.orchestrator.begin_location_lookup()
        try:
            if device_locator is None:
                raise GeolocationUnavailableError("No device position source.")
            resolved = await self.resolver.resolve_by_device(device_locator)
        except GeolocationUnavailableError as exc:
            logger.info("Device positioning unavailable", error=str(exc))
            return await self._fall_back_to_saved_location()

        return await self._switch_location(resolved)

    async def refresh(self, trigger: RefreshTrigger = RefreshTrigger.MANUAL) -> RefreshOutcome | None:
        coordinates = self.orchestrator.location_state.coordinates
        if coordinates is None:
            return None
        return await self.orchestrator.refresh(coordinates, trigger)

    def set_muted(self, muted: bool) -> None:
        self.alarm.set_armed(not muted)

    async def tick(self) -> RefreshOutcome | None:
        if self.radar is not None:
            await self.radar.refresh()
        if self.orchestrator.in_flight:
            logger.info("Periodic refresh skipped, another refresh is in flight")
            return None
        return await self.refresh(RefreshTrigger.PERIODIC)

    def snapshot(self) -> dict:
        orchestrator = self.orchestrator
        alarm_state = self.alarm.state
        severity = self.severity
        weather = orchestrator.weather_state
        radar_frame = self.radar.latest if self.radar is not None else None
        return {
            "location": orchestrator.location_state.model_dump(),
            "weather": weather.model_dump(mode="json") if weather is not None else None,
            "severity": severity.value if severity is not None else None,
            "overlay_color": overlay_color(severity),
            "is_refreshing": orchestrator.is_refreshing,
            "display_time_utc": weather.timestamp.strftime("%H:%M:%S") if weather is not None else None,
            "last_full_sync": (
                orchestrator.sync_clock.last_full_sync.isoformat()
                if orchestrator.sync_clock.last_full_sync is not None
                else None
            ),
            "alarm": {
                "armed": alarm_state.armed,
                "sounding": alarm_state.sounding,
                "active_severity": (
                    alarm_state.active_severity.value if alarm_state.active_severity is not None else None
                ),
                "window_expiry": alarm_state.window_expiry.isoformat() if alarm_state.window_expiry else None,
            },
            "radar": radar_frame.model_dump() if radar_frame is not None else None,
        }

    async def _switch_location(self, location: ResolvedLocation) -> RefreshOutcome:
        self.orchestrator.set_location(location)
        return await self.orchestrator.refresh(location.coordinates, RefreshTrigger.MANUAL)

    async def _fall_back_to_saved_location(self) -> RefreshOutcome | None:
        current = self.orchestrator.location_state.coordinates
        saved = self.store.get_saved_location() if current is None else None
        if saved is None:
            self.orchestrator.fail_location(POSITIONING_UNAVAILABLE_MESSAGE)
            return None

        outcome = await self._switch_location(saved)
        if outcome.applied:
            self.orchestrator.fail_location(POSITIONING_UNAVAILABLE_MESSAGE)
        elif outcome.status == STATUS_FAILED:
            self.orchestrator.fail_location(f"{POSITIONING_UNAVAILABLE_MESSAGE}, {outcome.error}")
        return outcome

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.background_tick_seconds)
            try:
                await self.tick()
            except Exception:
                logger.exception("Background tick failed")
