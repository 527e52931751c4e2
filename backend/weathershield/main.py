from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from weathershield.config import get_settings
from weathershield.logging_config import configure_logging
from weathershield.schemas import ApiKeyRequest, Coordinates, DeviceLocationRequest, LocationSearchRequest, MuteRequest
from weathershield.services.alarm import ToneRecorder
from weathershield.services.freshness import MISSING_CREDENTIAL_MESSAGE, RefreshOutcome
from weathershield.services.session import LOCATION_NOT_FOUND_MESSAGE, DashboardSession


settings = get_settings()
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)

session = DashboardSession.from_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting WeatherShield session")
    await session.start()
    try:
        yield
    finally:
        await session.stop()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.frontend_origins),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health() -> dict:
    return {
        "status": "ok",
        "service": settings.app_name,
        "timestamp_utc": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/api/state")
async def state() -> dict:
    return session.snapshot()


@app.post("/api/location/search")
async def search_location(payload: LocationSearchRequest) -> dict:
    outcome = await session.search(payload.query)
    if outcome is None:
        error = session.orchestrator.location_state.error
        if error == MISSING_CREDENTIAL_MESSAGE:
            raise HTTPException(status_code=400, detail="Provider API key is not configured.")
        if error == LOCATION_NOT_FOUND_MESSAGE:
            raise HTTPException(status_code=404, detail="Location not found.")
    return _with_outcome(outcome)


@app.post("/api/location/device")
async def device_location(payload: DeviceLocationRequest) -> dict:
    reported = (
        Coordinates(latitude=payload.latitude, longitude=payload.longitude)
        if payload.latitude is not None and payload.longitude is not None
        else None
    )

    async def locator() -> Coordinates | None:
        return reported

    outcome = await session.locate_device(locator)
    return _with_outcome(outcome)


@app.post("/api/refresh")
async def refresh() -> dict:
    outcome = await session.refresh()
    if outcome is None:
        raise HTTPException(status_code=409, detail="No active location to refresh.")
    return _with_outcome(outcome)


@app.post("/api/alarm/mute")
async def mute_alarm(payload: MuteRequest) -> dict:
    session.set_muted(payload.muted)
    return session.snapshot()["alarm"]


@app.get("/api/alarm/tones")
async def alarm_tones(limit: int = Query(default=16, ge=1, le=64)) -> dict:
    sink = session.alarm.sink
    played = list(sink.played)[-limit:] if isinstance(sink, ToneRecorder) else []
    return {
        "items": [
            {"played_at_utc": played_at.isoformat(), "frequency_hz": tone.frequency_hz, "duration_s": tone.duration_s}
            for played_at, tone in played
        ]
    }


@app.put("/api/settings/api-key")
async def save_api_key(payload: ApiKeyRequest) -> dict:
    session.store.set_api_key(payload.api_key)
    return {"configured": session.store.get_api_key() is not None}


@app.delete("/api/settings/api-key")
async def clear_api_key() -> dict:
    session.store.clear_api_key()
    return {"configured": session.store.get_api_key() is not None}


def _with_outcome(outcome: RefreshOutcome | None) -> dict:
    payload = session.snapshot()
    payload["refresh"] = (
        {
            "epoch": outcome.epoch,
            "trigger": outcome.trigger.value,
            "path": outcome.path.value,
            "status": outcome.status,
            "error": outcome.error,
        }
        if outcome is not None
        else None
    )
    return payload
