from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    app_name: str = "WeatherShield Hazard API"
    app_version: str = "1.0.0"
    open_meteo_base_url: str = "https://api.open-meteo.com/v1"
    open_meteo_air_quality_url: str = "https://air-quality-api.open-meteo.com/v1/air-quality"
    usgs_earthquake_url: str = "https://earthquake.usgs.gov/fdsnws/event/1/query"
    rainviewer_maps_url: str = "https://api.rainviewer.com/public/weather-maps.json"
    rainviewer_tile_host: str = "https://tilecache.rainviewer.com"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-3-flash-preview"
    gemini_api_key: str | None = None
    seismic_radius_km: int = 500
    seismic_result_limit: int = 1
    stale_threshold_seconds: int = 1800
    alarm_window_seconds: float = 15.0
    background_tick_seconds: int = 300
    request_timeout_seconds: float = 12.0
    log_level: str = "INFO"
    storage_path: str = str((Path(__file__).resolve().parents[1] / "data" / "weathershield.json").as_posix())
    frontend_origins: tuple[str, ...] = ("http://localhost:5173", "http://127.0.0.1:5173")


def get_settings() -> Settings:
    origins_raw = os.getenv("FRONTEND_ORIGINS", "").strip()
    stale_raw = os.getenv("STALE_THRESHOLD_SECONDS", "").strip()
    alarm_window_raw = os.getenv("ALARM_WINDOW_SECONDS", "").strip()
    tick_raw = os.getenv("BACKGROUND_TICK_SECONDS", "").strip()
    radius_raw = os.getenv("SEISMIC_RADIUS_KM", "").strip()
    timeout_raw = os.getenv("REQUEST_TIMEOUT_SECONDS", "").strip()
    storage_path_raw = os.getenv("WEATHERSHIELD_STORAGE_PATH", "").strip()
    model_raw = os.getenv("GEMINI_MODEL", "").strip()
    api_key_raw = os.getenv("GEMINI_API_KEY", "").strip() or os.getenv("API_KEY", "").strip()
    log_level_raw = os.getenv("LOG_LEVEL", "").strip().upper()

    parsed_origins = tuple(item.strip() for item in origins_raw.split(",") if item.strip())

    try:
        stale_threshold_seconds = int(stale_raw) if stale_raw else 1800
    except ValueError:
        stale_threshold_seconds = 1800

    try:
        alarm_window_seconds = float(alarm_window_raw) if alarm_window_raw else 15.0
    except ValueError:
        alarm_window_seconds = 15.0

    try:
        background_tick_seconds = int(tick_raw) if tick_raw else 300
    except ValueError:
        background_tick_seconds = 300

    try:
        seismic_radius_km = int(radius_raw) if radius_raw else 500
    except ValueError:
        seismic_radius_km = 500

    try:
        request_timeout_seconds = float(timeout_raw) if timeout_raw else 12.0
    except ValueError:
        request_timeout_seconds = 12.0

    return Settings(
        frontend_origins=parsed_origins or Settings.frontend_origins,
        stale_threshold_seconds=max(60, stale_threshold_seconds),
        alarm_window_seconds=max(1.0, alarm_window_seconds),
        background_tick_seconds=max(30, background_tick_seconds),
        seismic_radius_km=max(1, seismic_radius_km),
        request_timeout_seconds=max(1.0, request_timeout_seconds),
        storage_path=storage_path_raw or Settings.storage_path,
        gemini_model=model_raw or Settings.gemini_model,
        gemini_api_key=api_key_raw or None,
        log_level=log_level_raw or Settings.log_level,
    )
