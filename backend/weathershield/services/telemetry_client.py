from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from weathershield.config import Settings
from weathershield.errors import TelemetryFetchError
from weathershield.schemas import (
    AirQualityPayload,
    Coordinates,
    DailySeries,
    OpenMeteoForecastPayload,
    RawTelemetry,
    SeismicSummary,
    UsgsEventPayload,
)


logger = structlog.get_logger(__name__)

WEATHER_CODE_LABELS = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
    80: "Rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    95: "Thunderstorm",
    96: "Thunderstorm with hail",
    99: "Heavy thunderstorm with hail",
}

SEISMIC_STABLE = "stable"
SEISMIC_ACTIVE = "activity detected"

FORECAST_CURRENT_FIELDS = (
    "temperature_2m,relative_humidity_2m,apparent_temperature,"
    "weather_code,wind_speed_10m,wind_direction_10m,visibility"
)
FORECAST_DAILY_FIELDS = "weather_code,temperature_2m_max,temperature_2m_min"


@dataclass
class TelemetryClient:
    """Fetches forecast, air quality and seismic data and merges them into one RawTelemetry."""

    settings: Settings
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=self.settings.request_timeout_seconds,
            transport=self.transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_telemetry(self, coordinates: Coordinates) -> RawTelemetry:
        results = await asyncio.gather(
            self.fetch_forecast(coordinates),
            self.fetch_air_quality(coordinates),
            self.fetch_seismic(coordinates),
            return_exceptions=True,
        )
        for source, result in zip(("forecast", "air_quality", "seismic"), results):
            if isinstance(result, Exception):
                logger.warning(
                    "Telemetry source failed",
                    source=source,
                    latitude=coordinates.latitude,
                    longitude=coordinates.longitude,
                    error=str(result),
                )
                if isinstance(result, TelemetryFetchError):
                    raise result
                raise TelemetryFetchError(f"{source} fetch failed: {result}") from result

        forecast, air_quality, seismic = results
        return _merge_telemetry(forecast=forecast, air_quality=air_quality, seismic=seismic)

    async def fetch_forecast(self, coordinates: Coordinates) -> OpenMeteoForecastPayload:
        payload = await self._get_json(
            url=f"{self.settings.open_meteo_base_url}/forecast",
            params={
                "latitude": coordinates.latitude,
                "longitude": coordinates.longitude,
                "current": FORECAST_CURRENT_FIELDS,
                "daily": FORECAST_DAILY_FIELDS,
                "timezone": "auto",
            },
        )
        return _validate(OpenMeteoForecastPayload, payload, source="forecast")

    async def fetch_air_quality(self, coordinates: Coordinates) -> AirQualityPayload:
        payload = await self._get_json(
            url=self.settings.open_meteo_air_quality_url,
            params={
                "latitude": coordinates.latitude,
                "longitude": coordinates.longitude,
                "current": "us_aqi",
            },
        )
        return _validate(AirQualityPayload, payload, source="air_quality")

    async def fetch_seismic(self, coordinates: Coordinates) -> SeismicSummary:
        payload = await self._get_json(
            url=self.settings.usgs_earthquake_url,
            params={
                "format": "geojson",
                "latitude": coordinates.latitude,
                "longitude": coordinates.longitude,
                "maxradiuskm": self.settings.seismic_radius_km,
                "limit": self.settings.seismic_result_limit,
            },
        )
        events = _validate(UsgsEventPayload, payload, source="seismic")
        if not events.features:
            return SeismicSummary(activity=SEISMIC_STABLE)

        nearest = events.features[0].properties
        return SeismicSummary(activity=SEISMIC_ACTIVE, magnitude=nearest.mag, nearest=nearest.place)

    async def _get_json(self, *, url: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            raise TelemetryFetchError(f"Request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise TelemetryFetchError(f"Response from {url} is not JSON.") from exc


def weather_code_to_label(code: int | None) -> str:
    if code is None:
        return "Unknown"
    return WEATHER_CODE_LABELS.get(code, "Unknown")


def _validate(model: type, payload: Any, *, source: str) -> Any:
    try:
        return model.model_validate(payload)
    except ValueError as exc:
        raise TelemetryFetchError(f"Malformed {source} payload: {exc}") from exc


def _merge_telemetry(
    *, forecast: OpenMeteoForecastPayload, air_quality: AirQualityPayload, seismic: SeismicSummary
) -> RawTelemetry:
    current = forecast.current
    daily = forecast.daily
    try:
        daily_series = DailySeries(
            time=daily.time,
            min_temp=daily.temperature_2m_min,
            max_temp=daily.temperature_2m_max,
            weather_code=daily.weather_code,
        )
    except ValueError as exc:
        raise TelemetryFetchError(f"Malformed forecast payload: {exc}") from exc

    return RawTelemetry(
        temperature=current.temperature_2m,
        humidity=current.relative_humidity_2m,
        wind_speed=current.wind_speed_10m,
        wind_direction=current.wind_direction_10m,
        visibility=current.visibility,
        apparent_temperature=current.apparent_temperature,
        weather_code=current.weather_code,
        aqi=int(round(air_quality.current.us_aqi)),
        seismic=seismic,
        daily=daily_series,
    )
