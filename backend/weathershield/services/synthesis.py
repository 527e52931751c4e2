from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
import structlog

from weathershield.errors import MissingCredentialError, SynthesisError
from weathershield.schemas import AirQuality, Coordinates, NarrativeReport, RawTelemetry, WeatherState
from weathershield.services.llm_client import GeminiClient
from weathershield.services.telemetry_client import weather_code_to_label


logger = structlog.get_logger(__name__)

AQI_RED = "#ef4444"
AQI_ORANGE = "#f97316"
AQI_YELLOW = "#eab308"
AQI_GREEN = "#22c55e"

ALERT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"

SYNTHESIS_PROMPT_TEMPLATE = (
    "You are the strategic analyst of a weather and public-safety operations centre.\n\n"
    "Analyse the following readings for latitude {latitude}, longitude {longitude}:\n"
    "- Weather: {temp} C (feels like {apparent_temp} C), {condition}, humidity {humidity}%, "
    "wind {wind} km/h from {wind_direction} degrees.\n"
    "- Air quality (US AQI): {aqi}.\n"
    "- Nearby seismic activity: {seismic_activity} (magnitude {seismic_magnitude}{seismic_place}).\n"
    "- Daily outlook: {daily_outlook}.\n"
    "- Current time: {now}.\n\n"
    "Tasks:\n"
    "1. Analyse how these factors interact and what risk they pose together.\n"
    "2. Provide protective protocols.\n"
    "3. For every alert add a field named \"timestamp\" holding the civil date and time "
    "formatted as YYYY-MM-DD HH:mm.\n"
    "Answer with JSON only."
)

_FORECAST_ITEM_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "day": {"type": "STRING"},
        "temp": {"type": "STRING"},
        "condition": {"type": "STRING"},
    },
    "required": ["day", "temp", "condition"],
}

_ALERT_ITEM_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "id": {"type": "STRING"},
        "title": {"type": "STRING"},
        "description": {"type": "STRING"},
        "severity": {"type": "STRING", "enum": ["LOW", "MEDIUM", "HIGH", "CRITICAL"]},
        "type": {"type": "STRING"},
        "timestamp": {"type": "STRING"},
    },
    "required": ["id", "title", "description", "severity", "type", "timestamp"],
}

NARRATIVE_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "condition": {"type": "STRING"},
        "location": {"type": "STRING"},
        "riskAnalysis": {"type": "STRING"},
        "infrastructureImpact": {"type": "STRING"},
        "protocols": {"type": "ARRAY", "items": {"type": "STRING"}},
        "forecast": {"type": "ARRAY", "items": _FORECAST_ITEM_SCHEMA},
        "alerts": {"type": "ARRAY", "items": _ALERT_ITEM_SCHEMA},
    },
    "required": [
        "condition",
        "location",
        "riskAnalysis",
        "infrastructureImpact",
        "protocols",
        "forecast",
        "alerts",
    ],
}


def classify_air_quality(aqi: int) -> AirQuality:
    if aqi > 150:
        return AirQuality(value=aqi, label="very unhealthy", color=AQI_RED)
    if aqi > 100:
        return AirQuality(value=aqi, label="unhealthy", color=AQI_ORANGE)
    if aqi > 50:
        return AirQuality(value=aqi, label="moderate", color=AQI_YELLOW)
    return AirQuality(value=aqi, label="good", color=AQI_GREEN)


def format_wind_direction(degrees: float) -> str:
    return f"{round(degrees)}°"


def format_visibility(meters: float) -> str:
    return f"{meters / 1000:.1f} km"


def build_synthesis_prompt(coordinates: Coordinates, raw: RawTelemetry, *, now: datetime) -> str:
    seismic = raw.seismic
    daily = raw.daily
    outlook = "; ".join(
        f"{day}: {low:.0f}-{high:.0f} C, {weather_code_to_label(code)}"
        for day, low, high, code in zip(daily.time, daily.min_temp, daily.max_temp, daily.weather_code)
    )
    return SYNTHESIS_PROMPT_TEMPLATE.format(
        latitude=round(coordinates.latitude, 4),
        longitude=round(coordinates.longitude, 4),
        temp=raw.temperature,
        apparent_temp=raw.apparent_temperature,
        condition=weather_code_to_label(raw.weather_code),
        humidity=raw.humidity,
        wind=raw.wind_speed,
        wind_direction=round(raw.wind_direction),
        aqi=raw.aqi,
        seismic_activity=seismic.activity,
        seismic_magnitude=seismic.magnitude if seismic.magnitude is not None else "n/a",
        seismic_place=f", {seismic.nearest}" if seismic.nearest else "",
        daily_outlook=outlook or "unavailable",
        now=now.strftime(ALERT_TIMESTAMP_FORMAT),
    )


def build_weather_state(report: NarrativeReport, raw: RawTelemetry, *, now: datetime) -> WeatherState:
    """Full replacement record: provider narrative + locally derived fields + the numeric snapshot."""
    return WeatherState(
        temperature=raw.temperature,
        condition=report.condition,
        location=report.location,
        humidity=raw.humidity,
        wind_speed=raw.wind_speed,
        wind_direction=format_wind_direction(raw.wind_direction),
        visibility=format_visibility(raw.visibility),
        timestamp=now,
        risk_analysis=report.risk_analysis,
        infrastructure_impact=report.infrastructure_impact,
        protocols=list(report.protocols),
        forecast=list(report.forecast),
        alerts=list(report.alerts),
        sources=[],
        aqi=classify_air_quality(raw.aqi),
        seismic=raw.seismic,
    )


@dataclass
class NarrativeSynthesisClient:
    llm: GeminiClient

    async def synthesize(
        self, coordinates: Coordinates, raw: RawTelemetry, *, now: datetime | None = None
    ) -> WeatherState:
        now = now or datetime.now(tz=timezone.utc)
        prompt = build_synthesis_prompt(coordinates, raw, now=now)
        try:
            payload = await self.llm.generate_json(prompt, NARRATIVE_RESPONSE_SCHEMA)
            report = NarrativeReport.model_validate(payload)
        except MissingCredentialError:
            raise
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Narrative synthesis failed",
                latitude=coordinates.latitude,
                longitude=coordinates.longitude,
                error=str(exc),
            )
            raise SynthesisError(f"Narrative synthesis failed: {exc}") from exc

        logger.info("Narrative synthesized", location=report.location, alerts=len(report.alerts))
        return build_weather_state(report, raw, now=now)
