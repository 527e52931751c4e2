from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class AlertSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANKS[self]


_SEVERITY_RANKS = {
    AlertSeverity.LOW: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.HIGH: 3,
    AlertSeverity.CRITICAL: 4,
}


class RefreshTrigger(str, Enum):
    MANUAL = "manual"
    PERIODIC = "periodic"


class RefreshPath(str, Enum):
    FULL = "full"
    CHEAP = "cheap"


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ResolvedLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    coordinates: Coordinates
    name: str


class LocationState(BaseModel):
    """Display-side view of the active location; owned by the refresh orchestrator."""

    model_config = ConfigDict(frozen=True)

    latitude: float | None = None
    longitude: float | None = None
    address: str = "locating..."
    loading: bool = True
    error: str | None = None

    @model_validator(mode="after")
    def validate_coordinate_pair(self) -> "LocationState":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be set together.")
        return self

    @property
    def coordinates(self) -> Coordinates | None:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinates(latitude=self.latitude, longitude=self.longitude)


class SeismicSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    activity: str
    magnitude: float | None = None
    nearest: str | None = None


class DailySeries(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: list[str]
    min_temp: list[float]
    max_temp: list[float]
    weather_code: list[int]

    @model_validator(mode="after")
    def validate_aligned_lengths(self) -> "DailySeries":
        lengths = {len(self.time), len(self.min_temp), len(self.max_temp), len(self.weather_code)}
        if len(lengths) != 1:
            raise ValueError("Daily forecast arrays must have equal length.")
        return self


class RawTelemetry(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float
    humidity: float
    wind_speed: float
    wind_direction: float
    visibility: float
    apparent_temperature: float
    weather_code: int
    aqi: int
    seismic: SeismicSummary
    daily: DailySeries


class WeatherAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    severity: AlertSeverity
    type: str
    timestamp: str


class ForecastEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: str
    temp: str
    condition: str


class AirQuality(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: int
    label: str
    color: str


class Source(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    uri: str


class NarrativeReport(BaseModel):
    """Strict shape of the narrative provider's JSON answer."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="ignore")

    condition: str
    location: str
    risk_analysis: str
    infrastructure_impact: str
    protocols: list[str]
    forecast: list[ForecastEntry]
    alerts: list[WeatherAlert]

    @model_validator(mode="after")
    def validate_unique_alert_ids(self) -> "NarrativeReport":
        ids = [alert.id for alert in self.alerts]
        if len(ids) != len(set(ids)):
            raise ValueError("alert ids must be unique.")
        return self


class GeocodeAnswer(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    name: str = Field(min_length=1)


class WeatherState(BaseModel):
    """Unified display-ready record. Replaced wholesale or patched by copy, never mutated."""

    model_config = ConfigDict(frozen=True)

    temperature: float
    condition: str
    location: str
    humidity: float
    wind_speed: float
    wind_direction: str
    visibility: str
    timestamp: datetime
    risk_analysis: str
    infrastructure_impact: str
    protocols: list[str]
    forecast: list[ForecastEntry]
    alerts: list[WeatherAlert]
    sources: list[Source] = Field(default_factory=list)
    aqi: AirQuality
    seismic: SeismicSummary


class SyncClock(BaseModel):
    model_config = ConfigDict(frozen=True)

    last_full_sync: datetime | None = None


class RadarFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: int
    tile_url: str


# Provider payloads, validated at the client boundary.


class OpenMeteoCurrent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    temperature_2m: float
    relative_humidity_2m: float
    apparent_temperature: float
    weather_code: int
    wind_speed_10m: float
    wind_direction_10m: float
    visibility: float


class OpenMeteoDaily(BaseModel):
    model_config = ConfigDict(extra="ignore")

    time: list[str]
    weather_code: list[int]
    temperature_2m_max: list[float]
    temperature_2m_min: list[float]


class OpenMeteoForecastPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    current: OpenMeteoCurrent
    daily: OpenMeteoDaily


class AirQualityCurrent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    us_aqi: float


class AirQualityPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    current: AirQualityCurrent


class UsgsEventProperties(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mag: float | None = None
    place: str | None = None


class UsgsEventFeature(BaseModel):
    model_config = ConfigDict(extra="ignore")

    properties: UsgsEventProperties


class UsgsEventPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    features: list[UsgsEventFeature]


# HTTP request bodies.


class LocationSearchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: str = Field(min_length=1, max_length=120)


class DeviceLocationRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def validate_coordinate_pair(self) -> "DeviceLocationRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("Provide both latitude and longitude, or neither.")
        return self


class MuteRequest(BaseModel):
    muted: bool


class ApiKeyRequest(BaseModel):
    api_key: str = Field(min_length=1)
