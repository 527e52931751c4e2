from __future__ import annotations


class WeatherShieldError(Exception):
    """Base class for recoverable pipeline failures."""


class TelemetryFetchError(WeatherShieldError):
    """One of the numeric sources (forecast, air quality, seismic) failed or was malformed."""


class LocationResolutionError(WeatherShieldError):
    """Free-text location could not be turned into coordinates."""


class GeolocationUnavailableError(WeatherShieldError):
    """Device-reported position was denied, timed out or missing."""


class SynthesisError(WeatherShieldError):
    """Narrative provider was unreachable, returned malformed output or had no credential."""


class MissingCredentialError(SynthesisError, LocationResolutionError):
    """No provider API key is configured; raised before any network call."""
