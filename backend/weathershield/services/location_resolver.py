from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx
import structlog

from weathershield.errors import GeolocationUnavailableError, LocationResolutionError, MissingCredentialError
from weathershield.schemas import Coordinates, GeocodeAnswer, ResolvedLocation
from weathershield.services.llm_client import GeminiClient


logger = structlog.get_logger(__name__)

CURRENT_LOCATION_NAME = "current location"

GEOCODE_PROMPT_TEMPLATE = (
    'Convert the following location into coordinates and an official place name: "{query}". '
    "Answer with JSON only."
)

GEOCODE_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "lat": {"type": "NUMBER"},
        "lng": {"type": "NUMBER"},
        "name": {"type": "STRING"},
    },
    "required": ["lat", "lng", "name"],
}

DeviceLocator = Callable[[], Awaitable[Coordinates | None]]


@dataclass
class LocationResolver:
    llm: GeminiClient
    device_timeout_seconds: float = 10.0

    async def resolve_by_query(self, query: str) -> ResolvedLocation:
        query = query.strip()
        if not query:
            raise LocationResolutionError("Location query is empty.")

        try:
            payload = await self.llm.generate_json(
                GEOCODE_PROMPT_TEMPLATE.format(query=query),
                GEOCODE_RESPONSE_SCHEMA,
            )
            answer = GeocodeAnswer.model_validate(payload)
        except MissingCredentialError:
            raise
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Geocoding failed", query=query, error=str(exc))
            raise LocationResolutionError(f"Could not resolve location '{query}'.") from exc

        logger.info("Location resolved", query=query, name=answer.name, latitude=answer.lat, longitude=answer.lng)
        return ResolvedLocation(
            coordinates=Coordinates(latitude=answer.lat, longitude=answer.lng),
            name=answer.name,
        )

    async def resolve_by_device(self, locator: DeviceLocator) -> ResolvedLocation:
        try:
            coordinates = await asyncio.wait_for(locator(), timeout=self.device_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise GeolocationUnavailableError("Device positioning timed out.") from exc
        except Exception as exc:
            raise GeolocationUnavailableError(f"Device positioning failed: {exc}") from exc

        if coordinates is None:
            raise GeolocationUnavailableError("Device positioning was denied or unavailable.")

        return ResolvedLocation(coordinates=coordinates, name=CURRENT_LOCATION_NAME)
