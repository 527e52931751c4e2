from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from weathershield.config import Settings
from weathershield.schemas import RadarFrame


logger = structlog.get_logger(__name__)


@dataclass
class RadarClient:
    """Tracks the latest RainViewer radar frame for the map layer."""

    settings: Settings
    transport: httpx.AsyncBaseTransport | None = None
    latest: RadarFrame | None = field(default=None, init=False)
    _client: httpx.AsyncClient = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=self.settings.request_timeout_seconds,
            transport=self.transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def refresh(self) -> RadarFrame | None:
        """Fetch radar metadata; on any failure keep the previous frame."""
        try:
            response = await self._client.get(self.settings.rainviewer_maps_url)
            response.raise_for_status()
            frame = _latest_frame(response.json(), tile_host=self.settings.rainviewer_tile_host)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Radar metadata refresh failed", error=str(exc))
            return self.latest

        if frame is not None:
            self.latest = frame
        return self.latest


def radar_tile_url(timestamp: int, *, tile_host: str) -> str:
    return f"{tile_host}/v2/radar/{timestamp}/256/{{z}}/{{x}}/{{y}}/4/1_1.png"


def _latest_frame(payload: Any, *, tile_host: str) -> RadarFrame | None:
    if not isinstance(payload, dict):
        raise ValueError("Radar metadata is not an object.")
    radar = payload.get("radar", {})
    past = radar.get("past", []) if isinstance(radar, dict) else []
    if not isinstance(past, list) or not past:
        return None

    last = past[-1]
    timestamp = last.get("time") if isinstance(last, dict) else None
    if not isinstance(timestamp, int):
        raise ValueError("Radar frame has no integer timestamp.")
    return RadarFrame(timestamp=timestamp, tile_url=radar_tile_url(timestamp, tile_host=tile_host))
