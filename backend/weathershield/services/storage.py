from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from weathershield.schemas import Coordinates, ResolvedLocation


logger = structlog.get_logger(__name__)

LOCATION_KEY = "last_location"
API_KEY_KEY = "gemini_api_key"
SAVED_LOCATION_NAME = "saved location"


@dataclass
class LocalStore:
    """JSON-file key/value store for the last known location and the provider API key.

    Read and write failures are logged and treated as "nothing stored".
    """

    path: Path

    def get_saved_location(self) -> ResolvedLocation | None:
        entry = self._read().get(LOCATION_KEY)
        if not isinstance(entry, dict):
            return None
        try:
            coordinates = Coordinates(latitude=entry.get("lat"), longitude=entry.get("lng"))
        except ValueError:
            logger.warning("Ignoring malformed saved location", path=str(self.path))
            return None
        address = entry.get("address")
        name = address.strip() if isinstance(address, str) and address.strip() else SAVED_LOCATION_NAME
        return ResolvedLocation(coordinates=coordinates, name=name)

    def save_location(self, location: ResolvedLocation) -> None:
        data = self._read()
        data[LOCATION_KEY] = {
            "lat": location.coordinates.latitude,
            "lng": location.coordinates.longitude,
            "address": location.name,
        }
        self._write(data)

    def get_api_key(self) -> str | None:
        value = self._read().get(API_KEY_KEY)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def set_api_key(self, api_key: str) -> None:
        data = self._read()
        data[API_KEY_KEY] = api_key.strip()
        self._write(data)

    def clear_api_key(self) -> None:
        data = self._read()
        if data.pop(API_KEY_KEY, None) is not None:
            self._write(data)

    def _read(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Local store read failed", path=str(self.path), error=str(exc))
            return {}

        try:
            payload = json.loads(raw)
        except ValueError as exc:
            logger.warning("Local store is not valid JSON", path=str(self.path), error=str(exc))
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Local store write failed", path=str(self.path), error=str(exc))
