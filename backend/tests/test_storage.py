import json

from weathershield.schemas import Coordinates, ResolvedLocation
from weathershield.services.storage import SAVED_LOCATION_NAME, LocalStore


def test_first_run_has_nothing_stored(tmp_path) -> None:
    store = LocalStore(path=tmp_path / "missing" / "store.json")

    assert store.get_saved_location() is None
    assert store.get_api_key() is None


def test_location_and_key_round_trip_in_one_file(tmp_path) -> None:
    path = tmp_path / "store.json"
    store = LocalStore(path=path)

    store.save_location(ResolvedLocation(coordinates=Coordinates(latitude=24.7, longitude=46.7), name="X-city"))
    store.set_api_key("  secret  ")

    restored = LocalStore(path=path).get_saved_location()
    assert restored.name == "X-city"
    assert restored.coordinates == Coordinates(latitude=24.7, longitude=46.7)
    assert store.get_api_key() == "secret"
    assert json.loads(path.read_text(encoding="utf-8"))["last_location"] == {
        "lat": 24.7,
        "lng": 46.7,
        "address": "X-city",
    }

    store.clear_api_key()
    assert store.get_api_key() is None
    assert store.get_saved_location() is not None


def test_corrupt_file_is_treated_as_absent(tmp_path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    assert LocalStore(path=path).get_saved_location() is None


def test_partial_saved_location_is_ignored(tmp_path) -> None:
    path = tmp_path / "store.json"
    path.write_text(json.dumps({"last_location": {"lat": 24.7, "lng": None}}), encoding="utf-8")

    assert LocalStore(path=path).get_saved_location() is None


def test_saved_location_without_address_gets_placeholder(tmp_path) -> None:
    path = tmp_path / "store.json"
    path.write_text(json.dumps({"last_location": {"lat": 24.7, "lng": 46.7}}), encoding="utf-8")

    assert LocalStore(path=path).get_saved_location().name == SAVED_LOCATION_NAME


def test_write_failure_is_swallowed(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = LocalStore(path=blocker / "store.json")

    store.set_api_key("secret")

    assert store.get_api_key() is None
