import asyncio

import httpx
import pytest

from fakes import T0, FakeLlm, make_alert, make_narrative_payload, make_raw
from weathershield.errors import MissingCredentialError, SynthesisError
from weathershield.schemas import AlertSeverity, Coordinates
from weathershield.services.synthesis import (
    AQI_GREEN,
    AQI_ORANGE,
    AQI_RED,
    AQI_YELLOW,
    NARRATIVE_RESPONSE_SCHEMA,
    NarrativeSynthesisClient,
    build_synthesis_prompt,
    classify_air_quality,
)


RIYADH = Coordinates(latitude=24.7, longitude=46.7)


@pytest.mark.parametrize(
    ("aqi", "label", "color"),
    [
        (151, "very unhealthy", AQI_RED),
        (150, "unhealthy", AQI_ORANGE),
        (101, "unhealthy", AQI_ORANGE),
        (100, "moderate", AQI_YELLOW),
        (51, "moderate", AQI_YELLOW),
        (50, "good", AQI_GREEN),
        (49, "good", AQI_GREEN),
    ],
)
def test_classify_air_quality_breakpoints(aqi: int, label: str, color: str) -> None:
    quality = classify_air_quality(aqi)

    assert quality.value == aqi
    assert quality.label == label
    assert quality.color == color


def test_synthesize_builds_full_weather_state() -> None:
    llm = FakeLlm(make_narrative_payload())
    client = NarrativeSynthesisClient(llm=llm)

    state = asyncio.run(client.synthesize(RIYADH, make_raw(temperature=35.0, aqi=160), now=T0))

    assert state.location == "X-city"
    assert state.temperature == 35.0
    assert state.timestamp == T0
    assert state.wind_direction == "270°"
    assert state.visibility == "9.8 km"
    assert state.aqi.label == "very unhealthy"
    assert state.aqi.color == AQI_RED
    assert state.seismic.activity == "stable"
    assert state.sources == []
    assert state.alerts[0].severity is AlertSeverity.CRITICAL
    assert state.alerts[0].timestamp == "2026-02-20 09:00"
    assert llm.schemas == [NARRATIVE_RESPONSE_SCHEMA]


def test_synthesize_ignores_provider_wording_for_air_quality() -> None:
    payload = {**make_narrative_payload(), "aqi": {"value": 10, "label": "excellent", "color": "blue"}}
    client = NarrativeSynthesisClient(llm=FakeLlm(payload))

    state = asyncio.run(client.synthesize(RIYADH, make_raw(aqi=120), now=T0))

    assert state.aqi.value == 120
    assert state.aqi.label == "unhealthy"


@pytest.mark.parametrize("missing", ["riskAnalysis", "protocols", "alerts", "infrastructureImpact"])
def test_synthesize_rejects_missing_required_field(missing: str) -> None:
    payload = make_narrative_payload()
    payload.pop(missing)
    client = NarrativeSynthesisClient(llm=FakeLlm(payload))

    with pytest.raises(SynthesisError):
        asyncio.run(client.synthesize(RIYADH, make_raw(), now=T0))


def test_synthesize_rejects_unknown_severity() -> None:
    alert = {**make_alert("a1", AlertSeverity.HIGH), "severity": "EXTREME"}
    client = NarrativeSynthesisClient(llm=FakeLlm(make_narrative_payload(alerts=[alert])))

    with pytest.raises(SynthesisError):
        asyncio.run(client.synthesize(RIYADH, make_raw(), now=T0))


def test_synthesize_rejects_duplicate_alert_ids() -> None:
    alerts = [make_alert("a1", AlertSeverity.HIGH), make_alert("a1", AlertSeverity.LOW)]
    client = NarrativeSynthesisClient(llm=FakeLlm(make_narrative_payload(alerts=alerts)))

    with pytest.raises(SynthesisError):
        asyncio.run(client.synthesize(RIYADH, make_raw(), now=T0))


def test_synthesize_wraps_transport_errors() -> None:
    client = NarrativeSynthesisClient(llm=FakeLlm(httpx.ConnectError("offline")))

    with pytest.raises(SynthesisError):
        asyncio.run(client.synthesize(RIYADH, make_raw(), now=T0))


def test_synthesize_propagates_missing_credential() -> None:
    client = NarrativeSynthesisClient(llm=FakeLlm(MissingCredentialError("no key")))

    with pytest.raises(MissingCredentialError):
        asyncio.run(client.synthesize(RIYADH, make_raw(), now=T0))


def test_build_synthesis_prompt_mentions_all_factors() -> None:
    prompt = build_synthesis_prompt(RIYADH, make_raw(temperature=35.0, aqi=160), now=T0)

    assert "35.0 C" in prompt
    assert "US AQI): 160" in prompt
    assert "stable" in prompt
    assert "YYYY-MM-DD HH:mm" in prompt
    assert "2026-02-20 09:00" in prompt
    assert "2026-02-21" in prompt
