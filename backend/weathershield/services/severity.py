from __future__ import annotations

from typing import Iterable

from weathershield.schemas import AlertSeverity, WeatherAlert, WeatherState


def aggregate_severity(alerts: Iterable[WeatherAlert] | None) -> AlertSeverity | None:
    """Highest severity present, or None when there are no alerts."""
    highest: AlertSeverity | None = None
    for alert in alerts or ():
        if highest is None or alert.severity.rank > highest.rank:
            highest = alert.severity
    return highest


def state_severity(state: WeatherState | None) -> AlertSeverity | None:
    if state is None:
        return None
    return aggregate_severity(state.alerts)


SEVERITY_COLORS = {
    AlertSeverity.CRITICAL: "#ef4444",
    AlertSeverity.HIGH: "#f97316",
    AlertSeverity.MEDIUM: "#eab308",
}
DEFAULT_OVERLAY_COLOR = "#3b82f6"


def overlay_color(severity: AlertSeverity | None) -> str:
    """Map risk-circle color for the aggregated severity."""
    if severity is None:
        return DEFAULT_OVERLAY_COLOR
    return SEVERITY_COLORS.get(severity, DEFAULT_OVERLAY_COLOR)
