from __future__ import annotations

from typing import Any

# One lookup table for every enum the views render; tone is a style token, not a color.
STATUS_DISPLAY: dict[str, dict[str, str]] = {
    "pending": {"label": "Waiting for a mechanic", "tone": "neutral"},
    "accepted": {"label": "Job Accepted", "tone": "info"},
    "en_route": {"label": "On The Way", "tone": "info"},
    "arrived": {"label": "Arrived at Location", "tone": "info"},
    "started": {"label": "Service in Progress", "tone": "warning"},
    "completed": {"label": "Job Completed", "tone": "success"},
    "cancelled": {"label": "Cancelled", "tone": "muted"},
}

URGENCY_DISPLAY: dict[str, dict[str, str]] = {
    "emergency": {"label": "Emergency - Immediate assistance", "tone": "danger"},
    "high": {"label": "High - Need help soon (30 min)", "tone": "warning"},
    "normal": {"label": "Normal - Within 1 hour", "tone": "info"},
    "low": {"label": "Low - Can wait up to 2 hours", "tone": "muted"},
}

SERVICE_DISPLAY: dict[str, dict[str, str]] = {
    "battery": {"label": "Battery Jump", "tone": "neutral"},
    "tire": {"label": "Tire Change", "tone": "neutral"},
    "fuel": {"label": "Fuel Delivery", "tone": "neutral"},
    "tow": {"label": "Towing", "tone": "neutral"},
    "other": {"label": "Other Issue", "tone": "neutral"},
}

NOTIFICATION_DISPLAY: dict[str, dict[str, str]] = {
    "request_update": {"label": "Request update", "tone": "info"},
    "assignment": {"label": "Mechanic assigned", "tone": "success"},
    "message": {"label": "New message", "tone": "info"},
    "system": {"label": "System", "tone": "muted"},
}

_FALLBACK_TONE = "neutral"


def _lookup(table: dict[str, dict[str, str]], code: str | None) -> dict[str, str]:
    key = str(code or "").strip()
    entry = table.get(key)
    if entry is None:
        return {"label": key.replace("_", " ") or "-", "tone": _FALLBACK_TONE}
    return dict(entry)


def status_display(code: str | None) -> dict[str, str]:
    return _lookup(STATUS_DISPLAY, code)


def urgency_display(code: str | None) -> dict[str, str]:
    return _lookup(URGENCY_DISPLAY, code)


def service_display(code: str | None) -> dict[str, str]:
    return _lookup(SERVICE_DISPLAY, code)


def status_label(code: str | None) -> str:
    return status_display(code)["label"]


def service_label(code: str | None) -> str:
    return service_display(code)["label"]


def display_catalogue() -> dict[str, Any]:
    return {
        "status": {code: dict(entry) for code, entry in STATUS_DISPLAY.items()},
        "urgency": {code: dict(entry) for code, entry in URGENCY_DISPLAY.items()},
        "service_type": {code: dict(entry) for code, entry in SERVICE_DISPLAY.items()},
        "notification_type": {code: dict(entry) for code, entry in NOTIFICATION_DISPLAY.items()},
    }
