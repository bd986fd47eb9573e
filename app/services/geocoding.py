from __future__ import annotations

import logging

import httpx

from app.core.config import settings

_LOG = logging.getLogger("app.geocoding")


def coordinates_label(lat: float, lng: float) -> str:
    return f"{float(lat):.5f}, {float(lng):.5f}"


def reverse_geocode(lat: float, lng: float) -> str | None:
    """Display address for a coordinate pair, or None when the lookup fails."""
    url = str(settings.GEOCODER_URL or "").strip()
    if not url:
        return None
    params = {"format": "json", "lat": f"{float(lat):.6f}", "lon": f"{float(lng):.6f}", "addressdetails": 1}
    headers = {"User-Agent": settings.GEOCODER_USER_AGENT}
    try:
        with httpx.Client(timeout=float(settings.GEOCODER_TIMEOUT_SECONDS)) as client:
            response = client.get(url, params=params, headers=headers)
        if response.status_code >= 400:
            _LOG.warning("reverse geocoding failed status=%s lat=%s lng=%s", response.status_code, lat, lng)
            return None
        data = response.json() if response.content else {}
    except (httpx.HTTPError, ValueError) as exc:
        _LOG.warning("reverse geocoding error lat=%s lng=%s error=%s", lat, lng, exc)
        return None
    address = str((data or {}).get("display_name") or "").strip()
    return address or None


def display_address(lat: float, lng: float, address: str | None = None) -> str:
    known = str(address or "").strip()
    if known:
        return known
    return reverse_geocode(lat, lng) or coordinates_label(lat, lng)
