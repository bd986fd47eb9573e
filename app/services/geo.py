from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Iterable

EARTH_RADIUS_MILES = 3958.8

SORT_RECENT = "recent"
SORT_NEAREST = "nearest"
SORT_URGENCY = "urgency"
SORT_MODES = (SORT_RECENT, SORT_NEAREST, SORT_URGENCY)

URGENCY_RANK = {"emergency": 0, "high": 1, "normal": 2, "low": 3}

Point = tuple[float, float]


def haversine_miles(a: Point, b: Point) -> float:
    lat1, lng1 = a
    lat2, lng2 = b
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def point_of(row: dict[str, Any]) -> Point | None:
    location = row.get("location") or {}
    lat = location.get("lat")
    lng = location.get("lng")
    if lat is None or lng is None:
        return None
    try:
        return float(lat), float(lng)
    except (TypeError, ValueError):
        return None


def _created_ts(row: dict[str, Any]) -> float:
    raw = row.get("created_at")
    if isinstance(raw, datetime):
        dt = raw
    else:
        try:
            dt = datetime.fromisoformat(str(raw or "").replace("Z", "+00:00"))
        except ValueError:
            return 0.0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def with_distances(rows: Iterable[dict[str, Any]], origin: Point | None) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for row in rows:
        item = dict(row)
        point = point_of(item)
        if origin is not None and point is not None:
            item["distance_miles"] = round(haversine_miles(origin, point), 2)
        else:
            item["distance_miles"] = None
        out.append(item)
    return out


def sort_requests(rows: Iterable[dict[str, Any]], mode: str, origin: Point | None = None) -> list[dict[str, Any]]:
    """Order a pending-request snapshot for display.

    ``recent`` is newest first, ``nearest`` is ascending distance from
    ``origin`` (input order is kept when the origin is unknown, rows without
    coordinates go last), ``urgency`` ranks emergency, high, normal, low with
    newest first inside a rank.
    """
    items = list(rows)
    normalized = str(mode or SORT_RECENT).strip().lower()
    if normalized == SORT_NEAREST:
        if origin is None:
            return items
        def _distance_key(row: dict[str, Any]) -> tuple[int, float]:
            point = point_of(row)
            if point is None:
                return 1, 0.0
            return 0, haversine_miles(origin, point)
        return sorted(items, key=_distance_key)
    by_recent = sorted(items, key=_created_ts, reverse=True)
    if normalized == SORT_URGENCY:
        return sorted(by_recent, key=lambda row: URGENCY_RANK.get(str(row.get("urgency") or ""), len(URGENCY_RANK)))
    return by_recent
