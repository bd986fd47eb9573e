from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from typing import Any

import redis

from app.core.config import settings

_redis_client: redis.Redis | None = None
_redis_lock = threading.Lock()

_memory_lock = threading.Lock()
_memory_state: dict[str, dict[str, Any]] = {}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _get_redis_client() -> redis.Redis | None:
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    with _redis_lock:
        if _redis_client is not None:
            return _redis_client
        try:
            client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_timeout=0.25,
                socket_connect_timeout=0.25,
            )
            client.ping()
            _redis_client = client
            return _redis_client
        except Exception:
            _redis_client = None
            return None


def _position_key(worker_id: str) -> str:
    return f"workers:position:{worker_id}"


def _max_age_seconds() -> int:
    return max(1, int(settings.POSITION_MAX_AGE_SECONDS or 60))


def _prune_expired(now_ts: float) -> None:
    # Caller holds _memory_lock.
    expired = [key for key, item in _memory_state.items() if float(item.get("expires_at") or 0) <= now_ts]
    for key in expired:
        _memory_state.pop(key, None)


def record_position(*, worker_id: str, lat: float, lng: float, accuracy_m: float | None = None) -> dict[str, Any]:
    worker_key = str(worker_id or "").strip()
    payload = {
        "lat": float(lat),
        "lng": float(lng),
        "accuracy_m": float(accuracy_m) if accuracy_m is not None else None,
        "recorded_at": _utc_now().isoformat(),
    }
    if not worker_key:
        return payload
    ttl = _max_age_seconds()

    client = _get_redis_client()
    if client is not None:
        try:
            client.setex(_position_key(worker_key), ttl, json.dumps(payload))
            return payload
        except Exception:
            pass

    now_ts = _utc_now().timestamp()
    with _memory_lock:
        _prune_expired(now_ts)
        _memory_state[worker_key] = {**payload, "expires_at": now_ts + ttl}
    return payload


def fresh_position(worker_id: str) -> tuple[float, float] | None:
    """Last reported fix, or None when it is older than the tolerated age."""
    worker_key = str(worker_id or "").strip()
    if not worker_key:
        return None

    client = _get_redis_client()
    if client is not None:
        try:
            raw = client.get(_position_key(worker_key))
            if not raw:
                return None
            payload = json.loads(str(raw))
            return float(payload["lat"]), float(payload["lng"])
        except Exception:
            pass

    with _memory_lock:
        payload = _memory_state.get(worker_key)
        if payload is None:
            return None
        if float(payload.get("expires_at") or 0) <= _utc_now().timestamp():
            _memory_state.pop(worker_key, None)
            return None
        return float(payload["lat"]), float(payload["lng"])


def clear_positions_for_tests() -> None:
    with _memory_lock:
        _memory_state.clear()
