"""Typed HTTP client for the marketplace API.

Every failure surfaces as ``ClientError`` with one of a fixed set of kinds so
views can decide between a notice, a rollback or a re-login without looking at
status codes.
"""
from __future__ import annotations

from typing import Any

import httpx

KIND_VALIDATION = "validation"
KIND_UNAUTHENTICATED = "unauthenticated"
KIND_PERMISSION_DENIED = "permission_denied"
KIND_NOT_FOUND = "not_found"
KIND_CONFLICT = "conflict"
KIND_UNAVAILABLE = "unavailable"

_KIND_BY_STATUS = {
    400: KIND_VALIDATION,
    422: KIND_VALIDATION,
    401: KIND_UNAUTHENTICATED,
    403: KIND_PERMISSION_DENIED,
    404: KIND_NOT_FOUND,
    409: KIND_CONFLICT,
}


class ClientError(Exception):
    def __init__(
        self,
        kind: str,
        detail: str,
        status: int | None = None,
        current: dict[str, Any] | None = None,
    ):
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.status = status
        self.current = current


def error_from_response(response: httpx.Response) -> ClientError:
    payload: Any = {}
    try:
        payload = response.json() if response.content else {}
    except ValueError:
        payload = {}
    raw = payload.get("detail") if isinstance(payload, dict) else None
    current = None
    if isinstance(raw, dict):
        current = raw.get("current")
        detail = str(raw.get("message") or response.status_code)
    else:
        detail = str(raw or response.text or response.status_code)
    kind = _KIND_BY_STATUS.get(response.status_code, KIND_UNAVAILABLE)
    return ClientError(kind, detail, status=response.status_code, current=current)


class RoadsideClient:
    """Thin wrapper over an ``httpx.Client``; works with FastAPI's TestClient too."""

    def __init__(self, http: httpx.Client, token: str | None = None, prefix: str = "/api"):
        self.http = http
        self.token = token
        self.prefix = prefix.rstrip("/")
        self.user: dict[str, Any] | None = None

    @classmethod
    def from_url(cls, base_url: str, *, timeout: float = 10.0, token: str | None = None) -> "RoadsideClient":
        return cls(httpx.Client(base_url=base_url, timeout=timeout), token=token)

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, *, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        clean_params = {key: value for key, value in (params or {}).items() if value is not None}
        try:
            response = self.http.request(
                method,
                f"{self.prefix}{path}",
                json=json,
                params=clean_params or None,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise ClientError(KIND_UNAVAILABLE, f"Service unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise error_from_response(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ClientError(KIND_UNAVAILABLE, "Unexpected response from service", status=response.status_code) from exc

    def _session(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.token = payload.get("access_token")
        self.user = payload.get("user")
        return payload

    # auth
    def signup(self, *, name: str, email: str, password: str, role: str = "user", phone: str | None = None) -> dict:
        body = {"name": name, "email": email, "password": password, "role": role, "phone": phone}
        return self._session(self._request("POST", "/auth/signup", json=body))

    def login(self, email: str, password: str) -> dict:
        return self._session(self._request("POST", "/auth/login", json={"email": email, "password": password}))

    def logout(self) -> None:
        try:
            self._request("POST", "/auth/logout")
        finally:
            self.token = None
            self.user = None

    def me(self) -> dict:
        return self._request("GET", "/auth/me")

    def update_profile(self, *, name: str | None = None, phone: str | None = None) -> dict:
        body = {key: value for key, value in (("name", name), ("phone", phone)) if value is not None}
        updated = self._request("PATCH", "/auth/me", json=body)
        if self.user is not None:
            self.user = {**self.user, **updated}
        return updated

    # requests
    def create_request(self, payload: dict[str, Any]) -> dict:
        return self._request("POST", "/requests", json=payload)

    def my_requests(self) -> list[dict]:
        return self._request("GET", "/requests/mine")["rows"]

    def pending_requests(self, *, sort: str = "recent", lat: float | None = None, lng: float | None = None) -> list[dict]:
        return self._request("GET", "/requests/pending", params={"sort": sort, "lat": lat, "lng": lng})["rows"]

    def assigned_requests(self) -> list[dict]:
        return self._request("GET", "/requests/assigned")["rows"]

    def get_request(self, request_id: str) -> dict:
        return self._request("GET", f"/requests/{request_id}")

    def timeline(self, request_id: str) -> list[dict]:
        return self._request("GET", f"/requests/{request_id}/timeline")["rows"]

    def accept(self, request_id: str) -> dict:
        return self._request("POST", f"/requests/{request_id}/accept")

    def advance(self, request_id: str, status: str | None = None) -> dict:
        return self._request("POST", f"/requests/{request_id}/status", json={"status": status})

    def cancel(self, request_id: str, reason: str | None = None) -> dict:
        return self._request("POST", f"/requests/{request_id}/cancel", json={"reason": reason})

    # chat
    def messages(self, request_id: str) -> list[dict]:
        return self._request("GET", f"/requests/{request_id}/messages")["rows"]

    def send_message(self, request_id: str, body: str) -> dict:
        return self._request("POST", f"/requests/{request_id}/messages", json={"body": body})

    def mark_messages_read(self, request_id: str) -> int:
        return int(self._request("POST", f"/requests/{request_id}/messages/read", json={})["changed"])

    # notifications
    def notifications(self, *, unread_only: bool = False) -> dict:
        return self._request("GET", "/notifications", params={"unread_only": str(unread_only).lower()})

    def mark_notification_read(self, notification_id: str) -> dict:
        return self._request("POST", f"/notifications/{notification_id}/read")

    def mark_all_notifications_read(self) -> dict:
        return self._request("POST", "/notifications/read-all")

    # workers
    def completed_jobs(self, limit: int | None = None) -> list[dict]:
        return self._request("GET", "/jobs/completed", params={"limit": limit})["rows"]

    def report_position(self, lat: float, lng: float, accuracy_m: float | None = None) -> dict:
        return self._request("PUT", "/workers/me/position", json={"lat": lat, "lng": lng, "accuracy_m": accuracy_m})

    def display(self) -> dict:
        return self._request("GET", "/meta/display")
