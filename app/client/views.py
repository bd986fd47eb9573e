"""Client-side view state.

Views apply actions optimistically and roll back when the server refuses.
Failures become dismissible notices; no exception escapes a view action.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable

from app.client.api import KIND_CONFLICT, ClientError, RoadsideClient
from app.services.geo import SORT_MODES, SORT_RECENT, Point, sort_requests, with_distances
from app.services.request_lifecycle import STATUS_PENDING, next_worker_status

_LOG = logging.getLogger("app.client")

LEVEL_INFO = "info"
LEVEL_ERROR = "error"


@dataclass
class Notice:
    id: int
    level: str
    message: str
    kind: str | None = None


class NoticeBoard:
    def __init__(self):
        self.items: list[Notice] = []
        self._ids = itertools.count(1)

    def info(self, message: str) -> Notice:
        notice = Notice(id=next(self._ids), level=LEVEL_INFO, message=message)
        self.items.append(notice)
        return notice

    def error(self, err: ClientError, prefix: str = "") -> Notice:
        message = f"{prefix}: {err.detail}" if prefix else err.detail
        notice = Notice(id=next(self._ids), level=LEVEL_ERROR, message=message, kind=err.kind)
        self.items.append(notice)
        return notice

    def dismiss(self, notice_id: int) -> None:
        self.items = [item for item in self.items if item.id != notice_id]

    def clear(self) -> None:
        self.items = []


def run_action(board: NoticeBoard, label: str, action: Callable[[], Any]) -> Any:
    try:
        return action()
    except ClientError as err:
        _LOG.info("client action failed action=%s kind=%s detail=%s", label, err.kind, err.detail)
        board.error(err, label)
        return None


class ActiveJobView:
    """The worker's current job with optimistic status steps."""

    def __init__(self, client: RoadsideClient, board: NoticeBoard, job: dict[str, Any]):
        self.client = client
        self.board = board
        self.job = dict(job)

    def advance(self) -> bool:
        previous = dict(self.job)
        target = next_worker_status(previous.get("status") or "")
        if target is None:
            self.board.info("This job has no further steps")
            return False
        self.job = {**previous, "status": target}
        try:
            self.job = self.client.advance(previous["id"], target)
        except ClientError as err:
            self.job = dict(err.current) if err.current else previous
            self.board.error(err, "Could not update job")
            return False
        return True

    def cancel(self, reason: str | None = None) -> bool:
        previous = dict(self.job)
        self.job = {**previous, "status": "cancelled"}
        try:
            self.job = self.client.cancel(previous["id"], reason)
        except ClientError as err:
            self.job = dict(err.current) if err.current else previous
            self.board.error(err, "Could not cancel job")
            return False
        return True


class PendingBoard:
    """Pending requests as a mechanic sees them; re-sorted locally on every change."""

    def __init__(self, client: RoadsideClient, board: NoticeBoard, *, sort: str = SORT_RECENT):
        self.client = client
        self.board = board
        self.sort = sort if sort in SORT_MODES else SORT_RECENT
        self.origin: Point | None = None
        self._rows: list[dict[str, Any]] = []

    def replace(self, rows: list[dict[str, Any]]) -> None:
        self._rows = [dict(row) for row in rows]

    def refresh(self) -> None:
        rows = run_action(self.board, "Could not load requests", lambda: self.client.pending_requests())
        if rows is not None:
            self.replace(rows)

    def set_sort(self, mode: str) -> None:
        if mode in SORT_MODES:
            self.sort = mode

    def set_origin(self, origin: Point | None) -> None:
        self.origin = origin

    @property
    def rows(self) -> list[dict[str, Any]]:
        return sort_requests(with_distances(self._rows, self.origin), self.sort, self.origin)

    def accept(self, request_id: str) -> dict[str, Any] | None:
        snapshot = list(self._rows)
        self._rows = [row for row in self._rows if row.get("id") != request_id]
        try:
            return self.client.accept(request_id)
        except ClientError as err:
            current = err.current or {}
            # Somebody else took it: the row stays gone.
            if err.kind != KIND_CONFLICT or current.get("status") == STATUS_PENDING:
                self._rows = snapshot
            self.board.error(err, "Could not accept request")
            return None


class NotificationInbox:
    def __init__(self, client: RoadsideClient, board: NoticeBoard):
        self.client = client
        self.board = board
        self.rows: list[dict[str, Any]] = []

    def replace(self, rows: list[dict[str, Any]]) -> None:
        self.rows = [dict(row) for row in rows]

    @property
    def unread_count(self) -> int:
        return sum(1 for row in self.rows if not row.get("read"))

    def mark_all_read(self) -> bool:
        snapshot = [dict(row) for row in self.rows]
        self.rows = [{**row, "read": True} for row in self.rows]
        try:
            self.client.mark_all_notifications_read()
        except ClientError as err:
            self.rows = snapshot
            self.board.error(err, "Could not mark notifications read")
            return False
        return True


class DeferredSubmission:
    """Holds a request form until a location is known, then submits it once."""

    def __init__(self, client: RoadsideClient, board: NoticeBoard):
        self.client = client
        self.board = board
        self._queued: dict[str, Any] | None = None

    @property
    def waiting(self) -> bool:
        return self._queued is not None

    def submit(self, form: dict[str, Any], position: Point | None = None) -> dict[str, Any] | None:
        if position is None:
            self._queued = dict(form)
            self.board.info("Waiting for your location before sending the request")
            return None
        return self._send(form, position)

    def supply_position(self, position: Point) -> dict[str, Any] | None:
        if self._queued is None:
            return None
        form, self._queued = self._queued, None
        return self._send(form, position)

    def discard(self) -> None:
        self._queued = None

    def _send(self, form: dict[str, Any], position: Point) -> dict[str, Any] | None:
        payload = {**form, "lat": float(position[0]), "lng": float(position[1])}
        created = run_action(self.board, "Failed to submit request", lambda: self.client.create_request(payload))
        if created is not None:
            self.board.info("Request submitted")
        return created
