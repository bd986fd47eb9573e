"""WebSocket bridge for live query feeds.

Each socket owns one subscription. Snapshots are pushed as
``{"type": "snapshot", "rows": [...]}``; a terminated feed sends
``{"type": "error", "detail": ...}`` and closes the socket.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.deps import feed_hub_for, session_from_token
from app.db.session import get_db
from app.models.user import ROLE_ADMIN, ROLE_MECHANIC
from app.services.chat_service import messages_query
from app.services.feeds import FeedTerminated, LiveQuery
from app.services.geo import SORT_MODES, SORT_RECENT
from app.services.notifications import notifications_query
from app.services.service_requests import pending_requests_query

router = APIRouter()
_LOG = logging.getLogger("app.feeds")

POLICY_VIOLATION = 1008


async def _reject(websocket: WebSocket, detail: Any) -> None:
    await websocket.send_json({"type": "error", "detail": detail})
    await websocket.close(code=POLICY_VIOLATION)


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)
        if message.get("type") == "error":
            await websocket.close(code=POLICY_VIOLATION)
            return


async def _wait_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message.get("type") == "websocket.disconnect":
            return


async def _serve(websocket: WebSocket, query: LiveQuery) -> None:
    hub = feed_hub_for(websocket.app)
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_change(rows: list[dict[str, Any]]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, {"type": "snapshot", "rows": rows})

    def on_error(exc: Exception) -> None:
        detail = str(exc) if isinstance(exc, FeedTerminated) else "Feed unavailable"
        loop.call_soon_threadsafe(queue.put_nowait, {"type": "error", "detail": detail})

    dispose = await run_in_threadpool(hub.subscribe, query, on_change, on_error)
    tasks = [
        asyncio.ensure_future(_pump(websocket, queue)),
        asyncio.ensure_future(_wait_disconnect(websocket)),
    ]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        await run_in_threadpool(dispose)
        for task in tasks:
            if not task.done():
                task.cancel()
            elif not task.cancelled() and task.exception() is not None:
                _LOG.debug("feed socket ended topic=%s error=%s", query.topic, task.exception())
        _LOG.debug("feed socket closed topic=%s", query.topic)


async def _open_feed(
    websocket: WebSocket,
    db: Session,
    token: str | None,
    build_query: Callable[[dict], LiveQuery],
    roles: tuple[str, ...] | None = None,
) -> None:
    await websocket.accept()
    try:
        viewer = session_from_token(db, token)
        if roles is not None and viewer.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        query = build_query(viewer)
    except HTTPException as exc:
        await _reject(websocket, exc.detail)
        return
    finally:
        db.close()
    await _serve(websocket, query)


@router.websocket("/pending-requests")
async def pending_requests_feed(
    websocket: WebSocket,
    token: str | None = None,
    sort: str = SORT_RECENT,
    db: Session = Depends(get_db),
):
    def _build(viewer: dict) -> LiveQuery:
        mode = str(sort or SORT_RECENT).strip().lower()
        if mode not in SORT_MODES:
            raise HTTPException(status_code=400, detail=f'Unknown sort "{mode}"')
        return pending_requests_query(uuid.UUID(viewer["sub"]), sort=mode)

    await _open_feed(websocket, db, token, _build, roles=(ROLE_MECHANIC, ROLE_ADMIN))


@router.websocket("/requests/{request_id}/messages")
async def messages_feed(
    websocket: WebSocket,
    request_id: str,
    token: str | None = None,
    db: Session = Depends(get_db),
):
    def _build(viewer: dict) -> LiveQuery:
        try:
            request_uuid = uuid.UUID(str(request_id))
        except ValueError:
            raise HTTPException(status_code=400, detail='Invalid "request_id"')
        return messages_query(request_uuid, viewer)

    await _open_feed(websocket, db, token, _build)


@router.websocket("/notifications")
async def notifications_feed(
    websocket: WebSocket,
    token: str | None = None,
    db: Session = Depends(get_db),
):
    await _open_feed(websocket, db, token, lambda viewer: notifications_query(viewer["sub"]))
