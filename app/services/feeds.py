"""Live query feeds.

A feed re-runs its query against the store whenever a change is published on
its topic and hands the full ordered result set to the subscriber. There are
no deltas: every delivery replaces the subscriber's view.

Changes travel over a ``ChangeBus``. The in-memory bus serves a single
process; the Redis bus fans changes out to every API process listening on the
same channel.
"""
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import redis
from sqlalchemy.orm import Session

from app.core.config import settings

_LOG = logging.getLogger("app.feeds")

Snapshot = list[dict[str, Any]]
ChangeListener = Callable[[str], None]

TOPIC_PENDING_REQUESTS = "requests:pending"


def messages_topic(request_id: Any) -> str:
    return f"messages:{request_id}"


def notifications_topic(user_id: Any) -> str:
    return f"notifications:{user_id}"


def worker_position_topic(worker_id: Any) -> str:
    return f"workers:position:{worker_id}"


class FeedTerminated(Exception):
    """Raised by a live query when the subscriber may no longer observe it."""


@dataclass(frozen=True)
class LiveQuery:
    topics: tuple[str, ...]
    fetch: Callable[[Session], Snapshot]

    @property
    def topic(self) -> str:
        return self.topics[0]


class ChangeBus(Protocol):
    def attach(self, listener: ChangeListener) -> None:
        ...

    def publish(self, topic: str) -> None:
        ...

    def close(self) -> None:
        ...


class InMemoryChangeBus:
    def __init__(self):
        self._listeners: list[ChangeListener] = []
        self._lock = threading.Lock()

    def attach(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def publish(self, topic: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(topic)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()


class RedisChangeBus:
    def __init__(self, client: redis.Redis, channel: str):
        self.client = client
        self.channel = channel
        self._listeners: list[ChangeListener] = []
        self._lock = threading.Lock()
        self._pubsub = None
        self._thread = None

    def attach(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)
            if self._thread is not None:
                return
            self._pubsub = self.client.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(**{self.channel: self._on_message})
            self._thread = self._pubsub.run_in_thread(sleep_time=0.5, daemon=True)

    def _on_message(self, message: dict) -> None:
        topic = str(message.get("data") or "").strip()
        if not topic:
            return
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(topic)

    def publish(self, topic: str) -> None:
        self.client.publish(self.channel, topic)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()
            thread, pubsub = self._thread, self._pubsub
            self._thread = None
            self._pubsub = None
        if thread is not None:
            thread.stop()
        if pubsub is not None:
            pubsub.close()


def build_change_bus() -> ChangeBus:
    backend = str(settings.FEED_BACKEND or "").strip().lower()
    if backend != "redis":
        return InMemoryChangeBus()
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=0.4,
        )
        client.ping()
        return RedisChangeBus(client, settings.FEED_REDIS_CHANNEL)
    except Exception:
        _LOG.warning("Redis change bus unavailable; fallback to in-memory bus")
        return InMemoryChangeBus()


class _Subscription:
    def __init__(
        self,
        sub_id: int,
        query: LiveQuery,
        on_change: Callable[[Snapshot], None],
        on_error: Callable[[Exception], None] | None,
    ):
        self.id = sub_id
        self.query = query
        self.on_change = on_change
        self.on_error = on_error
        self.active = True
        # Held across fetch+deliver so one feed never delivers an older snapshot after a newer one.
        self.lock = threading.RLock()
        # Held only around the active check and the callback; dispose never waits on a fetch.
        self.gate = threading.RLock()


class FeedHub:
    def __init__(self, session_factory: Callable[[], Session], bus: ChangeBus):
        self._session_factory = session_factory
        self._bus = bus
        self._subs: dict[str, dict[int, _Subscription]] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        bus.attach(self._dispatch)

    def subscribe(
        self,
        query: LiveQuery,
        on_change: Callable[[Snapshot], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Callable[[], None]:
        """Start a feed; the first snapshot is delivered before this returns.

        The returned disposer stops the feed. Once it returns, ``on_change`` and
        ``on_error`` are never called again for this subscription.
        """
        sub = _Subscription(next(self._ids), query, on_change, on_error)
        with self._lock:
            for topic in query.topics:
                self._subs.setdefault(topic, {})[sub.id] = sub
        _LOG.debug("feed subscribed topic=%s id=%s", query.topic, sub.id)
        self._deliver(sub)

        def dispose() -> None:
            self._dispose(sub)

        return dispose

    def publish(self, *topics: str) -> None:
        for topic in dict.fromkeys(t for t in topics if t):
            self._bus.publish(topic)

    def subscriber_count(self, topic: str | None = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._subs.get(topic, {}))
            return len({sub_id for by_id in self._subs.values() for sub_id in by_id})

    def close(self) -> None:
        with self._lock:
            subs = list({sub.id: sub for by_id in self._subs.values() for sub in by_id.values()}.values())
        for sub in subs:
            self._dispose(sub)
        self._bus.close()

    def _dispatch(self, topic: str) -> None:
        with self._lock:
            subs = list(self._subs.get(topic, {}).values())
        for sub in subs:
            self._deliver(sub)

    def _deliver(self, sub: _Subscription) -> None:
        with sub.lock:
            if not sub.active:
                return
            try:
                with self._session_factory() as db:
                    rows = sub.query.fetch(db)
            except Exception as exc:
                _LOG.warning("feed terminated topic=%s id=%s error=%s", sub.query.topic, sub.id, exc)
                self._terminate(sub, exc)
                return
            with sub.gate:
                if not sub.active:
                    return
                try:
                    sub.on_change(rows)
                except Exception:
                    _LOG.exception("feed consumer failed topic=%s id=%s", sub.query.topic, sub.id)

    def _terminate(self, sub: _Subscription, exc: Exception) -> None:
        with sub.gate:
            if not sub.active:
                return
            self._unregister(sub)
            if sub.on_error is None:
                return
            try:
                sub.on_error(exc)
            except Exception:
                _LOG.exception("feed error handler failed topic=%s id=%s", sub.query.topic, sub.id)

    def _dispose(self, sub: _Subscription) -> None:
        with sub.gate:
            if not sub.active:
                return
            self._unregister(sub)
        _LOG.debug("feed disposed topic=%s id=%s", sub.query.topic, sub.id)

    def _unregister(self, sub: _Subscription) -> None:
        sub.active = False
        with self._lock:
            for topic in sub.query.topics:
                by_id = self._subs.get(topic)
                if by_id is None:
                    continue
                by_id.pop(sub.id, None)
                if not by_id:
                    self._subs.pop(topic, None)


def build_feed_hub(session_factory: Callable[[], Session]) -> FeedHub:
    return FeedHub(session_factory, build_change_bus())


def publish_changes(hub: FeedHub | None, topics: list[str]) -> None:
    if hub is None:
        return
    try:
        hub.publish(*topics)
    except Exception:
        # The write is already committed; a lost fan-out only delays views until the next change.
        _LOG.exception("failed to publish feed changes topics=%s", list(topics))
