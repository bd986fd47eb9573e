from __future__ import annotations

from dataclasses import dataclass

STATUS_PENDING = "pending"
STATUS_ACCEPTED = "accepted"
STATUS_EN_ROUTE = "en_route"
STATUS_ARRIVED = "arrived"
STATUS_STARTED = "started"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

STATUSES = (
    STATUS_PENDING,
    STATUS_ACCEPTED,
    STATUS_EN_ROUTE,
    STATUS_ARRIVED,
    STATUS_STARTED,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED})
ACTIVE_STATUSES = frozenset(set(STATUSES) - TERMINAL_STATUSES)

# Statuses the assigned worker moves a job through, in order.
WORKER_PROGRESSION = (
    STATUS_ACCEPTED,
    STATUS_EN_ROUTE,
    STATUS_ARRIVED,
    STATUS_STARTED,
    STATUS_COMPLETED,
)

ACTOR_REQUESTER = "requester"
ACTOR_WORKER = "worker"
ACTOR_ASSIGNED_WORKER = "assigned_worker"

SERVICE_TYPES = ("battery", "tire", "fuel", "tow", "other")
VEHICLE_TYPES = ("car", "suv", "truck", "motorcycle", "van")
URGENCY_LEVELS = ("emergency", "high", "normal", "low")


@dataclass(frozen=True)
class Transition:
    from_status: str
    to_status: str
    actors: frozenset[str]


def _build_transitions() -> dict[tuple[str, str], Transition]:
    table: dict[tuple[str, str], Transition] = {}
    table[(STATUS_PENDING, STATUS_ACCEPTED)] = Transition(
        STATUS_PENDING, STATUS_ACCEPTED, frozenset({ACTOR_WORKER})
    )
    for current, nxt in zip(WORKER_PROGRESSION, WORKER_PROGRESSION[1:]):
        table[(current, nxt)] = Transition(current, nxt, frozenset({ACTOR_ASSIGNED_WORKER}))
    for current in ACTIVE_STATUSES:
        table[(current, STATUS_CANCELLED)] = Transition(
            current, STATUS_CANCELLED, frozenset({ACTOR_REQUESTER, ACTOR_ASSIGNED_WORKER})
        )
    return table


TRANSITIONS = _build_transitions()


class TransitionError(ValueError):
    def __init__(self, from_status: str, to_status: str, reason: str):
        super().__init__(reason)
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason


def is_terminal(status: str) -> bool:
    return str(status or "").strip() in TERMINAL_STATUSES


def next_worker_status(current: str) -> str | None:
    try:
        idx = WORKER_PROGRESSION.index(current)
    except ValueError:
        return None
    if idx + 1 >= len(WORKER_PROGRESSION):
        return None
    return WORKER_PROGRESSION[idx + 1]


def validate_transition(current: str, target: str, *, actor: str | None = None) -> Transition:
    from_code = str(current or "").strip()
    to_code = str(target or "").strip()
    if to_code not in STATUSES:
        raise TransitionError(from_code, to_code, f'Unknown status "{to_code}"')
    if is_terminal(from_code):
        raise TransitionError(from_code, to_code, f"Request is already {from_code}")
    transition = TRANSITIONS.get((from_code, to_code))
    if transition is None:
        raise TransitionError(from_code, to_code, f"Cannot move request from {from_code} to {to_code}")
    if actor is not None and actor not in transition.actors:
        raise TransitionError(from_code, to_code, f"{actor} may not move request to {to_code}")
    return transition


def allowed_targets(current: str, *, actor: str) -> list[str]:
    targets = [
        transition.to_status
        for (from_code, _), transition in TRANSITIONS.items()
        if from_code == current and actor in transition.actors
    ]
    return sorted(targets, key=STATUSES.index)
