from __future__ import annotations

import logging
from uuid import UUID

from app.db.session import SessionLocal
from app.models.service_request import ServiceRequest
from app.services.feeds import TOPIC_PENDING_REQUESTS, build_change_bus
from app.services.geocoding import coordinates_label, reverse_geocode
from app.services.request_lifecycle import STATUS_PENDING
from app.workers.celery_app import celery_app

_LOG = logging.getLogger("app.geocoding")


def resolve_request_address_impl(request_id: str) -> dict:
    try:
        request_uuid = UUID(str(request_id))
    except ValueError:
        return {"status": "invalid_id", "request_id": str(request_id)}

    db = SessionLocal()
    try:
        req = db.get(ServiceRequest, request_uuid)
        if req is None:
            return {"status": "missing", "request_id": str(request_uuid)}
        if str(req.address or "").strip():
            return {"status": "skipped", "request_id": str(req.id), "address": req.address}
        resolved = reverse_geocode(req.lat, req.lng)
        req.address = resolved or coordinates_label(req.lat, req.lng)
        db.add(req)
        db.commit()
        was_pending = req.status == STATUS_PENDING
        result = {
            "status": "resolved" if resolved else "fallback",
            "request_id": str(req.id),
            "address": req.address,
        }
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    if was_pending:
        bus = build_change_bus()
        try:
            bus.publish(TOPIC_PENDING_REQUESTS)
        except Exception:
            _LOG.exception("failed to publish address change request_id=%s", request_id)
        finally:
            bus.close()
    return result


@celery_app.task(name="app.workers.tasks.geocode.resolve_request_address")
def resolve_request_address(request_id: str):
    return resolve_request_address_impl(request_id)
