from uuid import UUID

from fastapi import HTTPException

from tests.marketplace.base import *  # noqa: F401,F403
from app.services.completed_jobs import build_completed_job
from app.services.service_requests import accept_request


class RequestFlowTests(MarketplaceBase):
    def setUp(self):
        super().setUp()
        self.driver = self._make_user(role="user", name="Riley Driver", phone="+15550001")
        self.mechanic = self._make_user(role="mechanic", name="Morgan Mechanic")
        self.other_mechanic = self._make_user(role="mechanic", name="Sam Spanner")

    def _advance(self, request_id: str, who: dict, status: str | None = None):
        return self.client.post(f"/api/requests/{request_id}/status", headers=who["headers"], json={"status": status})

    def test_create_request_starts_pending_with_history(self):
        created = self._create_request(self.driver, urgency="emergency")
        self.assertEqual(created["status"], "pending")
        self.assertIsNone(created["assigned_to"])
        self.assertEqual(created["urgency"], "emergency")
        self.assertEqual(created["location"]["address"], "Broadway & 5th")
        self.assertEqual(created["actions"], ["cancelled"])

        timeline = self.client.get(f"/api/requests/{created['id']}/timeline", headers=self.driver["headers"])
        self.assertEqual(timeline.status_code, 200)
        self.assertEqual([(row["from_status"], row["to_status"]) for row in timeline.json()["rows"]], [(None, "pending")])

    def test_create_rejects_bad_enums_and_coordinates(self):
        bad_service = self.client.post(
            "/api/requests",
            headers=self.driver["headers"],
            json={"service_type": "teleport", "vehicle_type": "car", "lat": 1, "lng": 1},
        )
        self.assertEqual(bad_service.status_code, 400)
        bad_lat = self.client.post(
            "/api/requests",
            headers=self.driver["headers"],
            json={"service_type": "tow", "vehicle_type": "car", "lat": 123, "lng": 1},
        )
        self.assertEqual(bad_lat.status_code, 400)

    def test_mine_lists_only_own_requests_newest_first(self):
        first = self._create_request(self.driver)
        second = self._create_request(self.driver, service_type="fuel")
        someone_else = self._make_user(role="user")
        self._create_request(someone_else)

        response = self.client.get("/api/requests/mine", headers=self.driver["headers"])
        self.assertEqual(response.status_code, 200)
        ids = [row["id"] for row in response.json()["rows"]]
        self.assertEqual(set(ids), {first["id"], second["id"]})

    def test_pending_board_sorts_by_distance_from_reported_position(self):
        far = self._create_request(self.driver, lat=0.0, lng=3.0)
        near = self._create_request(self.driver, lat=0.0, lng=1.0)

        reported = self.client.put(
            "/api/workers/me/position",
            headers=self.mechanic["headers"],
            json={"lat": 0.0, "lng": 0.0},
        )
        self.assertEqual(reported.status_code, 200)

        response = self.client.get("/api/requests/pending?sort=nearest", headers=self.mechanic["headers"])
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([row["id"] for row in body["rows"]], [near["id"], far["id"]])
        self.assertAlmostEqual(body["rows"][0]["distance_miles"], 69.17, delta=0.01)
        self.assertEqual(body["origin"], {"lat": 0.0, "lng": 0.0})

    def test_pending_board_accepts_explicit_origin_and_rejects_unknown_sort(self):
        self._create_request(self.driver, lat=0.0, lng=1.0)
        explicit = self.client.get("/api/requests/pending?sort=nearest&lat=0&lng=2", headers=self.mechanic["headers"])
        self.assertEqual(explicit.status_code, 200)
        self.assertAlmostEqual(explicit.json()["rows"][0]["distance_miles"], 69.17, delta=0.01)

        no_origin = self.client.get("/api/requests/pending?sort=nearest", headers=self.mechanic["headers"])
        self.assertIsNone(no_origin.json()["origin"])
        self.assertIsNone(no_origin.json()["rows"][0]["distance_miles"])

        bad = self.client.get("/api/requests/pending?sort=price", headers=self.mechanic["headers"])
        self.assertEqual(bad.status_code, 400)

    def test_full_progression_to_completion_archives_job_once(self):
        created = self._create_request(self.driver, estimated_pay=80.5)
        accepted = self.client.post(f"/api/requests/{created['id']}/accept", headers=self.mechanic["headers"])
        self.assertEqual(accepted.status_code, 200, accepted.text)
        self.assertEqual(accepted.json()["assigned_to"], self.mechanic["id"])
        self.assertIsNotNone(accepted.json()["accepted_at"])

        for expected in ("en_route", "arrived", "started", "completed"):
            step = self._advance(created["id"], self.mechanic)
            self.assertEqual(step.status_code, 200, step.text)
            self.assertEqual(step.json()["status"], expected)

        again = self._advance(created["id"], self.mechanic, "completed")
        self.assertEqual(again.status_code, 409)

        with self.SessionLocal() as db:
            jobs = db.query(CompletedJob).all()
            self.assertEqual(len(jobs), 1)
            self.assertEqual(str(jobs[0].request_id), created["id"])
            self.assertEqual(jobs[0].customer_name, "Riley Driver")
            self.assertEqual(jobs[0].customer_phone, "+15550001")
            self.assertEqual(float(jobs[0].estimated_pay), 80.5)

        history = self.client.get("/api/jobs/completed", headers=self.mechanic["headers"])
        self.assertEqual(history.status_code, 200)
        self.assertEqual(len(history.json()["rows"]), 1)
        self.assertEqual(history.json()["rows"][0]["coordinates"], [40.7128, -74.006])
        self.assertEqual(history.json()["total_pay"], 80.5)

        timeline = self.client.get(f"/api/requests/{created['id']}/timeline", headers=self.driver["headers"])
        self.assertEqual(
            [row["to_status"] for row in timeline.json()["rows"]],
            ["pending", "accepted", "en_route", "arrived", "started", "completed"],
        )

    def test_completed_history_limit_is_clamped(self):
        response = self.client.get("/api/jobs/completed?limit=0", headers=self.mechanic["headers"])
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["limit"], 1)
        response = self.client.get("/api/jobs/completed?limit=1000", headers=self.mechanic["headers"])
        self.assertEqual(response.json()["limit"], 100)

    def test_existing_archive_row_blocks_second_completion(self):
        created = self._create_request(self.driver)
        self.client.post(f"/api/requests/{created['id']}/accept", headers=self.mechanic["headers"])
        for status in ("en_route", "arrived", "started"):
            self._advance(created["id"], self.mechanic, status)

        with self.SessionLocal() as db:
            row = db.get(ServiceRequest, UUID(created["id"]))
            db.add(build_completed_job(db, row, worker_id=UUID(self.mechanic["id"])))
            db.commit()

        response = self._advance(created["id"], self.mechanic)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["current"]["status"], "started")
        with self.SessionLocal() as db:
            self.assertEqual(db.query(CompletedJob).count(), 1)

    def test_second_mechanic_loses_accept(self):
        created = self._create_request(self.driver)
        first = self.client.post(f"/api/requests/{created['id']}/accept", headers=self.mechanic["headers"])
        second = self.client.post(f"/api/requests/{created['id']}/accept", headers=self.other_mechanic["headers"])
        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 409)
        current = second.json()["detail"]["current"]
        self.assertEqual((current["status"], current["assigned_to"]), ("accepted", self.mechanic["id"]))
        self.assertTrue(second.json()["detail"]["message"])
        self.assertEqual(self._request_row(created["id"]).assigned_to, UUID(self.mechanic["id"]))

    def test_accept_after_cancellation_reports_current_document(self):
        created = self._create_request(self.driver)
        self.client.post(f"/api/requests/{created['id']}/cancel", headers=self.driver["headers"], json={})
        late = self.client.post(f"/api/requests/{created['id']}/accept", headers=self.mechanic["headers"])
        self.assertEqual(late.status_code, 409)
        self.assertEqual(late.json()["detail"]["current"]["status"], "cancelled")

    def test_stale_accept_is_rejected_by_conditional_update(self):
        created = self._create_request(self.driver)
        request_id = UUID(created["id"])

        stale = self.SessionLocal()
        try:
            # Loser observed the request while it was still pending.
            self.assertEqual(stale.get(ServiceRequest, request_id).status, "pending")

            with self.SessionLocal() as winner_db:
                accept_request(winner_db, request_id=request_id, worker=self.mechanic)

            with self.assertRaises(HTTPException) as ctx:
                accept_request(stale, request_id=request_id, worker=self.other_mechanic)
        finally:
            stale.close()

        self.assertEqual(ctx.exception.status_code, 409)
        current = ctx.exception.detail["current"]
        self.assertEqual(current["status"], "accepted")
        self.assertEqual(current["assigned_to"], self.mechanic["id"])
        with self.SessionLocal() as db:
            history = db.query(StatusHistory).filter(StatusHistory.to_status == "accepted").all()
            self.assertEqual(len(history), 1)

    def test_only_assigned_mechanic_may_advance(self):
        created = self._create_request(self.driver)
        self.client.post(f"/api/requests/{created['id']}/accept", headers=self.mechanic["headers"])
        response = self._advance(created["id"], self.other_mechanic)
        self.assertEqual(response.status_code, 403)

    def test_skipping_a_step_is_a_conflict(self):
        created = self._create_request(self.driver)
        self.client.post(f"/api/requests/{created['id']}/accept", headers=self.mechanic["headers"])
        response = self._advance(created["id"], self.mechanic, "completed")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(self._request_row(created["id"]).status, "accepted")

    def test_cancelled_request_is_immutable(self):
        created = self._create_request(self.driver)
        cancelled = self.client.post(
            f"/api/requests/{created['id']}/cancel",
            headers=self.driver["headers"],
            json={"reason": "Got a jump from a friend"},
        )
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.json()["status"], "cancelled")
        self.assertEqual(cancelled.json()["actions"], [])

        accept = self.client.post(f"/api/requests/{created['id']}/accept", headers=self.mechanic["headers"])
        self.assertEqual(accept.status_code, 409)
        again = self.client.post(f"/api/requests/{created['id']}/cancel", headers=self.driver["headers"])
        self.assertEqual(again.status_code, 409)
        pending = self.client.get("/api/requests/pending", headers=self.mechanic["headers"])
        self.assertEqual(pending.json()["rows"], [])

        timeline = self.client.get(f"/api/requests/{created['id']}/timeline", headers=self.driver["headers"])
        self.assertEqual(timeline.json()["rows"][-1]["comment"], "Got a jump from a friend")

    def test_assigned_mechanic_can_cancel_and_requester_is_notified(self):
        created = self._create_request(self.driver)
        self.client.post(f"/api/requests/{created['id']}/accept", headers=self.mechanic["headers"])
        response = self.client.post(f"/api/requests/{created['id']}/cancel", headers=self.mechanic["headers"])
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self._request_row(created["id"]).cancelled_by, UUID(self.mechanic["id"]))

        listed = self.client.get("/api/notifications", headers=self.driver["headers"])
        titles = [row["title"] for row in listed.json()["rows"]]
        self.assertIn("Request cancelled", titles)
        self.assertIn("Mechanic assigned", titles)

    def test_outsider_cannot_cancel_or_view_assigned_request(self):
        created = self._create_request(self.driver)
        self.client.post(f"/api/requests/{created['id']}/accept", headers=self.mechanic["headers"])
        outsider = self._make_user(role="user")
        self.assertEqual(
            self.client.post(f"/api/requests/{created['id']}/cancel", headers=outsider["headers"]).status_code,
            403,
        )
        self.assertEqual(self.client.get(f"/api/requests/{created['id']}", headers=outsider["headers"]).status_code, 403)
        self.assertEqual(
            self.client.get(f"/api/requests/{created['id']}", headers=self.other_mechanic["headers"]).status_code,
            403,
        )

    def test_assigned_lists_active_jobs_only(self):
        active = self._create_request(self.driver)
        done = self._create_request(self.driver)
        for item in (active, done):
            self.client.post(f"/api/requests/{item['id']}/accept", headers=self.mechanic["headers"])
        self.client.post(f"/api/requests/{done['id']}/cancel", headers=self.driver["headers"])

        response = self.client.get("/api/requests/assigned", headers=self.mechanic["headers"])
        self.assertEqual([row["id"] for row in response.json()["rows"]], [active["id"]])
        self.assertEqual(response.json()["rows"][0]["actions"], ["en_route", "cancelled"])

    def test_unknown_and_malformed_ids(self):
        missing = self.client.get(f"/api/requests/{UUID(int=7)}", headers=self.driver["headers"])
        self.assertEqual(missing.status_code, 404)
        malformed = self.client.get("/api/requests/not-a-uuid", headers=self.driver["headers"])
        self.assertEqual(malformed.status_code, 400)
