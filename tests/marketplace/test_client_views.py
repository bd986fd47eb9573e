import httpx

from tests.marketplace.base import *  # noqa: F401,F403
from app.client.api import ClientError, RoadsideClient
from app.client.views import (
    ActiveJobView,
    DeferredSubmission,
    NoticeBoard,
    NotificationInbox,
    PendingBoard,
)

FORM = {"service_type": "tire", "vehicle_type": "suv", "urgency": "high", "description": "Flat tire"}


class ClientViewTests(MarketplaceBase):
    def setUp(self):
        super().setUp()
        self.driver = self._make_user(role="user", name="Riley Driver")
        self.mechanic = self._make_user(role="mechanic", name="Morgan Mechanic")
        self.rival = self._make_user(role="mechanic", name="Sam Spanner")
        self.board = NoticeBoard()

    def _client_for(self, who: dict) -> RoadsideClient:
        return RoadsideClient(self.client, token=who["token"])

    def test_login_and_error_kinds(self):
        api = RoadsideClient(self.client)
        with self.assertRaises(ClientError) as ctx:
            api.me()
        self.assertEqual(ctx.exception.kind, "unauthenticated")

        api.login(self.driver["email"], DEFAULT_PASSWORD)
        self.assertEqual(api.me()["id"], self.driver["id"])

        with self.assertRaises(ClientError) as ctx:
            api.get_request(str(UUID(int=99)))
        self.assertEqual(ctx.exception.kind, "not_found")
        with self.assertRaises(ClientError) as ctx:
            api.pending_requests()
        self.assertEqual(ctx.exception.kind, "permission_denied")
        with self.assertRaises(ClientError) as ctx:
            api.create_request({**FORM, "lat": 200, "lng": 0})
        self.assertEqual(ctx.exception.kind, "validation")

        api.logout()
        self.assertIsNone(api.token)

    def test_transport_failure_is_unavailable(self):
        def _refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        api = RoadsideClient(httpx.Client(base_url="http://roadside.invalid", transport=httpx.MockTransport(_refuse)))
        with self.assertRaises(ClientError) as ctx:
            api.display()
        self.assertEqual(ctx.exception.kind, "unavailable")

    def test_non_json_success_body_becomes_a_notice(self):
        def _captive_portal(request):
            return httpx.Response(200, text="<html>Sign in to the hotspot</html>")

        api = RoadsideClient(httpx.Client(base_url="http://roadside.invalid", transport=httpx.MockTransport(_captive_portal)))
        with self.assertRaises(ClientError) as ctx:
            api.display()
        self.assertEqual((ctx.exception.kind, ctx.exception.status), ("unavailable", 200))

        queue = DeferredSubmission(api, self.board)
        self.assertIsNone(queue.submit(FORM, (37.7749, -122.4194)))
        self.assertEqual(self.board.items[-1].level, "error")
        self.assertEqual(self.board.items[-1].kind, "unavailable")

    def test_active_job_rolls_back_when_server_refuses(self):
        created = self._create_request(self.driver)
        job = self._client_for(self.mechanic).accept(created["id"])
        view = ActiveJobView(self._client_for(self.mechanic), self.board, job)

        self.assertTrue(view.advance())
        self.assertEqual(view.job["status"], "en_route")

        self.client.post(f"/api/requests/{created['id']}/cancel", headers=self.driver["headers"])
        self.assertFalse(view.advance())
        self.assertEqual(view.job["status"], "en_route")
        self.assertEqual(len(self.board.items), 1)
        self.assertEqual(self.board.items[0].kind, "conflict")

        self.board.dismiss(self.board.items[0].id)
        self.assertEqual(self.board.items, [])

    def test_pending_board_keeps_row_gone_when_someone_else_won(self):
        first = self._create_request(self.driver, lat=0.0, lng=2.0)
        second = self._create_request(self.driver, lat=0.0, lng=1.0)
        board = PendingBoard(self._client_for(self.mechanic), self.board, sort="nearest")
        board.refresh()
        board.set_origin((0.0, 0.0))
        self.assertEqual([row["id"] for row in board.rows], [second["id"], first["id"]])

        self._client_for(self.rival).accept(second["id"])
        self.assertIsNone(board.accept(second["id"]))
        self.assertEqual([row["id"] for row in board.rows], [first["id"]])
        self.assertEqual(self.board.items[-1].kind, "conflict")

        accepted = board.accept(first["id"])
        self.assertEqual(accepted["assigned_to"], self.mechanic["id"])
        self.assertEqual(board.rows, [])

    def test_pending_board_restores_row_on_permission_error(self):
        created = self._create_request(self.driver)
        board = PendingBoard(self._client_for(self.driver), self.board)
        board.replace([created])
        self.assertIsNone(board.accept(created["id"]))
        self.assertEqual([row["id"] for row in board.rows], [created["id"]])
        self.assertEqual(self.board.items[-1].kind, "permission_denied")

    def test_inbox_mark_all_read_is_optimistic(self):
        created = self._create_request(self.driver)
        self._client_for(self.mechanic).accept(created["id"])
        api = self._client_for(self.driver)
        inbox = NotificationInbox(api, self.board)
        inbox.replace(api.notifications()["rows"])
        self.assertEqual(inbox.unread_count, 1)

        self.assertTrue(inbox.mark_all_read())
        self.assertEqual(inbox.unread_count, 0)
        self.assertEqual(api.notifications()["unread_total"], 0)

        inbox.replace([{"id": "x", "read": False}])
        api.token = "expired"
        self.assertFalse(inbox.mark_all_read())
        self.assertEqual(inbox.unread_count, 1)
        self.assertEqual(self.board.items[-1].kind, "unauthenticated")

    def test_deferred_submission_replays_exactly_once(self):
        deferred = DeferredSubmission(self._client_for(self.driver), self.board)
        self.assertIsNone(deferred.submit(FORM))
        self.assertTrue(deferred.waiting)
        self.assertEqual(self.board.items[-1].level, "info")

        created = deferred.supply_position((37.7749, -122.4194))
        self.assertEqual(created["service_type"], "tire")
        self.assertEqual(created["location"]["lat"], 37.7749)
        self.assertFalse(deferred.waiting)
        self.assertIsNone(deferred.supply_position((37.7749, -122.4194)))

        with self.SessionLocal() as db:
            self.assertEqual(db.query(ServiceRequest).count(), 1)

    def test_deferred_submission_failure_becomes_notice(self):
        deferred = DeferredSubmission(self._client_for(self.mechanic), self.board)
        deferred.submit(FORM)
        self.assertIsNone(deferred.supply_position((1.0, 1.0)))
        self.assertFalse(deferred.waiting)
        self.assertEqual(self.board.items[-1].level, "error")
        self.assertEqual(self.board.items[-1].kind, "permission_denied")
