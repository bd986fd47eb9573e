from tests.marketplace.base import *  # noqa: F401,F403


class NotificationTests(MarketplaceBase):
    def setUp(self):
        super().setUp()
        self.driver = self._make_user(role="user")
        self.mechanic = self._make_user(role="mechanic", name="Morgan Mechanic")
        request = self._create_request(self.driver)
        self.client.post(f"/api/requests/{request['id']}/accept", headers=self.mechanic["headers"])
        for _ in range(3):
            self.client.post(f"/api/requests/{request['id']}/status", headers=self.mechanic["headers"], json={})

    def test_status_changes_notify_requester_not_actor(self):
        driver_view = self.client.get("/api/notifications", headers=self.driver["headers"]).json()
        self.assertEqual(driver_view["total"], 4)
        self.assertEqual(driver_view["unread_total"], 4)
        self.assertEqual(driver_view["rows"][-1]["type"], "assignment")
        self.assertEqual(driver_view["rows"][-1]["body"], "Morgan Mechanic accepted your Battery Jump request")
        self.assertEqual(driver_view["rows"][0]["title"], "Service in Progress")

        mechanic_view = self.client.get("/api/notifications", headers=self.mechanic["headers"]).json()
        self.assertEqual(mechanic_view["total"], 0)

    def test_mark_all_read_accounts_for_every_unread_row(self):
        rows = self.client.get("/api/notifications", headers=self.driver["headers"]).json()["rows"]
        single = self.client.post(f"/api/notifications/{rows[0]['id']}/read", headers=self.driver["headers"])
        self.assertEqual(single.status_code, 200)
        self.assertEqual(single.json()["changed"], 1)
        first_read_at = single.json()["notification"]["read_at"]
        self.assertIsNotNone(first_read_at)

        bulk = self.client.post("/api/notifications/read-all", headers=self.driver["headers"])
        self.assertEqual(bulk.status_code, 200)
        self.assertEqual(bulk.json()["changed"], 3)
        self.assertEqual(bulk.json()["unread_total"], 0)

        again = self.client.post("/api/notifications/read-all", headers=self.driver["headers"])
        self.assertEqual(again.json()["changed"], 0)

        listed = self.client.get("/api/notifications", headers=self.driver["headers"]).json()
        self.assertEqual(listed["unread_total"], 0)
        kept = next(row for row in listed["rows"] if row["id"] == rows[0]["id"])
        self.assertEqual(kept["read_at"], first_read_at)

    def test_cannot_read_someone_elses_notification(self):
        rows = self.client.get("/api/notifications", headers=self.driver["headers"]).json()["rows"]
        response = self.client.post(f"/api/notifications/{rows[0]['id']}/read", headers=self.mechanic["headers"])
        self.assertEqual(response.status_code, 404)
        unread = self.client.get("/api/notifications?unread_only=true", headers=self.driver["headers"]).json()
        self.assertEqual(unread["total"], 4)
