import unittest

from app.services.geo import haversine_miles, point_of, sort_requests, with_distances


def _row(row_id: str, *, lat=None, lng=None, urgency="normal", created_at="2026-01-01T00:00:00+00:00"):
    return {
        "id": row_id,
        "urgency": urgency,
        "created_at": created_at,
        "location": {"lat": lat, "lng": lng, "address": None},
    }


class HaversineTests(unittest.TestCase):
    def test_one_degree_of_longitude_on_the_equator(self):
        self.assertAlmostEqual(haversine_miles((0.0, 0.0), (0.0, 1.0)), 69.17, delta=0.01)

    def test_distance_is_symmetric_and_zero_for_same_point(self):
        a = (40.7128, -74.0060)
        b = (34.0522, -118.2437)
        self.assertAlmostEqual(haversine_miles(a, b), haversine_miles(b, a), places=6)
        self.assertEqual(haversine_miles(a, a), 0.0)
        self.assertAlmostEqual(haversine_miles(a, b), 2445.6, delta=5.0)

    def test_point_of_ignores_missing_coordinates(self):
        self.assertIsNone(point_of(_row("x")))
        self.assertEqual(point_of(_row("y", lat="1.5", lng=2)), (1.5, 2.0))


class SortRequestsTests(unittest.TestCase):
    def setUp(self):
        self.rows = [
            _row("far", lat=0.0, lng=3.0, urgency="low", created_at="2026-01-01T10:00:00+00:00"),
            _row("near", lat=0.0, lng=1.0, urgency="high", created_at="2026-01-01T08:00:00+00:00"),
            _row("nowhere", urgency="emergency", created_at="2026-01-01T07:00:00+00:00"),
            _row("mid", lat=0.0, lng=2.0, urgency="high", created_at="2026-01-01T09:00:00+00:00"),
        ]

    def test_nearest_orders_by_distance_and_puts_unknown_last(self):
        ordered = sort_requests(self.rows, "nearest", (0.0, 0.0))
        self.assertEqual([row["id"] for row in ordered], ["near", "mid", "far", "nowhere"])

    def test_nearest_without_origin_keeps_input_order(self):
        ordered = sort_requests(self.rows, "nearest", None)
        self.assertEqual([row["id"] for row in ordered], ["far", "near", "nowhere", "mid"])

    def test_recent_is_newest_first(self):
        ordered = sort_requests(self.rows, "recent")
        self.assertEqual([row["id"] for row in ordered], ["far", "mid", "near", "nowhere"])

    def test_urgency_ranks_then_newest_first(self):
        ordered = sort_requests(self.rows, "urgency")
        self.assertEqual([row["id"] for row in ordered], ["nowhere", "mid", "near", "far"])

    def test_unknown_mode_falls_back_to_recent(self):
        ordered = sort_requests(self.rows, "alphabetical")
        self.assertEqual(ordered[0]["id"], "far")

    def test_with_distances_annotates_copies(self):
        annotated = with_distances(self.rows, (0.0, 0.0))
        by_id = {row["id"]: row for row in annotated}
        self.assertAlmostEqual(by_id["near"]["distance_miles"], 69.17, delta=0.01)
        self.assertIsNone(by_id["nowhere"]["distance_miles"])
        self.assertNotIn("distance_miles", self.rows[0])
        self.assertTrue(all(row["distance_miles"] is None for row in with_distances(self.rows, None)))
