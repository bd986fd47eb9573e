import os
import unittest
from datetime import timedelta
from unittest.mock import MagicMock, patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from app.core.config import settings
from app.services import worker_positions


class MemoryPositionStoreTests(unittest.TestCase):
    def setUp(self):
        self._redis = patch.object(worker_positions, "_get_redis_client", return_value=None)
        self._redis.start()
        worker_positions.clear_positions_for_tests()

    def tearDown(self):
        worker_positions.clear_positions_for_tests()
        self._redis.stop()

    def test_recorded_position_is_fresh(self):
        worker_positions.record_position(worker_id="w-1", lat=40.0, lng=-73.5, accuracy_m=12)
        self.assertEqual(worker_positions.fresh_position("w-1"), (40.0, -73.5))
        self.assertIsNone(worker_positions.fresh_position("w-2"))
        self.assertIsNone(worker_positions.fresh_position(""))

    def test_position_expires_after_max_age(self):
        with patch.object(settings, "POSITION_MAX_AGE_SECONDS", 30):
            worker_positions.record_position(worker_id="w-1", lat=1.0, lng=2.0)
        later = worker_positions._utc_now() + timedelta(seconds=31)
        with patch.object(worker_positions, "_utc_now", return_value=later):
            self.assertIsNone(worker_positions.fresh_position("w-1"))
        self.assertIsNone(worker_positions.fresh_position("w-1"))

    def test_recording_drops_expired_entries_of_other_workers(self):
        with patch.object(settings, "POSITION_MAX_AGE_SECONDS", 30):
            worker_positions.record_position(worker_id="gone-1", lat=1.0, lng=1.0)
            worker_positions.record_position(worker_id="gone-2", lat=2.0, lng=2.0)
            later = worker_positions._utc_now() + timedelta(seconds=31)
            with patch.object(worker_positions, "_utc_now", return_value=later):
                worker_positions.record_position(worker_id="fresh", lat=3.0, lng=3.0)
        self.assertEqual(set(worker_positions._memory_state), {"fresh"})


class RedisPositionStoreTests(unittest.TestCase):
    def test_redis_store_uses_ttl_key(self):
        client = MagicMock()
        client.get.return_value = '{"lat": 5.5, "lng": 6.5}'
        with patch.object(worker_positions, "_get_redis_client", return_value=client):
            with patch.object(settings, "POSITION_MAX_AGE_SECONDS", 45):
                worker_positions.record_position(worker_id="w-9", lat=5.5, lng=6.5)
            self.assertEqual(worker_positions.fresh_position("w-9"), (5.5, 6.5))
        key, ttl, _ = client.setex.call_args.args
        self.assertEqual(key, "workers:position:w-9")
        self.assertEqual(ttl, 45)
        client.get.assert_called_once_with("workers:position:w-9")
