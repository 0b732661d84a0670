import json
import unittest
from types import SimpleNamespace
from unittest.mock import patch

import redis

from shuttlepass.credential_store import build_credential_store
from shuttlepass.credential_store.memory import InMemoryCredentialStore
from shuttlepass.credential_store.redis import RedisCredentialStore


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.expires = {}

    def set(self, key, value):
        self.store[key] = value

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.expires[key] = ttl

    def get(self, key):
        return self.store.get(key)

    def delete(self, key):
        self.store.pop(key, None)
        self.expires.pop(key, None)

    def scan_iter(self, pattern):
        prefix = pattern.rstrip("*")
        return [k for k in list(self.store.keys()) if k.startswith(prefix)]


class TestRedisCredentialStore(unittest.TestCase):
    def setUp(self):
        self.client = FakeRedis()
        self.store = RedisCredentialStore(self.client, schedule_ttl_seconds=120, prefix="t:")

    def test_credentials_round_trip(self):
        self.store.save_credentials("alice", "pw")
        self.assertEqual(json.loads(self.client.store["t:credentials"]), {"username": "alice", "password": "pw"})
        self.assertNotIn("t:credentials", self.client.expires)
        creds = self.store.load_credentials()
        self.assertEqual((creds.username, creds.password), ("alice", "pw"))

    def test_missing_credentials(self):
        self.assertIsNone(self.store.load_credentials())

    def test_corrupt_credentials_are_ignored(self):
        self.client.store["t:credentials"] = b"{not json"
        self.assertIsNone(self.store.load_credentials())
        self.client.store["t:credentials"] = b'{"username": "alice"}'
        self.assertIsNone(self.store.load_credentials())

    def test_schedule_uses_ttl(self):
        listing = [{"id": 2, "name": "燕园→新校区", "table": {"1": []}}]
        self.store.save_schedule("2024-05-01", listing)
        self.assertEqual(self.client.expires["t:schedule:2024-05-01"], 120)
        self.assertEqual(self.store.load_schedule("2024-05-01"), listing)
        self.assertIsNone(self.store.load_schedule("2024-05-02"))

    def test_non_list_schedule_is_ignored(self):
        self.client.store["t:schedule:2024-05-01"] = b'{"id": 1}'
        self.assertIsNone(self.store.load_schedule("2024-05-01"))

    def test_clear_removes_credentials_and_schedules(self):
        self.store.save_credentials("alice", "pw")
        self.store.save_schedule("2024-05-01", [])
        self.client.store["other:key"] = b"keep"
        self.store.clear_credentials()
        self.assertEqual(list(self.client.store), ["other:key"])


class TestBuildCredentialStore(unittest.TestCase):
    def _settings(self, url):
        return SimpleNamespace(credential_redis_url=url, schedule_cache_ttl_seconds=60)

    def test_memory_when_unconfigured(self):
        store = build_credential_store(self._settings(None))
        self.assertIsInstance(store, InMemoryCredentialStore)
        self.assertEqual(store.schedule_ttl, 60)

    def test_redis_when_reachable(self):
        client = FakeRedis()
        client.ping = lambda: True
        with patch("shuttlepass.credential_store.factory.redis.Redis.from_url", return_value=client):
            store = build_credential_store(self._settings("redis://localhost:6379/0"))
        self.assertIsInstance(store, RedisCredentialStore)
        self.assertIs(store.client, client)

    def test_falls_back_when_unreachable(self):
        def _ping():
            raise redis.ConnectionError("refused")

        client = FakeRedis()
        client.ping = _ping
        with patch("shuttlepass.credential_store.factory.redis.Redis.from_url", return_value=client):
            store = build_credential_store(self._settings("redis://localhost:6379/0"))
        self.assertIsInstance(store, InMemoryCredentialStore)


if __name__ == "__main__":
    unittest.main()
