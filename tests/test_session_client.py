import unittest

from fake_portal import FakeDataSource

from shuttlepass.credential_store.memory import InMemoryCredentialStore
from shuttlepass.errors import InvalidCredentialsError, TransportError
from shuttlepass.schedule_fetcher import ScheduleFetcher
from shuttlepass.session_client import SessionClient


class TestSessionClient(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryCredentialStore()

    def test_successful_login_persists_credentials(self):
        source = FakeDataSource(token="tok-1")
        session = SessionClient(source, self.store).login("alice", "pw")

        self.assertEqual(session.token, "tok-1")
        self.assertEqual(session.username, "alice")
        creds = self.store.load_credentials()
        self.assertEqual((creds.username, creds.password), ("alice", "pw"))

    def test_rejected_login_persists_nothing_and_stops_the_cycle(self):
        source = FakeDataSource(success=False, token=None)
        client = SessionClient(source, self.store)
        fetcher = ScheduleFetcher(source, self.store)

        with self.assertRaises(InvalidCredentialsError):
            session = client.login("alice", "wrong")
            fetcher.fetch_schedule(session, "2024-05-01")

        self.assertIsNone(self.store.load_credentials())
        self.assertEqual(source.names(), ["authenticate"])

    def test_success_without_token_is_invalid(self):
        source = FakeDataSource(success=True, token=None)
        with self.assertRaises(InvalidCredentialsError):
            SessionClient(source, self.store).login("alice", "pw")
        self.assertIsNone(self.store.load_credentials())

    def test_failed_login_keeps_previous_credentials(self):
        self.store.save_credentials("alice", "old")
        source = FakeDataSource(success=False, token=None)
        with self.assertRaises(InvalidCredentialsError):
            SessionClient(source, self.store).login("alice", "new")
        self.assertEqual(self.store.load_credentials().password, "old")

    def test_transport_error_propagates(self):
        source = FakeDataSource()
        source.fail["authenticate"] = TransportError("down")
        with self.assertRaises(TransportError):
            SessionClient(source, self.store).login("alice", "pw")
        self.assertIsNone(self.store.load_credentials())

    def test_relogin_uses_stored_credentials(self):
        self.store.save_credentials("bob", "secret")
        source = FakeDataSource(token="tok-2")
        session = SessionClient(source, self.store).relogin()
        self.assertEqual(session.username, "bob")
        self.assertEqual(source.calls[0], ("authenticate", "bob"))

    def test_relogin_without_credentials(self):
        source = FakeDataSource()
        with self.assertRaises(InvalidCredentialsError):
            SessionClient(source, self.store).relogin()
        self.assertEqual(source.calls, [])

    def test_logout_clears_store(self):
        self.store.save_credentials("bob", "secret")
        SessionClient(FakeDataSource(), self.store).logout()
        self.assertIsNone(self.store.load_credentials())


if __name__ == "__main__":
    unittest.main()
