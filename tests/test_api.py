import unittest
from datetime import datetime

from fastapi.testclient import TestClient
from fake_portal import FakeDataSource, raw_resource, raw_slot

from shuttlepass.main import app as fastapi_app
from shuttlepass.config import Settings
from shuttlepass.credential_store.memory import InMemoryCredentialStore
from shuttlepass.errors import TransportError
from shuttlepass.models import ReservationRecord, RideRecord
from shuttlepass.refresh import RefreshCoordinator

TODAY = "2024-05-01"
NOW = datetime(2024, 5, 1, 13, 50)


def _source(**kwargs):
    kwargs.setdefault("listings", {
        TODAY: [
            raw_resource(2, "燕园→新校区", [raw_slot(7, "14:00", TODAY, 3)]),
            raw_resource(5, "新校区→燕园", [raw_slot(9, "18:00", TODAY, 2)]),
        ],
    })
    kwargs.setdefault("reservation_batches", [[ReservationRecord(
        reservation_id=11, hall_appointment_data_id=12, resource_id=2,
        resource_name="燕园→新校区", appointment_time=f"{TODAY} 14:00")]])
    return FakeDataSource(**kwargs)


class TestApi(unittest.TestCase):
    def setUp(self):
        import shuttlepass.api as api_mod
        from shuttlepass.config import settings

        self.api_mod = api_mod
        self.settings = settings
        self._orig_coordinator = api_mod.COORDINATOR
        self._orig_api_key = settings.api_key
        settings.api_key = None
        self.store = InMemoryCredentialStore()
        self.source = _source()
        self._install(self.source)
        self.client = TestClient(fastapi_app)

    def tearDown(self):
        self.api_mod.COORDINATOR = self._orig_coordinator
        self.settings.api_key = self._orig_api_key

    def _install(self, source):
        self.source = source
        self.api_mod.COORDINATOR = RefreshCoordinator(
            Settings(lookup_delay_seconds=0), source, self.store, clock=lambda: NOW)

    def _login(self):
        resp = self.client.post("/v1/login", json={"username": "alice", "password": "pw"})
        self.assertEqual(resp.status_code, 200)

    def test_login_success(self):
        resp = self.client.post("/v1/login", json={"username": "alice", "password": "pw"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"username": "alice", "logged_in": True})
        self.assertIsNotNone(self.store.load_credentials())

    def test_login_rejected_is_401(self):
        self._install(_source(success=False, token=None))
        resp = self.client.post("/v1/login", json={"username": "alice", "password": "bad"})
        self.assertEqual(resp.status_code, 401)
        self.assertIn("invalid username or password", resp.json()["detail"])
        self.assertIsNone(self.store.load_credentials())

    def test_login_validation(self):
        resp = self.client.post("/v1/login", json={"username": "", "password": "pw"})
        self.assertEqual(resp.status_code, 422)

    def test_refresh_returns_boarding_result(self):
        self._login()
        resp = self.client.post("/v1/refresh")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {
            "is_past_departure": False,
            "route_name": "燕园→新校区",
            "departure_time": "14:00",
            "code": "QR-11",
        })

    def test_refresh_without_login_is_401(self):
        resp = self.client.post("/v1/refresh")
        self.assertEqual(resp.status_code, 401)

    def test_refresh_no_departure_is_404(self):
        self._install(_source(listings={}))
        self._login()
        resp = self.client.post("/v1/refresh")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["detail"], "No suitable shuttle departure found right now.")

    def test_refresh_transport_error_is_502(self):
        self._login()
        self.source.fail["fetch_resource_listing"] = TransportError("GET https://portal/x?token=*** failed")
        resp = self.client.post("/v1/refresh")
        self.assertEqual(resp.status_code, 502)
        self.assertNotIn("token", resp.json()["detail"])

    def test_refresh_requires_both_coordinates(self):
        self._login()
        resp = self.client.post("/v1/refresh", params={"latitude": 40.0})
        self.assertEqual(resp.status_code, 400)

    def test_refresh_with_location(self):
        self._login()
        resp = self.client.post("/v1/refresh", params={"latitude": 39.99, "longitude": 116.31})
        # near campus A so the return route is chosen, and nothing runs near 13:50 on it
        self.assertEqual(resp.status_code, 404)

    def test_nearby(self):
        self._login()
        resp = self.client.get("/v1/departures/nearby")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(len(body), 1)
        self.assertEqual(body[0]["kind"], "boarding")
        self.assertEqual(body[0]["code"], "QR-11")
        self.assertEqual(body[0]["time_slot_id"], 7)

    def test_reserve_chosen_departure(self):
        self._login()
        resp = self.client.post("/v1/departures/2/reserve", json={"date": TODAY, "time_slot_id": 7})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["code"], "QR-11")
        self.assertIn(("reserve", 2, TODAY, 7), self.source.calls)

    def test_reserve_unknown_departure_is_404(self):
        self._login()
        resp = self.client.post("/v1/departures/2/reserve", json={"date": TODAY, "time_slot_id": 99})
        self.assertEqual(resp.status_code, 404)
        self.assertNotIn("reserve", self.source.names())

    def test_reserve_requires_slot_id(self):
        resp = self.client.post("/v1/departures/2/reserve", json={"date": TODAY})
        self.assertEqual(resp.status_code, 422)

    def test_schedule_uses_wire_names(self):
        self._login()
        resp = self.client.get("/v1/schedule", params={"date": TODAY})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["date"], TODAY)
        self.assertEqual([d["time"] for d in body["outbound"]], ["14:00"])
        self.assertEqual([d["time"] for d in body["return"]], ["18:00"])

    def test_week_schedule(self):
        self._login()
        resp = self.client.get("/v1/schedule/week", params={"days": 2})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([d["date"] for d in resp.json()], ["2024-05-01", "2024-05-02"])

    def test_history_stats(self):
        self._install(_source(history=[
            RideRecord("新校区→燕园", "2024-04-01 08:00", "已签到", "2024-04-01 07:58:00"),
            RideRecord("新校区→燕园", "2024-04-02 08:00", "已撤销"),
        ]))
        self._login()
        resp = self.client.get("/v1/history/stats")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["valid_count"], 1)
        self.assertEqual(body["sign_in_range"], [-4, 4])
        hour8 = next(h for h in body["hour_counts"] if h["hour"] == 8)
        self.assertEqual(hour8, {"hour": 8, "outbound": 1, "return": 0})

    def test_cancel(self):
        self._login()
        resp = self.client.post("/v1/reservations/11/cancel", json={"hall_appointment_data_id": 12})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"reservation_id": 11, "cancelled": True})
        self.assertEqual(self.source.calls[-1], ("cancel_reservation", 11, 12))

    def test_status(self):
        resp = self.client.get("/v1/status")
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["in_flight"])

    def test_logout(self):
        self._login()
        resp = self.client.post("/v1/logout")
        self.assertEqual(resp.json(), {"username": "alice", "logged_in": False})
        self.assertIsNone(self.store.load_credentials())

    def test_api_key_enforced_when_configured(self):
        self.settings.api_key = "secret"
        self.assertEqual(self.client.get("/v1/status").status_code, 401)
        self.assertEqual(self.client.get("/v1/status", headers={"X-API-Key": "nope"}).status_code, 401)
        self.assertEqual(self.client.get("/v1/status", headers={"X-API-Key": "secret"}).status_code, 200)

    def test_healthz_is_open(self):
        self.settings.api_key = "secret"
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()
