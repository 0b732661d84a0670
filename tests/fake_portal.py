"""In-process stand-in for the reservation portal used across tests."""

import threading
from typing import Any, Dict, List, Optional

from shuttlepass.data_sources.portal_client import LoginResponse
from shuttlepass.models import ReservationRecord, RideRecord


def raw_slot(time_id: int, yaxis: str, date: str, margin: int = 3) -> Dict[str, Any]:
    return {"time_id": time_id, "yaxis": yaxis, "date": date, "row": {"margin": margin}}


def raw_resource(resource_id: int, name: str, slots: List[Dict[str, Any]], key: str = "1") -> Dict[str, Any]:
    return {"id": resource_id, "name": name, "table": {key: slots}}


class FakeDataSource:
    """Records calls and answers with canned data.

    `fail` maps a method name to an exception raised when it is called.
    `reservation_batches` is consumed one batch per listing call; the last
    batch repeats once the others are used up.
    """

    def __init__(
        self,
        *,
        success: bool = True,
        token: Optional[str] = "tok-123",
        listings: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        reservation_batches: Optional[List[List[ReservationRecord]]] = None,
        history: Optional[List[RideRecord]] = None,
    ) -> None:
        self.login_response = LoginResponse(success=success, token=token)
        self.listings = listings or {}
        self.reservation_batches = reservation_batches or [[]]
        self.history = history or []
        self.temporary_code = "TEMP-CODE"
        self.qr_codes: Dict[int, str] = {}
        self.fail: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def _record(self, name: str, *args) -> None:
        with self._lock:
            self.calls.append((name, *args))
        if name in self.fail:
            raise self.fail[name]

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def authenticate(self, username, password):
        self._record("authenticate", username)
        return self.login_response

    def open_session(self, token):
        self._record("open_session", token)

    def fetch_resource_listing(self, date):
        self._record("fetch_resource_listing", date)
        return list(self.listings.get(date, []))

    def get_temporary_code(self, resource_id, date, time_of_day):
        self._record("get_temporary_code", resource_id, date, time_of_day)
        return self.temporary_code

    def reserve(self, resource_id, date, time_slot_id):
        self._record("reserve", resource_id, date, time_slot_id)

    def list_current_reservations(self):
        self._record("list_current_reservations")
        with self._lock:
            if len(self.reservation_batches) > 1:
                return list(self.reservation_batches.pop(0))
            return list(self.reservation_batches[0])

    def get_qr_code(self, reservation_id, hall_appointment_data_id):
        self._record("get_qr_code", reservation_id, hall_appointment_data_id)
        return self.qr_codes.get(reservation_id, f"QR-{reservation_id}")

    def cancel_reservation(self, reservation_id, hall_appointment_data_id):
        self._record("cancel_reservation", reservation_id, hall_appointment_data_id)

    def list_ride_history(self, page, page_size):
        self._record("list_ride_history", page, page_size)
        start = (page - 1) * page_size
        return self.history[start:start + page_size]
