"""Interface for anything that can talk to the shuttle reservation portal."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol

from shuttlepass.models import ReservationRecord, RideRecord


class LoginResponse(Protocol):
    """Decoded identity endpoint answer."""
    success: bool
    token: str | None


class ShuttleDataSource(Protocol):
    """Wire-level operations the reservation cycle depends on.

    Implementations raise `shuttlepass.errors` exceptions, never transport
    library exceptions.
    """

    def authenticate(self, username: str, password: str) -> LoginResponse:
        """Exchange credentials for a token."""
        ...

    def open_session(self, token: str) -> None:
        """Run the token handshake that establishes the portal session cookie."""
        ...

    def fetch_resource_listing(self, date: str) -> List[Dict[str, Any]]:
        """Return the raw resource objects listed for `date`."""
        ...

    def get_temporary_code(self, resource_id: int, date: str, time_of_day: str) -> str:
        """Return a temporary boarding code for an already departed slot."""
        ...

    def reserve(self, resource_id: int, date: str, time_slot_id: int) -> None:
        """Submit a reservation; success is any non-error HTTP response."""
        ...

    def list_current_reservations(self) -> List[ReservationRecord]:
        """Return confirmed reservations sorted ascending by time."""
        ...

    def get_qr_code(self, reservation_id: int, hall_appointment_data_id: int) -> str:
        """Return the boarding QR payload for a reservation."""
        ...

    def cancel_reservation(self, reservation_id: int, hall_appointment_data_id: int) -> None:
        """Cancel a reservation."""
        ...

    def list_ride_history(self, page: int, page_size: int) -> List[RideRecord]:
        """Return one page of past rides, newest first."""
        ...
