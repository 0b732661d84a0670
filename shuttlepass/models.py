"""Plain records decoded from portal responses.

These are rebuilt on every refresh cycle and never mutated, hence frozen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class Credentials:
    """Username/password pair kept by the credential store."""
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class Session:
    """Portal token from a successful login; valid until a call fails with an auth error."""
    token: str = field(repr=False)
    username: str


@dataclass(frozen=True)
class Slot:
    """One bookable departure of a route."""
    time_slot_id: int
    time_of_day: str  # "HH:MM"
    date: str  # "YYYY-MM-DD"
    remaining_seats: int

    def is_available_on(self, date: str) -> bool:
        """True when seats remain and the slot runs on `date`."""
        return self.remaining_seats > 0 and self.date == date


@dataclass(frozen=True)
class Resource:
    """A shuttle route and its ordered departures."""
    id: int
    name: str
    slots: Tuple[Slot, ...] = ()


@dataclass(frozen=True)
class ReservationRecord:
    """A live reservation owned by the user."""
    reservation_id: int
    hall_appointment_data_id: int
    resource_id: int
    resource_name: str
    appointment_time: str  # "YYYY-MM-DD HH:MM"


@dataclass(frozen=True)
class RideRecord:
    """A past ride as reported by the reservation history listing."""
    resource_name: str
    appointment_time: str
    status_name: str
    sign_in_time: Optional[str] = None
