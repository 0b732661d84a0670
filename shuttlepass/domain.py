"""Domain vocabulary and response schemas for the boarding-pass service.

Enums and Pydantic models that cross the boundary between the decision engine
and presentation (the HTTP API). No network or selection logic lives here.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class _StrictBaseModel(BaseModel):
    """Base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid")


class _FrozenModel(_StrictBaseModel):
    """Immutable result model."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class Direction(str, Enum):
    """Travel orientation between the two campuses."""
    OUTBOUND = "outbound"  # to campus A
    RETURN = "return"  # to campus B

    def flipped(self) -> "Direction":
        """Return the opposite direction."""
        return Direction.RETURN if self is Direction.OUTBOUND else Direction.OUTBOUND


class CardKind(str, Enum):
    """Outcome of one nearby-departure lookup."""
    BOARDING = "boarding"  # QR for an existing reservation
    TEMPORARY = "temporary"  # temporary code for a departed slot
    PENDING = "pending"  # future slot, not reserved yet
    ERROR = "error"


class DirectionConfig(_StrictBaseModel):
    """User thresholds for the time-based direction rule."""
    critical_hour: int = Field(default=14, ge=0, le=24)
    morning_goes_outbound: bool = True


class TimeWindow(_StrictBaseModel):
    """Asymmetric tolerance around now, in minutes."""
    past_minutes: int = Field(default=10, ge=0)
    future_minutes: int = Field(default=30, ge=0)

    def contains(self, difference_minutes: int) -> bool:
        """True when -past <= difference <= future."""
        return -self.past_minutes <= difference_minutes <= self.future_minutes


class Coordinates(_StrictBaseModel):
    """A WGS84 position in decimal degrees."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class CampusAnchors(_StrictBaseModel):
    """Fixed positions of the two campuses."""
    outbound: Coordinates  # campus A, where outbound trips go
    return_: Coordinates = Field(alias="return")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class BoardingResult(_FrozenModel):
    """Terminal output of one acquisition cycle."""
    is_past_departure: bool
    route_name: str
    departure_time: str
    code: str


class DepartureCard(_StrictBaseModel):
    """Per-slot state produced by the nearby-departures browse."""
    kind: CardKind
    resource_id: int
    route_name: str
    date: str
    departure_time: str
    time_slot_id: int
    code: Optional[str] = None
    reservation_id: Optional[int] = None
    hall_appointment_data_id: Optional[int] = None
    usage_count: int = 0
    error_message: str = ""


class AvailableDeparture(_StrictBaseModel):
    """A bookable slot as listed by the schedule endpoint."""
    resource_id: int
    route_name: str
    date: str
    time: str
    time_slot_id: int
    remaining_seats: int


class RouteCount(_StrictBaseModel):
    """Valid rides on one route."""
    route: str
    count: int


class HourCount(_StrictBaseModel):
    """Valid rides departing in one hour bucket, split by direction."""
    hour: int
    outbound: int = 0
    return_: int = Field(default=0, alias="return")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class StatusCount(_StrictBaseModel):
    """Valid rides per reservation status."""
    status: str
    count: int


class RideStatistics(_StrictBaseModel):
    """Everything the history screen needs, recomputed from scratch each call."""
    valid_count: int = 0
    route_counts: List[RouteCount] = Field(default_factory=list)
    hour_counts: List[HourCount] = Field(default_factory=list)
    status_counts: List[StatusCount] = Field(default_factory=list)
    calendar_dates: List[date] = Field(default_factory=list)
    earliest_date: Optional[date] = None
    latest_date: Optional[date] = None
    sign_in_range: Tuple[int, int] = (0, 0)
    sign_in_histogram: Dict[int, int] = Field(default_factory=dict)
