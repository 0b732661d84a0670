"""Pick the departure a refresh cycle acts on."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Collection, Iterator, Optional, Sequence

from shuttlepass.domain import Direction, TimeWindow
from shuttlepass.errors import DecodeError, NoDepartureFoundError
from shuttlepass.models import Resource, Slot
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="selector")

SLOT_FORMAT = "%Y-%m-%d %H:%M"


@dataclass(frozen=True)
class SelectedDeparture:
    """A slot together with the route it belongs to and its offset from now."""
    resource: Resource
    slot: Slot
    time_difference_minutes: int

    @property
    def is_past(self) -> bool:
        return self.time_difference_minutes < 0


def time_difference_minutes(slot_date: str, slot_time: str, now: datetime) -> int:
    """Whole minutes from `now` until the slot, truncated toward zero."""
    try:
        departure = datetime.strptime(f"{slot_date} {slot_time}", SLOT_FORMAT)
    except ValueError as exc:
        raise DecodeError(f"Invalid response format: bad slot time {slot_date!r} {slot_time!r}") from exc
    return int((departure - now.replace(tzinfo=None)).total_seconds() / 60)


def _slot_difference(resource: Resource, slot: Slot, now: datetime) -> Optional[int]:
    """Minutes until the slot, or None when its time cannot be parsed."""
    try:
        return time_difference_minutes(slot.date, slot.time_of_day, now)
    except DecodeError:
        logger.warning("Skipping slot with unparseable time", extra={
            "route": resource.name, "date": slot.date, "time": slot.time_of_day})
        return None


def route_ids_for(direction: Direction, settings) -> Collection[int]:
    """Route allowlist for a direction, as configured."""
    if direction is Direction.OUTBOUND:
        return tuple(settings.outbound_route_ids)
    return tuple(settings.return_route_ids)


def iter_qualifying(
    resources: Sequence[Resource],
    route_ids: Collection[int],
    now: datetime,
    window: TimeWindow,
) -> Iterator[SelectedDeparture]:
    """Yield every bookable slot inside the window, routes first then slots."""
    today = now.strftime("%Y-%m-%d")
    for resource in resources:
        if resource.id not in route_ids:
            continue
        for slot in resource.slots:
            if slot.date != today or slot.remaining_seats <= 0:
                continue
            diff = _slot_difference(resource, slot, now)
            if diff is not None and window.contains(diff):
                yield SelectedDeparture(resource=resource, slot=slot, time_difference_minutes=diff)


def select_departure(
    resources: Sequence[Resource],
    direction: Direction,
    now: datetime,
    window: TimeWindow,
    route_ids: Collection[int],
) -> SelectedDeparture:
    """Return the first qualifying slot in scan order.

    This is first-found, not earliest departure: a later slot on an earlier
    route wins over an earlier slot on a later route.
    """
    for selected in iter_qualifying(resources, route_ids, now, window):
        logger.info("Selected departure", extra={
            "direction": direction.value,
            "route": selected.resource.name,
            "time": selected.slot.time_of_day,
            "diff_minutes": selected.time_difference_minutes,
        })
        return selected
    logger.info("No qualifying departure", extra={"direction": direction.value})
    raise NoDepartureFoundError()


def iter_nearby(
    resources: Sequence[Resource],
    now: datetime,
    window_minutes: int,
    markers: Sequence[str],
) -> Iterator[SelectedDeparture]:
    """Today's slots within +/- `window_minutes` on routes naming every marker.

    Seat count is ignored: departed slots still get a temporary code.
    """
    today = now.strftime("%Y-%m-%d")
    for resource in resources:
        if not all(marker in resource.name for marker in markers):
            continue
        for slot in resource.slots:
            if slot.date != today:
                continue
            diff = _slot_difference(resource, slot, now)
            if diff is not None and -window_minutes <= diff <= window_minutes:
                yield SelectedDeparture(resource=resource, slot=slot, time_difference_minutes=diff)
