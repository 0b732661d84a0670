"""Fetch and decode the daily shuttle schedule.

The listing nests each route's departures under ``table``, an object with a
single key whose name changes between deployments. `parse_resource` accepts
any key name but insists there is exactly one.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Sequence

from shuttlepass.credential_store import CredentialStore
from shuttlepass.data_sources.base import ShuttleDataSource
from shuttlepass.data_sources.portal_client import dig
from shuttlepass.domain import AvailableDeparture, Direction
from shuttlepass.errors import DecodeError
from shuttlepass.models import Resource, Session, Slot
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="schedule_fetcher")


def _int_field(raw: Dict[str, Any], *keys: str) -> int:
    value = dig(raw, *keys)
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise DecodeError(f"Invalid response format: '{'.'.join(keys)}' is not an integer")
    try:
        return int(value)
    except ValueError as exc:
        raise DecodeError(f"Invalid response format: '{'.'.join(keys)}' is not an integer") from exc


def parse_slot(raw: Any) -> Slot:
    """Decode one raw departure: ``time_id``, ``yaxis``, ``date``, ``row.margin``."""
    if not isinstance(raw, dict):
        raise DecodeError("Invalid response format: slot is not an object")
    margin = _int_field(raw, "row", "margin")
    if margin < 0:
        raise DecodeError(f"Invalid response format: negative remaining seats ({margin})")
    return Slot(
        time_slot_id=_int_field(raw, "time_id"),
        time_of_day=str(dig(raw, "yaxis")).strip(),
        date=str(dig(raw, "date")).strip(),
        remaining_seats=margin,
    )


def parse_resource(raw: Any) -> Resource:
    """Decode one route; its ``table`` must hold exactly one slot list."""
    if not isinstance(raw, dict):
        raise DecodeError("Invalid response format: resource is not an object")
    table = dig(raw, "table")
    if not isinstance(table, dict):
        raise DecodeError("Invalid response format: 'table' is not an object")
    if len(table) != 1:
        raise DecodeError(f"Invalid response format: 'table' must have exactly one key, got {len(table)}")
    (slots_raw,) = table.values()
    if not isinstance(slots_raw, list):
        raise DecodeError("Invalid response format: table value is not a list")
    return Resource(
        id=_int_field(raw, "id"),
        name=str(dig(raw, "name")),
        slots=tuple(parse_slot(item) for item in slots_raw),
    )


def parse_resources(listing: Iterable[Any]) -> List[Resource]:
    return [parse_resource(item) for item in listing]


def available_by_direction(
    resources: Sequence[Resource],
    date: str,
    outbound_ids: Iterable[int],
    return_ids: Iterable[int],
) -> Dict[Direction, List[AvailableDeparture]]:
    """Group bookable slots on `date` per direction, earliest first."""
    route_map = {Direction.OUTBOUND: set(outbound_ids), Direction.RETURN: set(return_ids)}
    grouped: Dict[Direction, List[AvailableDeparture]] = {d: [] for d in Direction}
    for resource in resources:
        for direction, ids in route_map.items():
            if resource.id not in ids:
                continue
            for slot in resource.slots:
                if not slot.is_available_on(date):
                    continue
                grouped[direction].append(AvailableDeparture(
                    resource_id=resource.id,
                    route_name=resource.name,
                    date=slot.date,
                    time=slot.time_of_day,
                    time_slot_id=slot.time_slot_id,
                    remaining_seats=slot.remaining_seats,
                ))
    for departures in grouped.values():
        departures.sort(key=lambda d: d.time)
    return grouped


class ScheduleFetcher:
    """Runs the token handshake, then pulls and parses the listing for a date."""

    def __init__(self, data_source: ShuttleDataSource, store: CredentialStore | None = None) -> None:
        self.data_source = data_source
        self.store = store

    def fetch_schedule(self, session: Session, date: str, *, use_cache: bool = False) -> List[Resource]:
        """Return the routes running on `date`.

        The handshake always runs and any failure there aborts the fetch.
        With `use_cache`, a listing cached for the same date skips only the
        listing request. Fresh listings are written back to the cache.
        """
        self.data_source.open_session(session.token)

        listing = None
        if use_cache and self.store is not None:
            listing = self.store.load_schedule(date)
            if listing is not None:
                logger.debug("Using cached schedule", extra={"date": date})
        if listing is None:
            listing = self.data_source.fetch_resource_listing(date)
            if self.store is not None:
                self.store.save_schedule(date, listing)

        resources = parse_resources(listing)
        logger.info("Fetched schedule", extra={"date": date, "resources": len(resources)})
        return resources

    def fetch_schedule_window(self, session: Session, dates: Sequence[str]) -> List[Resource]:
        """Fetch several dates in order and concatenate the routes."""
        if not dates:
            return []
        self.data_source.open_session(session.token)
        resources: List[Resource] = []
        for date in dates:
            listing = self.data_source.fetch_resource_listing(date)
            if self.store is not None:
                self.store.save_schedule(date, listing)
            resources.extend(parse_resources(listing))
        logger.info("Fetched schedule window", extra={"dates": list(dates), "resources": len(resources)})
        return resources
