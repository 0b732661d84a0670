"""Ride-history statistics.

`aggregate` is pure: it rebuilds every distribution from the raw records on
each call. The only I/O here is `fetch_ride_history`, which pages through the
portal's reservation history.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from shuttlepass.data_sources.base import ShuttleDataSource
from shuttlepass.domain import HourCount, RideStatistics, RouteCount, StatusCount
from shuttlepass.models import RideRecord
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="history")

CANCELLED_STATUSES = frozenset({"已撤销", "Cancelled"})
APPOINTMENT_FORMAT = "%Y-%m-%d %H:%M"
SIGN_IN_FORMAT = "%Y-%m-%d %H:%M:%S"
FIRST_HOUR = 5
LAST_HOUR = 22
SIGN_IN_PADDING_MINUTES = 2


def is_cancelled(record: RideRecord) -> bool:
    return record.status_name in CANCELLED_STATUSES


def parse_appointment(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value.strip(), APPOINTMENT_FORMAT)
    except ValueError:
        return None


def is_return_route(route_name: str, outbound_marker: str = "燕", return_marker: str = "新") -> bool:
    """True when the outbound-campus marker comes first in the route name.

    Routes are named "from - to", so naming the outbound campus first means
    the bus leaves it. A missing marker counts as sitting at the end.
    """
    end = len(route_name)
    first = route_name.find(outbound_marker)
    second = route_name.find(return_marker)
    return (first if first >= 0 else end) < (second if second >= 0 else end)


def _hour_counts(valid: Iterable[RideRecord], outbound_marker: str, return_marker: str) -> List[HourCount]:
    buckets: Dict[int, List[int]] = {h: [0, 0] for h in range(FIRST_HOUR, LAST_HOUR + 1)}
    for record in valid:
        when = parse_appointment(record.appointment_time)
        if when is None:
            continue
        if not (FIRST_HOUR <= when.hour < 23 or (when.hour == 23 and when.minute == 0)):
            continue
        if when.hour not in buckets:
            # 23:00 passes the filter but has no bucket
            continue
        slot = 1 if is_return_route(record.resource_name, outbound_marker, return_marker) else 0
        buckets[when.hour][slot] += 1
    return [HourCount(hour=h, outbound=o, return_=r) for h, (o, r) in buckets.items()]


def sign_in_deltas(records: Iterable[RideRecord]) -> List[int]:
    """Whole minutes between appointment and sign-in, truncated toward zero."""
    deltas = []
    for record in records:
        if not record.sign_in_time:
            continue
        appointment = parse_appointment(record.appointment_time)
        if appointment is None:
            continue
        try:
            signed = datetime.strptime(record.sign_in_time.strip(), SIGN_IN_FORMAT)
        except ValueError:
            continue
        deltas.append(int((signed - appointment).total_seconds() / 60))
    return deltas


def sign_in_histogram(deltas: Sequence[int]) -> Tuple[Tuple[int, int], Dict[int, int]]:
    """Symmetric, outlier-trimmed range and the clamped histogram inside it.

    The 2.5th/97.5th percentile bounds are mirrored around zero, widened by
    two minutes, and every delta is clamped into the range before counting,
    so outliers pile up in the boundary buckets.
    """
    if not deltas:
        return (0, 0), {}
    ordered = sorted(deltas)
    n = len(ordered)
    lower = ordered[int(n * 0.025)]
    upper = ordered[min(int(n * 0.975), n - 1)]
    widest = max(abs(lower), abs(upper))
    low, high = -widest - SIGN_IN_PADDING_MINUTES, widest + SIGN_IN_PADDING_MINUTES
    counts = Counter(max(min(d, high), low) for d in deltas)
    return (low, high), dict(sorted(counts.items()))


def aggregate(
    records: Sequence[RideRecord],
    today: Optional[date] = None,
    *,
    outbound_marker: str = "燕",
    return_marker: str = "新",
) -> RideStatistics:
    """Build every history distribution from scratch."""
    valid = [r for r in records if not is_cancelled(r)]

    routes = Counter(r.resource_name for r in valid)
    statuses = Counter(r.status_name for r in valid)
    # sorted() is stable and Counter keeps first-seen order, so ties stay in input order
    route_counts = [RouteCount(route=name, count=count)
                    for name, count in sorted(routes.items(), key=lambda kv: kv[1], reverse=True)]

    days = set()
    for record in valid:
        when = parse_appointment(record.appointment_time)
        if when is not None:
            days.add(when.date())
    calendar = sorted(days)

    sign_range, histogram = sign_in_histogram(sign_in_deltas(records))

    return RideStatistics(
        valid_count=len(valid),
        route_counts=route_counts,
        hour_counts=_hour_counts(valid, outbound_marker, return_marker),
        status_counts=[StatusCount(status=s, count=c) for s, c in statuses.items()],
        calendar_dates=calendar,
        earliest_date=calendar[0] if calendar else None,
        latest_date=today or date.today(),
        sign_in_range=sign_range,
        sign_in_histogram=histogram,
    )


def usage_counts(records: Iterable[RideRecord]) -> Dict[Tuple[str, str], int]:
    """How often each (route, HH:MM) appears in the history, any status."""
    counts: Counter = Counter()
    for record in records:
        when = parse_appointment(record.appointment_time)
        if when is not None:
            counts[(record.resource_name, when.strftime("%H:%M"))] += 1
    return dict(counts)


def fetch_ride_history(data_source: ShuttleDataSource, page_size: int = 50, max_pages: int = 40) -> List[RideRecord]:
    """Page through the history until a short page or `max_pages`."""
    records: List[RideRecord] = []
    for page in range(1, max_pages + 1):
        batch = data_source.list_ride_history(page, page_size)
        records.extend(batch)
        if len(batch) < page_size:
            break
    logger.info("Fetched ride history", extra={"records": len(records)})
    return records
