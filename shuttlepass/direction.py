"""Decide which way the user is travelling."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from shuttlepass.domain import CampusAnchors, Coordinates, Direction, DirectionConfig
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="direction")

EARTH_RADIUS_KM = 6371.0


def resolve_direction(now: datetime, config: DirectionConfig) -> Direction:
    """Before `critical_hour` travel goes the morning way, afterwards the other way."""
    morning = Direction.OUTBOUND if config.morning_goes_outbound else Direction.RETURN
    return morning if now.hour < config.critical_hour else morning.flipped()


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in kilometres."""
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def resolve_direction_by_location(
    location: Optional[Coordinates],
    anchors: CampusAnchors,
    now: datetime,
    config: DirectionConfig,
) -> Direction:
    """Travel away from whichever campus the user is nearer to.

    Being nearer the return campus means heading outbound. Without a location
    the time rule decides.
    """
    if location is None:
        logger.debug("No location available; using time rule")
        return resolve_direction(now, config)
    to_outbound = haversine_km(location, anchors.outbound)
    to_return = haversine_km(location, anchors.return_)
    logger.debug("Distances to campuses", extra={"outbound_km": round(to_outbound, 3),
                                                 "return_km": round(to_return, 3)})
    return Direction.OUTBOUND if to_return < to_outbound else Direction.RETURN
