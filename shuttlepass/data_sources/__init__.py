"""Portal access for the reservation cycle."""

from .base import ShuttleDataSource
from .portal_client import LoginResponse, PortalClient, dig, parse_reservation, parse_ride

__all__ = [
    "ShuttleDataSource",
    "PortalClient",
    "LoginResponse",
    "dig",
    "parse_reservation",
    "parse_ride",
]
