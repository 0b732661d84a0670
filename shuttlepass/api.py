"""HTTP API for the shuttle boarding-pass service."""

import hmac
from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from shuttlepass.config import settings
from shuttlepass.credential_store import build_credential_store
from shuttlepass.data_sources import PortalClient
from shuttlepass.domain import (
    AvailableDeparture,
    BoardingResult,
    Coordinates,
    DepartureCard,
    Direction,
    RideStatistics,
)
from shuttlepass.errors import (
    CycleCancelledError,
    DecodeError,
    InvalidCredentialsError,
    NoDepartureFoundError,
    NoMatchingReservationError,
    PortalError,
    ReservationFailedError,
    ShuttleError,
    TransportError,
)
from shuttlepass.refresh import RefreshCoordinator
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="shuttlepass/api")


def require_api_key(x_api_key: str | None = Header(default=None)):
    """Validate the X-API-Key header against the configured api_key, if any."""
    if not settings.api_key:
        logger.debug("No API key configured; allowing all requests")
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter(dependencies=[Depends(require_api_key)])
COORDINATOR = RefreshCoordinator(settings, PortalClient.from_settings(settings), build_credential_store(settings))

_STATUS_BY_ERROR = (
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (NoDepartureFoundError, status.HTTP_404_NOT_FOUND),
    (NoMatchingReservationError, status.HTTP_404_NOT_FOUND),
    (CycleCancelledError, status.HTTP_409_CONFLICT),
    (ReservationFailedError, status.HTTP_502_BAD_GATEWAY),
    (TransportError, status.HTTP_502_BAD_GATEWAY),
    (DecodeError, status.HTTP_502_BAD_GATEWAY),
    (PortalError, status.HTTP_502_BAD_GATEWAY),
)


def to_http_error(exc: ShuttleError) -> HTTPException:
    """Map a cycle error to an HTTP status carrying its user-facing message."""
    code = next((c for cls, c in _STATUS_BY_ERROR if isinstance(exc, cls)), status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info("Request failed", extra={"error": type(exc).__name__, "detail": str(exc), "status": code})
    return HTTPException(status_code=code, detail=exc.user_message)


class LoginRequest(BaseModel):
    """Credentials submitted by the client."""
    username: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)


class LoginResult(BaseModel):
    username: str
    logged_in: bool = True


class CancelRequest(BaseModel):
    hall_appointment_data_id: int


class ReserveRequest(BaseModel):
    """A departure picked from the nearby or schedule views."""
    day: date = Field(alias="date")
    time_slot_id: int

    model_config = ConfigDict(populate_by_name=True)


class ScheduleResponse(BaseModel):
    """Available departures of one day, split by direction."""
    date: str
    outbound: List[AvailableDeparture] = Field(default_factory=list)
    return_: List[AvailableDeparture] = Field(default_factory=list, alias="return")

    model_config = ConfigDict(populate_by_name=True)


class StatusResponse(BaseModel):
    in_flight: bool
    idle_seconds: float
    last_result: Optional[BoardingResult] = None


def _schedule_response(day: str, grouped: Dict[Direction, List[AvailableDeparture]]) -> ScheduleResponse:
    return ScheduleResponse(
        date=day,
        outbound=grouped.get(Direction.OUTBOUND, []),
        return_=grouped.get(Direction.RETURN, []),
    )


@router.post("/login", response_model=LoginResult)
def login(req: LoginRequest):
    """Check credentials against the identity service and remember them."""
    try:
        session = COORDINATOR.login(req.username, req.password)
    except ShuttleError as exc:
        raise to_http_error(exc) from exc
    return LoginResult(username=session.username)


@router.post("/logout", response_model=LoginResult)
def logout():
    creds = COORDINATOR.store.load_credentials()
    COORDINATOR.logout()
    return LoginResult(username=creds.username if creds else "", logged_in=False)


@router.post("/refresh", response_model=BoardingResult)
def refresh(
    latitude: Optional[float] = Query(default=None, ge=-90, le=90),
    longitude: Optional[float] = Query(default=None, ge=-180, le=180),
):
    """Run one full cycle and return the boarding code.

    With both coordinates the direction follows the user's position,
    otherwise the time-of-day rule.
    """
    if (latitude is None) != (longitude is None):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Provide both latitude and longitude, or neither.")
    location = Coordinates(latitude=latitude, longitude=longitude) if latitude is not None else None
    try:
        return COORDINATOR.refresh(location)
    except ShuttleError as exc:
        raise to_http_error(exc) from exc


@router.get("/departures/nearby", response_model=List[DepartureCard])
def nearby_departures():
    """Codes for every departure close to now, most-ridden first."""
    try:
        return COORDINATOR.nearby_departures()
    except ShuttleError as exc:
        raise to_http_error(exc) from exc


@router.post("/departures/{resource_id}/reserve", response_model=BoardingResult)
def reserve_departure(resource_id: int, req: ReserveRequest):
    """Reserve one chosen departure and return its boarding code."""
    try:
        return COORDINATOR.reserve_departure(resource_id, req.day.strftime("%Y-%m-%d"), req.time_slot_id)
    except ShuttleError as exc:
        raise to_http_error(exc) from exc


@router.get("/schedule", response_model=ScheduleResponse)
def schedule(day: Optional[date] = Query(default=None, alias="date")):
    """Bookable departures for a date (today by default)."""
    target = day or COORDINATOR.clock().date()
    try:
        grouped = COORDINATOR.schedule(target)
    except ShuttleError as exc:
        raise to_http_error(exc) from exc
    return _schedule_response(target.strftime("%Y-%m-%d"), grouped)


@router.get("/schedule/week", response_model=List[ScheduleResponse])
def week_schedule(days: int = Query(default=7, ge=1, le=14)):
    """Bookable departures for today and the following days."""
    try:
        by_date = COORDINATOR.week_schedule(days)
    except ShuttleError as exc:
        raise to_http_error(exc) from exc
    return [_schedule_response(day, grouped) for day, grouped in by_date.items()]


@router.get("/history/stats", response_model=RideStatistics)
def history_stats():
    """Ride-history distributions for the statistics screen."""
    try:
        return COORDINATOR.history_stats()
    except ShuttleError as exc:
        raise to_http_error(exc) from exc


@router.post("/reservations/{reservation_id}/cancel")
def cancel(reservation_id: int, req: CancelRequest):
    try:
        COORDINATOR.cancel(reservation_id, req.hall_appointment_data_id)
    except ShuttleError as exc:
        raise to_http_error(exc) from exc
    return {"reservation_id": reservation_id, "cancelled": True}


@router.get("/status", response_model=StatusResponse)
def refresh_status():
    return StatusResponse(
        in_flight=COORDINATOR.in_flight,
        idle_seconds=round(COORDINATOR.idle_seconds, 1),
        last_result=COORDINATOR.last_result,
    )
