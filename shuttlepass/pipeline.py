"""Turn a selected departure into a boarding code.

The cycle is an explicit state machine::

    Selecting -> PastBranch | FutureBranch -> QrLookup -> Done | Failed

Each state is a small frozen dataclass and `AcquisitionPipeline._step` maps one
state to the next. Any `ShuttleError` moves the machine to `Failed`, whose
error is raised to the caller; no partial result is ever returned and nothing
is retried except the reservation lookup, which polls a fixed number of times.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple, Union

from shuttlepass.data_sources.base import ShuttleDataSource
from shuttlepass.domain import BoardingResult, CardKind, DepartureCard
from shuttlepass.errors import CycleCancelledError, NoMatchingReservationError, ShuttleError
from shuttlepass.models import ReservationRecord
from shuttlepass.selector import SelectedDeparture
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pipeline")

UsageCounts = Dict[Tuple[str, str], int]


class CancelToken:
    """Cooperative cancellation flag checked before every network step."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CycleCancelledError()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)


# ----------------------------------------------------------------------
# states
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Selecting:
    selected: SelectedDeparture


@dataclass(frozen=True)
class PastBranch:
    selected: SelectedDeparture


@dataclass(frozen=True)
class FutureBranch:
    selected: SelectedDeparture


@dataclass(frozen=True)
class QrLookup:
    selected: SelectedDeparture
    attempt: int = 1


@dataclass(frozen=True)
class Done:
    result: BoardingResult


@dataclass(frozen=True)
class Failed:
    error: ShuttleError


PipelineState = Union[Selecting, PastBranch, FutureBranch, QrLookup, Done, Failed]


def find_matching_reservation(
    reservations: Sequence[ReservationRecord],
    resource_id: int,
    date: str,
    time_of_day: str,
) -> Optional[ReservationRecord]:
    """First reservation on the route whose time starts with ``"{date} {time}"``."""
    prefix = f"{date} {time_of_day}"
    for record in reservations:
        if record.resource_id == resource_id and record.appointment_time.startswith(prefix):
            return record
    return None


class AcquisitionPipeline:
    """Runs one selected departure through the state machine."""

    def __init__(
        self,
        data_source: ShuttleDataSource,
        *,
        lookup_attempts: int = 3,
        lookup_delay_seconds: float = 1.0,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self.data_source = data_source
        if lookup_attempts < 1:
            raise ValueError(f"lookup_attempts must be >= 1, got {lookup_attempts}")
        self.lookup_attempts = lookup_attempts
        self.lookup_delay_seconds = lookup_delay_seconds
        self.cancel_token = cancel_token or CancelToken()

    @classmethod
    def from_settings(cls, data_source: ShuttleDataSource, settings,
                      cancel_token: CancelToken | None = None) -> "AcquisitionPipeline":
        return cls(
            data_source,
            lookup_attempts=settings.lookup_attempts,
            lookup_delay_seconds=settings.lookup_delay_seconds,
            cancel_token=cancel_token,
        )

    def run(self, selected: SelectedDeparture) -> BoardingResult:
        """Drive the machine to a terminal state; raise the error on failure."""
        return self._drive(Selecting(selected))

    def reserve(self, selected: SelectedDeparture) -> BoardingResult:
        """Book a user-chosen departure: reserve, then look up its QR code."""
        return self._drive(FutureBranch(selected))

    def _drive(self, state: PipelineState) -> BoardingResult:
        while True:
            if isinstance(state, Done):
                return state.result
            if isinstance(state, Failed):
                logger.warning("Acquisition failed", extra={"error": type(state.error).__name__})
                raise state.error
            try:
                state = self._step(state)
            except ShuttleError as exc:
                state = Failed(exc)

    def _step(self, state: PipelineState) -> PipelineState:
        if isinstance(state, Selecting):
            if state.selected.is_past:
                return PastBranch(state.selected)
            return FutureBranch(state.selected)
        if isinstance(state, PastBranch):
            return self._past_branch(state)
        if isinstance(state, FutureBranch):
            return self._future_branch(state)
        if isinstance(state, QrLookup):
            return self._qr_lookup(state)
        raise TypeError(f"no transition from {type(state).__name__}")

    def _past_branch(self, state: PastBranch) -> Done:
        resource, slot = state.selected.resource, state.selected.slot
        self.cancel_token.raise_if_cancelled()
        logger.info("Requesting temporary code", extra={"route": resource.name, "time": slot.time_of_day})
        code = self.data_source.get_temporary_code(resource.id, slot.date, slot.time_of_day)
        return Done(BoardingResult(
            is_past_departure=True,
            route_name=resource.name,
            departure_time=slot.time_of_day,
            code=code,
        ))

    def _future_branch(self, state: FutureBranch) -> QrLookup:
        resource, slot = state.selected.resource, state.selected.slot
        self.cancel_token.raise_if_cancelled()
        logger.info("Reserving", extra={"route": resource.name, "date": slot.date, "time": slot.time_of_day})
        self.data_source.reserve(resource.id, slot.date, slot.time_slot_id)
        return QrLookup(state.selected)

    def _qr_lookup(self, state: QrLookup) -> PipelineState:
        resource, slot = state.selected.resource, state.selected.slot
        self.cancel_token.raise_if_cancelled()
        reservations = self.data_source.list_current_reservations()
        match = find_matching_reservation(reservations, resource.id, slot.date, slot.time_of_day)
        if match is None:
            if state.attempt >= self.lookup_attempts:
                logger.warning("Reservation not found in listing", extra={
                    "route": resource.name, "time": slot.time_of_day, "attempts": state.attempt})
                raise NoMatchingReservationError()
            if self.cancel_token.wait(self.lookup_delay_seconds):
                raise CycleCancelledError()
            return QrLookup(state.selected, attempt=state.attempt + 1)

        self.cancel_token.raise_if_cancelled()
        code = self.data_source.get_qr_code(match.reservation_id, match.hall_appointment_data_id)
        return Done(BoardingResult(
            is_past_departure=False,
            route_name=resource.name,
            departure_time=slot.time_of_day,
            code=code,
        ))


# ----------------------------------------------------------------------
# nearby browse
# ----------------------------------------------------------------------

def _resolve_card(
    data_source: ShuttleDataSource,
    selected: SelectedDeparture,
    reservations: Sequence[ReservationRecord],
    now_hhmm: str,
    usage_count: int,
    cancel_token: CancelToken,
) -> DepartureCard:
    resource, slot = selected.resource, selected.slot
    card = dict(
        resource_id=resource.id,
        route_name=resource.name,
        date=slot.date,
        departure_time=slot.time_of_day,
        time_slot_id=slot.time_slot_id,
        usage_count=usage_count,
    )
    try:
        cancel_token.raise_if_cancelled()
        appointment = f"{slot.date} {slot.time_of_day}"
        match = next((r for r in reservations
                      if r.resource_name == resource.name and r.appointment_time == appointment), None)
        if match is not None:
            code = data_source.get_qr_code(match.reservation_id, match.hall_appointment_data_id)
            return DepartureCard(kind=CardKind.BOARDING, code=code, reservation_id=match.reservation_id,
                                 hall_appointment_data_id=match.hall_appointment_data_id, **card)
        # HH:MM strings compare chronologically
        if slot.time_of_day <= now_hhmm:
            code = data_source.get_temporary_code(resource.id, slot.date, slot.time_of_day)
            return DepartureCard(kind=CardKind.TEMPORARY, code=code, **card)
        return DepartureCard(kind=CardKind.PENDING, **card)
    except ShuttleError as exc:
        logger.warning("Nearby lookup failed", extra={"route": resource.name, "time": slot.time_of_day,
                                                      "error": type(exc).__name__})
        return DepartureCard(kind=CardKind.ERROR, error_message=exc.user_message, **card)


def browse_nearby(
    data_source: ShuttleDataSource,
    candidates: Sequence[SelectedDeparture],
    now: datetime,
    *,
    usage: UsageCounts | None = None,
    max_workers: int = 4,
    cancel_token: CancelToken | None = None,
) -> List[DepartureCard]:
    """Resolve every nearby slot concurrently into a card.

    One slot's failure becomes an error card and never affects its siblings.
    Cards come back most-ridden first; ties keep schedule order.
    """
    token = cancel_token or CancelToken()
    if not candidates:
        return []
    token.raise_if_cancelled()
    reservations = tuple(data_source.list_current_reservations())
    now_hhmm = now.strftime("%H:%M")
    usage = usage or {}

    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="nearby") as pool:
        futures = [
            pool.submit(_resolve_card, data_source, selected, reservations, now_hhmm,
                        usage.get((selected.resource.name, selected.slot.time_of_day), 0), token)
            for selected in candidates
        ]
        cards = [future.result() for future in futures]

    token.raise_if_cancelled()
    cards.sort(key=lambda c: c.usage_count, reverse=True)
    logger.info("Resolved nearby departures", extra={"cards": len(cards)})
    return cards


def cancel_reservation(data_source: ShuttleDataSource, reservation_id: int, hall_appointment_data_id: int) -> None:
    logger.info("Cancelling reservation", extra={"reservation_id": reservation_id})
    data_source.cancel_reservation(reservation_id, hall_appointment_data_id)
