"""Refresh-cycle orchestration.

`RefreshCoordinator` composes login, schedule, direction, selection and
acquisition into one cycle and keeps at most one cycle in flight. A manual
request cancels whatever cycle is running and waits for it to unwind; only
the newest queued manual request actually runs. A silent (timer) refresh is
skipped when a cycle is already running and only logs its errors.
`IdleRefreshWorker` triggers silent refreshes after a period without network
activity.
"""

from __future__ import annotations

import threading
import time
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional

from shuttlepass.credential_store import CredentialStore
from shuttlepass.data_sources.base import ShuttleDataSource
from shuttlepass.direction import resolve_direction_by_location
from shuttlepass.domain import (
    AvailableDeparture,
    BoardingResult,
    CampusAnchors,
    Coordinates,
    DepartureCard,
    Direction,
    DirectionConfig,
    RideStatistics,
    TimeWindow,
)
from shuttlepass.errors import CycleCancelledError, NoDepartureFoundError, ShuttleError
from shuttlepass.history import aggregate, fetch_ride_history, usage_counts
from shuttlepass.models import Session
from shuttlepass.pipeline import AcquisitionPipeline, CancelToken, browse_nearby, cancel_reservation
from shuttlepass.schedule_fetcher import ScheduleFetcher, available_by_direction
from shuttlepass.selector import (
    SelectedDeparture,
    iter_nearby,
    route_ids_for,
    select_departure,
    time_difference_minutes,
)
from shuttlepass.session_client import SessionClient
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="refresh")

DATE_FORMAT = "%Y-%m-%d"


class RefreshCoordinator:
    """Owns the components of a refresh cycle and the single-flight lock."""

    def __init__(
        self,
        settings,
        data_source: ShuttleDataSource,
        store: CredentialStore,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self.data_source = data_source
        self.store = store
        self.clock = clock
        self.session_client = SessionClient(data_source, store)
        self.fetcher = ScheduleFetcher(data_source, store)
        self.last_result: Optional[BoardingResult] = None
        self._cycle_lock = threading.Lock()
        self._token_lock = threading.Lock()
        self._current_token: Optional[CancelToken] = None
        self._manual_generation = 0
        self._last_activity = time.monotonic()

    # ------------------------------------------------------------------
    # configuration views
    # ------------------------------------------------------------------

    @property
    def direction_config(self) -> DirectionConfig:
        return DirectionConfig(critical_hour=self.settings.critical_hour,
                               morning_goes_outbound=self.settings.morning_goes_outbound)

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(past_minutes=self.settings.past_tolerance_minutes,
                          future_minutes=self.settings.future_tolerance_minutes)

    @property
    def anchors(self) -> CampusAnchors:
        (out_lat, out_lon), (ret_lat, ret_lon) = self.settings.outbound_anchor, self.settings.return_anchor
        return CampusAnchors(
            outbound=Coordinates(latitude=out_lat, longitude=out_lon),
            return_=Coordinates(latitude=ret_lat, longitude=ret_lon),
        )

    # ------------------------------------------------------------------
    # activity tracking
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Record network activity; resets the idle timer."""
        self._last_activity = time.monotonic()

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self._last_activity

    @property
    def in_flight(self) -> bool:
        return self._cycle_lock.locked()

    # ------------------------------------------------------------------
    # refresh cycle
    # ------------------------------------------------------------------

    def refresh(self, location: Optional[Coordinates] = None) -> BoardingResult:
        """Manual refresh: cancel any running cycle, then run a fresh one."""
        generation = self._claim_manual()
        with self._cycle_lock:
            return self._run_locked(lambda token: self.run_cycle(token, location), generation)

    def refresh_silently(self) -> Optional[BoardingResult]:
        """Timer refresh: no-op while a cycle runs; errors are logged, not raised."""
        if self.store.load_credentials() is None:
            logger.debug("Silent refresh skipped: no stored credentials")
            return None
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Silent refresh skipped: cycle already in flight")
            return None
        try:
            return self._run_locked(lambda token: self.run_cycle(token, None))
        except ShuttleError as exc:
            logger.warning("Silent refresh failed", extra={"error": type(exc).__name__, "detail": str(exc)})
            return None
        finally:
            self._cycle_lock.release()

    def _claim_manual(self) -> int:
        """Register a manual request; it supersedes the running cycle and any queued one."""
        with self._token_lock:
            self._manual_generation += 1
            if self._current_token is not None:
                logger.info("Cancelling in-flight cycle for manual request")
                self._current_token.cancel()
            return self._manual_generation

    def _run_locked(self, cycle: Callable[[CancelToken], BoardingResult],
                    generation: Optional[int] = None) -> BoardingResult:
        token = CancelToken()
        with self._token_lock:
            if generation is not None and generation != self._manual_generation:
                logger.info("Queued manual request superseded", extra={"generation": generation})
                raise CycleCancelledError()
            self._current_token = token
        try:
            result = cycle(token)
            self.last_result = result
            return result
        finally:
            with self._token_lock:
                if self._current_token is token:
                    self._current_token = None
            self.touch()

    def run_cycle(self, token: CancelToken, location: Optional[Coordinates] = None) -> BoardingResult:
        """login -> schedule -> direction -> selection -> acquisition."""
        now = self.clock()
        token.raise_if_cancelled()
        session = self.session_client.relogin()

        token.raise_if_cancelled()
        resources = self.fetcher.fetch_schedule(session, now.strftime(DATE_FORMAT))

        direction = resolve_direction_by_location(location, self.anchors, now, self.direction_config)
        selected = select_departure(resources, direction, now, self.window,
                                    route_ids_for(direction, self.settings))

        pipeline = AcquisitionPipeline.from_settings(self.data_source, self.settings, cancel_token=token)
        result = pipeline.run(selected)
        logger.info("Refresh cycle finished", extra={"route": result.route_name,
                                                     "past": result.is_past_departure})
        return result

    # ------------------------------------------------------------------
    # other operations
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> Session:
        session = self.session_client.login(username, password)
        self.touch()
        return session

    def logout(self) -> None:
        self.session_client.logout()
        self.last_result = None

    def nearby_departures(self) -> List[DepartureCard]:
        """Resolve every departure near now on routes linking both campuses."""
        now = self.clock()
        session = self.session_client.relogin()
        resources = self.fetcher.fetch_schedule(session, now.strftime(DATE_FORMAT), use_cache=True)
        candidates = list(iter_nearby(resources, now, self.settings.nearby_window_minutes,
                                      (self.settings.outbound_marker, self.settings.return_marker)))
        usage = {}
        if candidates:
            history = fetch_ride_history(self.data_source, self.settings.history_page_size,
                                         self.settings.history_max_pages)
            usage = usage_counts(history)
        cards = browse_nearby(self.data_source, candidates, now, usage=usage,
                              max_workers=self.settings.max_parallel_lookups)
        self.touch()
        return cards

    def schedule(self, day: Optional[date] = None) -> Dict[Direction, List[AvailableDeparture]]:
        """Bookable departures for a day, grouped by direction."""
        target = (day or self.clock().date()).strftime(DATE_FORMAT)
        session = self.session_client.relogin()
        resources = self.fetcher.fetch_schedule(session, target, use_cache=True)
        self.touch()
        return available_by_direction(resources, target, self.settings.outbound_route_ids,
                                      self.settings.return_route_ids)

    def upcoming_dates(self, days: int = 7) -> List[str]:
        today = self.clock().date()
        return [(today + timedelta(days=offset)).strftime(DATE_FORMAT) for offset in range(days)]

    def week_schedule(self, days: int = 7) -> Dict[str, Dict[Direction, List[AvailableDeparture]]]:
        """Bookable departures for today and the following days, per date."""
        dates = self.upcoming_dates(days)
        session = self.session_client.relogin()
        resources = self.fetcher.fetch_schedule_window(session, dates)
        self.touch()
        return {
            day: available_by_direction(resources, day, self.settings.outbound_route_ids,
                                        self.settings.return_route_ids)
            for day in dates
        }

    def _open_portal(self) -> Session:
        session = self.session_client.relogin()
        self.data_source.open_session(session.token)
        return session

    def history_stats(self) -> RideStatistics:
        self._open_portal()
        records = fetch_ride_history(self.data_source, self.settings.history_page_size,
                                     self.settings.history_max_pages)
        self.touch()
        return aggregate(records, today=self.clock().date(),
                         outbound_marker=self.settings.outbound_marker,
                         return_marker=self.settings.return_marker)

    def reserve_departure(self, resource_id: int, day: str, time_slot_id: int) -> BoardingResult:
        """Book one specific departure picked by the user, then fetch its QR code.

        Counts as a manual request: it supersedes any running or queued cycle.
        """
        generation = self._claim_manual()
        with self._cycle_lock:
            return self._run_locked(
                lambda token: self._reserve_cycle(token, resource_id, day, time_slot_id), generation)

    def _reserve_cycle(self, token: CancelToken, resource_id: int, day: str, time_slot_id: int) -> BoardingResult:
        token.raise_if_cancelled()
        session = self.session_client.relogin()

        token.raise_if_cancelled()
        resources = self.fetcher.fetch_schedule(session, day)
        selected = self._find_slot(resources, resource_id, day, time_slot_id)

        pipeline = AcquisitionPipeline.from_settings(self.data_source, self.settings, cancel_token=token)
        result = pipeline.reserve(selected)
        logger.info("Reserved chosen departure", extra={"route": result.route_name, "time": result.departure_time})
        return result

    def _find_slot(self, resources, resource_id: int, day: str, time_slot_id: int) -> SelectedDeparture:
        for resource in resources:
            if resource.id != resource_id:
                continue
            for slot in resource.slots:
                if slot.time_slot_id == time_slot_id and slot.date == day:
                    diff = time_difference_minutes(slot.date, slot.time_of_day, self.clock())
                    return SelectedDeparture(resource=resource, slot=slot, time_difference_minutes=diff)
        logger.info("Requested departure not in schedule", extra={
            "resource_id": resource_id, "date": day, "time_slot_id": time_slot_id})
        raise NoDepartureFoundError(f"no slot {time_slot_id} on route {resource_id} for {day}")

    def cancel(self, reservation_id: int, hall_appointment_data_id: int) -> None:
        self._open_portal()
        cancel_reservation(self.data_source, reservation_id, hall_appointment_data_id)
        self.touch()


class IdleRefreshWorker(threading.Thread):
    """Runs a silent refresh once the coordinator has been idle long enough."""

    daemon = True

    def __init__(self, coordinator: RefreshCoordinator, idle_seconds: int, poll_seconds: float = 30.0):
        super().__init__(name="idle-refresh-worker")
        self.coordinator = coordinator
        self.idle_seconds = idle_seconds
        self.poll_seconds = poll_seconds
        self._stop_event = threading.Event()

    def run(self) -> None:
        logger.info("Idle refresh worker started", extra={"idle_seconds": self.idle_seconds})
        while not self._stop_event.wait(self.poll_seconds):
            self.tick()
        logger.info("Idle refresh worker stopped")

    def tick(self) -> bool:
        """Refresh if idle; True when a refresh was attempted."""
        if self.coordinator.idle_seconds < self.idle_seconds:
            return False
        self.coordinator.refresh_silently()
        # a failed or skipped attempt still restarts the idle period
        self.coordinator.touch()
        return True

    def stop(self) -> None:
        self._stop_event.set()
