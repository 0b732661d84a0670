"""requests-based client for the campus identity service and reservation portal."""
from __future__ import annotations

import json
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

import requests

from shuttlepass.errors import (
    DecodeError,
    PortalError,
    ReservationFailedError,
    ShuttleError,
    TransportError,
)
from shuttlepass.models import ReservationRecord, RideRecord
from utils.logging_utils import get_tagged_logger, redact_form, redact_url

logger = get_tagged_logger(__name__, tag="portal_client")

RESERVE_PAGE = "/v2/reserve/"
CAS_LOGIN_PATH = "/site/login/cas-login"
LISTING_PATH = "/site/reservation/list-page"
SIGN_QRCODE_PATH = "/site/reservation/get-sign-qrcode"
LAUNCH_PATH = "/site/reservation/launch"
MY_LIST_PATH = "/site/reservation/my-list-time"
CANCEL_PATH = "/site/reservation/single-time-cancel"

CONFIRMED_STATUS = 2
TEMPORARY_CODE_TYPE = 1
RESERVATION_CODE_TYPE = 0


@dataclass
class LoginResponse:
    """Identity endpoint answer."""
    success: bool
    token: Optional[str] = None


def dig(payload: Any, *keys: str) -> Any:
    """Walk nested dict keys, raising DecodeError when any level is missing."""
    current = payload
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            path = ".".join(keys)
            raise DecodeError(f"Invalid response format: missing '{path}'")
        current = current[key]
    return current


def _as_int(value: Any, name: str) -> int:
    """Coerce a JSON number (or numeric string) into int."""
    if isinstance(value, bool):
        raise DecodeError(f"Invalid response format: '{name}' is not an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"Invalid response format: '{name}' is not an integer") from exc


def _require_row(raw: Any, listing: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise DecodeError(f"Invalid response format: {listing} row is not an object")
    return raw


def parse_reservation(raw: Dict[str, Any]) -> ReservationRecord:
    """Decode one entry of the current-reservations listing."""
    raw = _require_row(raw, "reservation")
    return ReservationRecord(
        reservation_id=_as_int(dig(raw, "id"), "id"),
        hall_appointment_data_id=_as_int(dig(raw, "hall_appointment_data_id"), "hall_appointment_data_id"),
        resource_id=_as_int(dig(raw, "resource_id"), "resource_id"),
        resource_name=str(raw.get("resource_name") or ""),
        appointment_time=str(dig(raw, "appointment_time")).strip(),
    )


def parse_ride(raw: Dict[str, Any]) -> RideRecord:
    """Decode one entry of the ride-history listing."""
    raw = _require_row(raw, "ride history")
    sign_in = raw.get("appointment_sign_time")
    return RideRecord(
        resource_name=str(dig(raw, "resource_name")),
        appointment_time=str(dig(raw, "appointment_time")),
        status_name=str(dig(raw, "status_name")),
        sign_in_time=str(sign_in) if sign_in else None,
    )


class PortalClient:
    """Talks to the identity endpoint and the reservation portal.

    One instance owns one `requests.Session`; the handshake cookie set by
    `open_session` is what authorises every later portal call.
    """

    def __init__(
        self,
        *,
        identity_url: str,
        portal_base_url: str,
        app_id: str = "wproc",
        hall_id: int = 1,
        timeout: float = 10.0,
        http: requests.Session | None = None,
    ) -> None:
        self.identity_url = identity_url
        self.portal_base_url = portal_base_url.rstrip("/")
        self.app_id = app_id
        self.hall_id = hall_id
        self.timeout = timeout
        self.http = http if http is not None else requests.Session()

    @classmethod
    def from_settings(cls, settings, http: requests.Session | None = None) -> "PortalClient":
        """Build a client from `shuttlepass.config.Settings`."""
        return cls(
            identity_url=settings.identity_url,
            portal_base_url=settings.portal_base_url,
            app_id=settings.app_id,
            hall_id=settings.hall_id,
            timeout=settings.request_timeout_seconds,
            http=http,
        )

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @property
    def reserve_page_url(self) -> str:
        return f"{self.portal_base_url}{RESERVE_PAGE}"

    def _send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        status_error: Type[ShuttleError] = TransportError,
    ) -> requests.Response:
        """Issue one request; map network failures to TransportError and bad statuses to `status_error`."""
        logger.debug("%s %s", method, redact_url(url), extra={"params": redact_form(params or {})})
        try:
            resp = self.http.request(method, url, params=params, data=data, timeout=self.timeout)
        except requests.RequestException as exc:
            # the requests message embeds the full query string, token included
            logger.warning("Portal request failed", extra={"url": redact_url(url), "error": type(exc).__name__})
            raise TransportError(f"{method} {redact_url(url)} failed: {type(exc).__name__}") from exc
        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            logger.warning("Portal returned HTTP %s", resp.status_code, extra={"url": redact_url(url)})
            raise status_error(f"{method} {redact_url(url)} returned HTTP {resp.status_code}") from exc
        return resp

    @staticmethod
    def _decode(resp: requests.Response) -> Dict[str, Any]:
        """Decode a JSON object body."""
        try:
            payload = resp.json()
        except ValueError as exc:
            raise DecodeError("Invalid response format: body is not JSON") from exc
        if not isinstance(payload, dict):
            raise DecodeError("Invalid response format: expected a JSON object")
        return payload

    def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._decode(self._send("GET", f"{self.portal_base_url}{path}", params=params))

    @staticmethod
    def _check_envelope(payload: Dict[str, Any]) -> None:
        """Raise PortalError when the envelope carries a non-zero error code."""
        code = payload.get("e")
        if code not in (None, 0, "0"):
            raise PortalError(str(payload.get("m") or f"portal error code {code}"))

    @staticmethod
    def _code(payload: Dict[str, Any]) -> str:
        """Extract a non-empty `d.code` string."""
        code = dig(payload, "d", "code")
        if not isinstance(code, str) or not code:
            raise DecodeError("Invalid response format: 'd.code' is empty")
        return code

    # ------------------------------------------------------------------
    # identity + session
    # ------------------------------------------------------------------

    def authenticate(self, username: str, password: str) -> LoginResponse:
        """POST form-encoded credentials to the identity endpoint."""
        form = {
            "appid": self.app_id,
            "userName": username,
            "password": password,
            "redirUrl": f"{self.portal_base_url}{CAS_LOGIN_PATH}?redirect_url={self.reserve_page_url}",
        }
        payload = self._decode(self._send("POST", self.identity_url, data=form))
        success = payload.get("success")
        if not isinstance(success, bool):
            raise DecodeError("Invalid response format: missing 'success'")
        token = payload.get("token")
        return LoginResponse(success=success, token=str(token) if token else None)

    def open_session(self, token: str) -> None:
        """Follow the CAS redirect with the token; the body is ignored."""
        params = {
            "redirect_url": self.reserve_page_url,
            "_rand": f"{random.random():.16f}",
            "token": token,
        }
        resp = self._send("GET", f"{self.portal_base_url}{CAS_LOGIN_PATH}", params=params)
        logger.debug("Session handshake completed", extra={"status": resp.status_code})

    # ------------------------------------------------------------------
    # schedule + codes
    # ------------------------------------------------------------------

    def fetch_resource_listing(self, date: str) -> List[Dict[str, Any]]:
        """Return the raw `d.list` of resources for a date."""
        payload = self._get_json(LISTING_PATH, {"hall_id": self.hall_id, "time": date, "p": 1, "page_size": 0})
        self._check_envelope(payload)
        listing = dig(payload, "d", "list")
        if not isinstance(listing, list):
            raise DecodeError("Invalid response format: 'd.list' is not a list")
        return listing

    def get_temporary_code(self, resource_id: int, date: str, time_of_day: str) -> str:
        """Temporary code for a departure that already left; no reservation is created."""
        params = {"type": TEMPORARY_CODE_TYPE, "resource_id": resource_id, "text": f"{date} {time_of_day}"}
        return self._code(self._get_json(SIGN_QRCODE_PATH, params))

    def reserve(self, resource_id: int, date: str, time_slot_id: int) -> None:
        """Submit a reservation. The body is logged but never inspected."""
        form = {
            "resource_id": resource_id,
            "data": json.dumps([{"date": date, "period": time_slot_id, "sub_resource_id": 0}]),
        }
        resp = self._send("POST", f"{self.portal_base_url}{LAUNCH_PATH}", data=form,
                          status_error=ReservationFailedError)
        logger.debug("Reserve response", extra={"status": resp.status_code, "body": resp.text[:500]})

    def list_current_reservations(self) -> List[ReservationRecord]:
        """Confirmed reservations, earliest first."""
        params = {"p": 1, "page_size": 10, "status": CONFIRMED_STATUS, "sort_time": "true", "sort": "asc"}
        payload = self._get_json(MY_LIST_PATH, params)
        rows = dig(payload, "d", "data")
        if not isinstance(rows, list):
            raise DecodeError("Invalid response format: 'd.data' is not a list")
        return [parse_reservation(row) for row in rows]

    def get_qr_code(self, reservation_id: int, hall_appointment_data_id: int) -> str:
        params = {"id": reservation_id, "type": RESERVATION_CODE_TYPE,
                  "hall_appointment_data_id": hall_appointment_data_id}
        return self._code(self._get_json(SIGN_QRCODE_PATH, params))

    def cancel_reservation(self, reservation_id: int, hall_appointment_data_id: int) -> None:
        form = {"appointment_id": reservation_id, "data_id": hall_appointment_data_id}
        resp = self._send("POST", f"{self.portal_base_url}{CANCEL_PATH}", data=form,
                          status_error=ReservationFailedError)
        self._check_envelope(self._decode(resp))

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    def list_ride_history(self, page: int, page_size: int) -> List[RideRecord]:
        """One page of the full reservation history (all statuses), newest first."""
        params = {"p": page, "page_size": page_size, "sort_time": "true", "sort": "desc"}
        payload = self._get_json(MY_LIST_PATH, params)
        rows = dig(payload, "d", "data")
        if not isinstance(rows, list):
            raise DecodeError("Invalid response format: 'd.data' is not a list")
        return [parse_ride(row) for row in rows]
