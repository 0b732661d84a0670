"""Error hierarchy for portal calls and the reservation cycle.

Every stage raises one of these and lets it propagate; the API layer maps the
class to an HTTP status and shows `user_message`. Nothing here is retried
automatically: a new refresh is the only retry.
"""


class ShuttleError(Exception):
    """Base exception for everything the reservation cycle can raise."""

    user_message = "Something went wrong while fetching your boarding code."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class TransportError(ShuttleError):
    """Network failure, timeout or non-2xx HTTP status from the portal."""

    user_message = "Could not reach the shuttle portal. Check your network and try again."


class DecodeError(ShuttleError):
    """Response was not JSON or lacked the expected nested keys (invalid response format)."""

    user_message = "The shuttle portal returned an unexpected response."


class PortalError(ShuttleError):
    """Portal answered with a non-zero error code in its JSON envelope."""

    user_message = "The shuttle portal rejected the request."


class InvalidCredentialsError(ShuttleError):
    """Identity endpoint reported failure, or no credentials are stored."""

    user_message = "Login failed: invalid username or password."


class NoDepartureFoundError(ShuttleError):
    """No slot qualifies within the time window for the resolved direction."""

    user_message = "No suitable shuttle departure found right now."


class NoMatchingReservationError(ShuttleError):
    """Reservation was submitted but never showed up in the current reservation list."""

    user_message = "Reservation was submitted but could not be found in your reservations."


class ReservationFailedError(ShuttleError):
    """Reserve or cancel request failed at the HTTP level."""

    user_message = "The reservation request failed."


class CycleCancelledError(ShuttleError):
    """A newer refresh cancelled this cycle before it finished."""

    user_message = "Refresh was superseded by a newer request."
