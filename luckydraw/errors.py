"""Error taxonomy shared by the draw engine, admin workflows and the HTTP API."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError


class LuckyDrawError(Exception):
    """Base class for every failure surfaced to callers.

    Attributes
    ----------
    status_code : int
        HTTP status used when the error is rendered by the API layer.
    message : str
        Human-readable description returned to the client.
    """

    status_code: int = 500
    default_message: str = "server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(LuckyDrawError):
    """A required field is missing or malformed."""

    status_code = 400
    default_message = "invalid input"


class AuthFailure(LuckyDrawError):
    """The shared admin secret did not match."""

    status_code = 401
    default_message = "secret mismatch"


class NoTicketAvailable(LuckyDrawError):
    """The phone has no unused, unexpired draw ticket."""

    status_code = 400
    default_message = "no draw ticket available"


class NoStockAvailable(LuckyDrawError):
    """No prize code is left in any rank of the fallback chain."""

    status_code = 400
    default_message = "no prize code in stock"


class TicketRaceLost(LuckyDrawError):
    """The ticket was consumed concurrently after a code had been assigned.

    The assigned code is kept (never taken back); the full ``code`` value is carried so
    operators can reconcile the pair manually.
    """

    status_code = 409
    default_message = "draw ticket was consumed by a concurrent draw"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        ticket_id: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.ticket_id = ticket_id


class NotFound(LuckyDrawError):
    """An admin lookup or status change target does not exist."""

    status_code = 404
    default_message = "not found"


class NoRevocableTicket(NotFound):
    """No unused, unexpired ticket is left to revoke for the phone."""

    default_message = "no revocable draw ticket"


class StoreFailure(LuckyDrawError):
    """The persistence layer raised; the message is passed through verbatim."""

    status_code = 500
    default_message = "store failure"


@contextmanager
def store_errors() -> Iterator[None]:
    """Re-raise SQLAlchemy errors raised inside the block as :class:`StoreFailure`."""
    try:
        yield
    except SQLAlchemyError as exc:
        raise StoreFailure(str(exc)) from exc


__all__ = [
    "AuthFailure",
    "InvalidInput",
    "LuckyDrawError",
    "NoRevocableTicket",
    "NoStockAvailable",
    "NoTicketAvailable",
    "NotFound",
    "StoreFailure",
    "TicketRaceLost",
    "store_errors",
]
