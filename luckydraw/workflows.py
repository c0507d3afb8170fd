from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from sqlalchemy.ext.asyncio import AsyncSession

import logging

from .auth import AuthContext
from .db.utils import as_utc, dt_iso, utcnow
from .errors import InvalidInput, NoRevocableTicket, NotFound, store_errors
from .models import (
    CODE_ASSIGNED,
    CODE_REDEEMED,
    RANK_ORDER,
    TICKET_UNUSED,
    DrawTicket,
    PrizeCode,
)
from .prize_draw.engine import DEFAULT_MAX_ATTEMPTS, DrawOutcome, PrizeDrawEngine
from .prize_draw.phone import mask_phone, normalize_phone

if TYPE_CHECKING:
    from .prize_draw.ranks import RandomSource, RankSelector

logger = logging.getLogger(__name__)

# A search query with at least this many digits is treated as a phone number.
MIN_PHONE_DIGITS_FOR_SEARCH = 8

REDEEM = "redeemed"
UNREDEEM = "assigned"


@dataclass(frozen=True)
class StockTally:
    """Available prize codes per rank."""

    ss: int
    s: int
    a: int
    b: int

    @property
    def total(self) -> int:
        return self.ss + self.s + self.a + self.b

    def to_json(self) -> dict:
        return {"ss": self.ss, "s": self.s, "a": self.a, "b": self.b, "total": self.total}


@dataclass(frozen=True)
class CustomerSummary:
    """Tickets and codes held by one phone number."""

    phone: str
    unused_tickets: int
    used_tickets: int
    codes: list = field(default_factory=list)

    @property
    def total_tickets(self) -> int:
        return self.unused_tickets + self.used_tickets

    def to_json(self) -> dict:
        return {
            "phone": self.phone,
            "tickets": {
                "unused": self.unused_tickets,
                "used": self.used_tickets,
                "total": self.total_tickets,
            },
            "codes": [
                {
                    "code": code.code,
                    "last4": code.short_code,
                    "benefit_text": code.benefit_text,
                    "status": code.status,
                    "assigned_at": dt_iso(code.assigned_at),
                }
                for code in self.codes
            ],
        }


def _require_phone(phone: Optional[str]) -> str:
    try:
        normalized = normalize_phone(phone)
    except TypeError as exc:
        raise InvalidInput("phone must be a string") from exc
    if not normalized:
        raise InvalidInput("phone required")
    return normalized


async def run_draw(
    session: AsyncSession,
    phone: Optional[str],
    *,
    selector: Optional["RankSelector"] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    random_source: Optional["RandomSource"] = None,
) -> DrawOutcome:
    """Run one draw for ``phone``.

    This function wraps :class:`PrizeDrawEngine`; see
    :meth:`PrizeDrawEngine.draw` for the guards and failure modes.
    """

    engine = PrizeDrawEngine(
        session,
        selector=selector,
        max_attempts=max_attempts,
        random_source=random_source,
    )
    return await engine.draw(phone)


async def grant_ticket(
    session: AsyncSession,
    auth: AuthContext,
    phone: Optional[str],
    *,
    expires_at: datetime,
) -> DrawTicket:
    """Grant ``phone`` one new draw ticket expiring at ``expires_at``.

    Each call creates a new ticket; granting twice gives two draws.

    Parameters
    ----------
    session : AsyncSession
        Active session; the ticket is committed before returning.
    auth : AuthContext
        Caller authorisation; must be admin.
    phone : Optional[str]
        Phone number as entered; normalized to digits.
    expires_at : datetime
        Program-wide expiry instant stamped on the ticket.

    Returns
    -------
    DrawTicket
        The persisted ticket.
    """

    auth.require_admin()
    normalized = _require_phone(phone)

    ticket = DrawTicket(
        phone=normalized,
        status=TICKET_UNUSED,
        expires_at=as_utc(expires_at),
    )
    with store_errors():
        session.add(ticket)
        await session.commit()
    logger.info(f"Granted ticket {ticket.id} to {mask_phone(normalized)}")
    return ticket


async def revoke_ticket(
    session: AsyncSession, auth: AuthContext, phone: Optional[str]
) -> int:
    """Delete the most recently granted usable ticket of ``phone``.

    Only one ticket is removed per call. Returns the removed ticket's id.

    Raises
    ------
    NoRevocableTicket
        If the phone holds no unused, unexpired ticket, or the candidate
        was consumed by a draw before it could be deleted.
    """

    auth.require_admin()
    normalized = _require_phone(phone)

    with store_errors():
        ticket = await DrawTicket.newest_available(session, normalized)
        if ticket is None:
            raise NoRevocableTicket()
        ticket_id = ticket.id
        deleted = await DrawTicket.delete_if_unused(session, ticket_id)
        await session.commit()

    if not deleted:
        raise NoRevocableTicket("draw ticket was used before it could be revoked")
    session.expunge(ticket)
    logger.info(f"Revoked ticket {ticket_id} of {mask_phone(normalized)}")
    return ticket_id


async def set_code_status(
    session: AsyncSession,
    auth: AuthContext,
    code: Optional[str],
    target: str,
) -> PrizeCode:
    """Redeem (``target="redeemed"``) or unredeem (``target="assigned"``) a code.

    ``code`` is either the full code or its trailing characters (the
    4-character short code shown to customers). Only codes currently in the
    source state are considered: assigned codes for redeem, redeemed codes
    for unredeem. An exact match wins over suffix matches; among suffix
    matches the earliest created code is used.

    Raises
    ------
    InvalidInput
        If ``code`` is empty or ``target`` is not a supported state.
    NotFound
        If no code in the source state matches, or it changed state
        concurrently.
    """

    auth.require_admin()
    if target == REDEEM:
        from_status = CODE_ASSIGNED
    elif target == UNREDEEM:
        from_status = CODE_REDEEMED
    else:
        raise InvalidInput(f"unsupported code status '{target}'")

    needle = (code or "").strip().upper()
    if not needle:
        raise InvalidInput("code required")

    with store_errors():
        prize_code = await PrizeCode.find_by_code_or_suffix(
            session, needle, statuses=(from_status,)
        )
        if prize_code is None:
            raise NotFound(f"no {from_status} prize code matches '{needle}'")
        changed = await PrizeCode.transition(
            session,
            prize_code.id,
            from_status=from_status,
            to_status=target,
            redeemed_at=utcnow() if target == REDEEM else None,
        )
        await session.commit()
        if not changed:
            raise NotFound(f"prize code '{prize_code.code}' is no longer {from_status}")
        await session.refresh(prize_code)

    logger.info(f"Prize code {prize_code.code}: {from_status} -> {target}")
    return prize_code


async def redeem_code(
    session: AsyncSession, auth: AuthContext, code: Optional[str]
) -> PrizeCode:
    """Mark an assigned code as redeemed in store."""
    return await set_code_status(session, auth, code, REDEEM)


async def unredeem_code(
    session: AsyncSession, auth: AuthContext, code: Optional[str]
) -> PrizeCode:
    """Revert a redeemed code back to assigned (admin correction)."""
    return await set_code_status(session, auth, code, UNREDEEM)


async def stock_tally(session: AsyncSession, auth: AuthContext) -> StockTally:
    """Count codes still available per rank, straight from the store."""

    auth.require_admin()
    with store_errors():
        counts = await PrizeCode.available_counts(session)
    return StockTally(**{rank.value: counts[rank] for rank in RANK_ORDER})


async def ticket_count(
    session: AsyncSession, auth: AuthContext, phone: Optional[str]
) -> int:
    """Count the unused, unexpired tickets of ``phone``."""

    auth.require_admin()
    normalized = _require_phone(phone)
    with store_errors():
        return await DrawTicket.count_available(session, normalized)


async def lookup_codes(
    session: AsyncSession, auth: AuthContext, phone: Optional[str]
) -> list[PrizeCode]:
    """Return the not-yet-redeemed codes held by ``phone``, newest first."""

    auth.require_admin()
    normalized = _require_phone(phone)
    with store_errors():
        return await PrizeCode.for_phone(session, normalized, statuses=(CODE_ASSIGNED,))


async def search_customer(
    session: AsyncSession, auth: AuthContext, query: Optional[str]
) -> CustomerSummary:
    """Summarise a customer found by phone number or by a code's short code.

    A query with at least eight digits is read as a phone number. Anything
    else is matched against the last four characters of held codes to find
    the holder.

    Raises
    ------
    InvalidInput
        If ``query`` is empty.
    NotFound
        If a short-code query matches no held code.
    """

    auth.require_admin()
    text = (query or "").strip()
    if not text:
        raise InvalidInput("query required")

    with store_errors():
        phone = normalize_phone(text)
        if len(phone) < MIN_PHONE_DIGITS_FOR_SEARCH:
            holder = await PrizeCode.find_by_code_or_suffix(
                session, text[-4:], statuses=(CODE_ASSIGNED, CODE_REDEEMED)
            )
            if holder is None or not holder.assigned_phone:
                raise NotFound("no customer matches the query")
            phone = holder.assigned_phone

        counts = await DrawTicket.count_by_status(session, phone)
        codes = await PrizeCode.for_phone(session, phone)

    return CustomerSummary(
        phone=phone,
        unused_tickets=counts["unused"],
        used_tickets=counts["used"],
        codes=codes,
    )


async def find_unreconciled_assignments(
    session: AsyncSession,
    auth: AuthContext,
    *,
    window: timedelta = timedelta(minutes=5),
    since: Optional[datetime] = None,
) -> list[PrizeCode]:
    """List handed-out codes with no matching consumed ticket.

    A draw assigns its code first and consumes its ticket second; if the
    second step loses a race the code stays assigned without a ticket.
    A draw stamps its code's ``assigned_at`` and its ticket's ``used_at``
    with the same instant, so codes are first paired with a used ticket of
    the same phone carrying exactly that timestamp. Remaining codes take the
    nearest unpaired ticket whose ``used_at`` falls within ``window`` after
    ``assigned_at``. Tickets are paired at most once. Codes left without a
    partner are returned for manual audit. Nothing is modified.
    """

    auth.require_admin()
    with store_errors():
        codes = await PrizeCode.assigned_since(session, as_utc(since))
        tickets_by_phone: dict[str, list[DrawTicket]] = {}
        for phone in {code.assigned_phone for code in codes}:
            tickets_by_phone[phone] = await DrawTicket.used_for_phone(session, phone)

    paired: set[int] = set()
    pending: list[PrizeCode] = []
    for code in codes:
        assigned_at = as_utc(code.assigned_at)
        tickets = tickets_by_phone.get(code.assigned_phone, [])
        exact = next(
            (t for t in tickets if assigned_at is not None and as_utc(t.used_at) == assigned_at),
            None,
        )
        if exact is None:
            pending.append(code)
        else:
            tickets.remove(exact)
            paired.add(code.id)

    for code in pending:
        assigned_at = as_utc(code.assigned_at)
        if assigned_at is None:
            continue
        tickets = tickets_by_phone.get(code.assigned_phone, [])
        in_window = [
            t
            for t in tickets
            if t.used_at is not None
            and assigned_at <= as_utc(t.used_at) <= assigned_at + window
        ]
        if in_window:
            partner = min(in_window, key=lambda t: as_utc(t.used_at) - assigned_at)
            tickets.remove(partner)
            paired.add(code.id)

    unmatched = [code for code in codes if code.id not in paired]

    if unmatched:
        logger.warning(
            f"{len(unmatched)} assigned prize code(s) have no consumed ticket"
        )
    return unmatched


__all__ = [
    "CustomerSummary",
    "StockTally",
    "find_unreconciled_assignments",
    "grant_ticket",
    "lookup_codes",
    "redeem_code",
    "revoke_ticket",
    "run_draw",
    "search_customer",
    "set_code_status",
    "stock_tally",
    "ticket_count",
    "unredeem_code",
]
