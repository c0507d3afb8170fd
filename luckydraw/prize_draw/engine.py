"""Draw transaction: consume one ticket and assign one weighted, in-stock prize code."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ..db.utils import utcnow
from ..errors import (
    InvalidInput,
    NoStockAvailable,
    NoTicketAvailable,
    TicketRaceLost,
    store_errors,
)
from ..models import DrawTicket, PrizeCode, Rank
from .phone import mask_phone, normalize_phone
from .ranks import DEFAULT_RANK_SELECTOR, RandomSource, RankSelector, fallback_chain

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class DrawOutcome:
    """Value object describing a completed draw.

    Attributes
    ----------
    code : str
        Full prize code now assigned to ``phone``.
    benefit_text : str
        Display text of the prize.
    rank : Rank
        Rank of the assigned code.
    requested_rank : Rank
        Rank produced by the selector before any stock fallback.
    phone : str
        Normalized phone number the code was assigned to.
    ticket_id : int
        Ticket consumed by the draw.
    attempts : int
        Number of allocation attempts, ``1`` unless a concurrent draw won a
        picked code first.
    """

    code: str
    benefit_text: str
    rank: Rank
    requested_rank: Rank
    phone: str
    ticket_id: int
    attempts: int = 1

    def to_json(self) -> dict:
        return {"code": self.code, "benefit_text": self.benefit_text}


@dataclass(frozen=True)
class _Candidate:
    id: int
    code: str
    benefit_text: str
    rank: Rank


class PrizeDrawEngine:
    """Engine that runs the draw transaction against the ticket and code stores."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        selector: Optional[RankSelector] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        random_source: Optional[RandomSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Create a draw engine bound to an async SQLAlchemy session.

        Parameters
        ----------
        session : AsyncSession
            Session used for every store call. The engine commits after each
            conditional update, so the session must not carry unrelated
            pending changes.
        selector : Optional[RankSelector], default: None
            Rank selector; the default uses the standard rank weights.
        max_attempts : int, default: 3
            Upper bound on allocation attempts when a picked code is claimed
            by a concurrent draw first.
        random_source : Optional[RandomSource], default: None
            Uniform ``[0, 1)`` source handed to the selector. Tests inject a
            constant to force a rank.
        clock : Optional[Callable[[], datetime]], default: None
            Returns "now" as an aware UTC datetime.
        """

        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session = session
        self._selector = selector or DEFAULT_RANK_SELECTOR
        self._max_attempts = max_attempts
        self._random_source = random_source
        self._clock = clock or utcnow

    async def draw(self, phone: Optional[str]) -> DrawOutcome:
        """Consume one ticket of ``phone`` and assign it one prize code.

        Parameters
        ----------
        phone : Optional[str]
            Phone number as entered; it is normalized to digits first.

        Returns
        -------
        DrawOutcome
            The assigned code and its benefit text.

        Notes
        -----
        Every precondition is checked before anything is written:

        1. The phone must contain at least one digit.
        2. The phone must hold an unused, unexpired ticket; the oldest one
           is used.
        3. A rank is drawn and its fallback chain must contain an available
           code; the first rank with stock wins and one of its codes is
           picked at random.

        The writes then happen in a fixed order, each committed on its own:
        the code is claimed first (conditional on still being unassigned;
        a lost claim re-runs step 3), and only then the ticket is marked
        used (conditional on still being unused). A code that has been
        claimed is never released again, even when the ticket update loses.

        Raises
        ------
        InvalidInput
            If ``phone`` has no digits.
        NoTicketAvailable
            If the phone has no usable ticket.
        NoStockAvailable
            If no code is left in the fallback chain, or every attempt lost
            its code to a concurrent draw.
        TicketRaceLost
            If the ticket was consumed concurrently after this draw had
            already claimed a code. The code stays assigned.
        StoreFailure
            If the database raises.
        """

        try:
            normalized = normalize_phone(phone)
        except TypeError as exc:
            raise InvalidInput("phone must be a string") from exc
        if not normalized:
            raise InvalidInput("phone required")

        now = self._clock()
        masked = mask_phone(normalized)

        with store_errors():
            ticket = await DrawTicket.oldest_available(
                self._session, normalized, now=now
            )
            if ticket is None:
                raise NoTicketAvailable()
            ticket_id = ticket.id

            requested_rank = self._selector.select(self._random_source)
            chain = fallback_chain(requested_rank)

            claimed: Optional[_Candidate] = None
            attempt = 0
            while attempt < self._max_attempts:
                attempt += 1
                candidate = await self._pick_candidate(chain)
                if candidate is None:
                    raise NoStockAvailable()

                won = await PrizeCode.claim(
                    self._session, candidate.id, normalized, assigned_at=now
                )
                await self._session.commit()
                if won:
                    claimed = candidate
                    break
                logger.warning(
                    f"Prize code {candidate.code} was taken by a concurrent draw "
                    f"(attempt {attempt}/{self._max_attempts}, phone {masked})"
                )

            if claimed is None:
                raise NoStockAvailable(
                    "prize codes kept being taken by concurrent draws, please retry"
                )

            consumed = await DrawTicket.mark_used(
                self._session, ticket_id, used_at=now
            )
            await self._session.commit()

        if not consumed:
            logger.warning(
                f"Ticket {ticket_id} of {masked} was consumed concurrently after "
                f"code {claimed.code} had been assigned; left for reconciliation"
            )
            raise TicketRaceLost(code=claimed.code, ticket_id=ticket_id)

        if claimed.rank != requested_rank:
            logger.info(
                f"Rank {requested_rank.value} out of stock for {masked}; "
                f"fell back to {claimed.rank.value}"
            )
        logger.info(
            f"Draw for {masked}: ticket {ticket_id} -> code {claimed.code} "
            f"(rank {claimed.rank.value})"
        )
        return DrawOutcome(
            code=claimed.code,
            benefit_text=claimed.benefit_text,
            rank=claimed.rank,
            requested_rank=requested_rank,
            phone=normalized,
            ticket_id=ticket_id,
            attempts=attempt,
        )

    async def _pick_candidate(self, chain: Sequence[Rank]) -> Optional[_Candidate]:
        """Return a random available code from the first rank in ``chain`` with stock."""

        for rank in chain:
            code = await PrizeCode.pick_available(self._session, rank)
            if code is not None:
                return _Candidate(
                    id=code.id,
                    code=code.code,
                    benefit_text=code.benefit_text,
                    rank=Rank.parse(code.rank),
                )
        return None


__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "DrawOutcome",
    "PrizeDrawEngine",
]
