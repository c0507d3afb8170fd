"""Prize code inventory."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import DateTime, Index, String, Text, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, validates

from ..db.utils import dt_iso, utcnow
from .rank import RANK_ORDER, Rank
from .base import Base
from .id_type import ID_TYPE

CODE_UNASSIGNED = "unassigned"
CODE_UNUSED = "unused"
"""Legacy spelling of ``unassigned`` found in older inventory imports."""
CODE_ASSIGNED = "assigned"
CODE_REDEEMED = "redeemed"

AVAILABLE_CODE_STATUSES = (CODE_UNASSIGNED, CODE_UNUSED)

SHORT_CODE_LENGTH = 4


def short_code_of(code: str) -> str:
    """Return the user-facing short code: the last four characters, upper-cased."""
    return code[-SHORT_CODE_LENGTH:].upper()


class PrizeCode(Base):
    """A single redeemable prize code of a given rank."""

    __tablename__ = "prize_codes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    benefit_text: Mapped[str] = mapped_column(Text, nullable=False)
    rank: Mapped[str] = mapped_column(String(4), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CODE_UNASSIGNED
    )
    assigned_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    redeemed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_prize_codes_rank_status", "rank", "status"),
        Index("ix_prize_codes_assigned_phone", "assigned_phone"),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            "<PrizeCode("
            f"id={self.id}, code='{self.code}', rank='{self.rank}', "
            f"status='{self.status}', assigned_phone={self.assigned_phone!r}"
            ")>"
        )

    @validates("code")
    def _normalize_code(self, _key: str, value: str) -> str:
        normalized = (value or "").strip().upper()
        if len(normalized) < SHORT_CODE_LENGTH:
            raise ValueError(
                f"prize code must be at least {SHORT_CODE_LENGTH} characters long"
            )
        return normalized

    @validates("rank")
    def _normalize_rank(self, _key: str, value: str) -> str:
        return Rank.parse(value).value

    @property
    def short_code(self) -> str:
        return short_code_of(self.code)

    def to_json(self) -> dict:
        """Boundary representation of the code."""
        return {
            "code": self.code,
            "short_code": self.short_code,
            "benefit_text": self.benefit_text,
            "rank": self.rank,
            "status": self.status,
            "assigned_phone": self.assigned_phone,
            "assigned_at": dt_iso(self.assigned_at),
            "redeemed_at": dt_iso(self.redeemed_at),
        }

    @classmethod
    async def get_by_code(cls, session: AsyncSession, code: str) -> Optional["PrizeCode"]:
        """Retrieve a prize code by its full, unique value."""

        return await session.scalar(select(cls).where(cls.code == code.strip().upper()))

    @classmethod
    async def pick_available(
        cls, session: AsyncSession, rank: Rank
    ) -> Optional["PrizeCode"]:
        """Return one available code of ``rank`` chosen uniformly at random."""

        stmt = (
            select(cls)
            .where(cls.rank == rank.value, cls.status.in_(AVAILABLE_CODE_STATUSES))
            .order_by(func.random())
            .limit(1)
        )
        return await session.scalar(stmt)

    @classmethod
    async def claim(
        cls,
        session: AsyncSession,
        code_id: int,
        phone: str,
        *,
        assigned_at: Optional[datetime] = None,
    ) -> bool:
        """Assign code ``code_id`` to ``phone`` if it is still unassigned.

        Returns ``True`` when this call won the code and ``False`` when a
        concurrent draw already took it.
        """

        stmt = (
            update(cls)
            .where(cls.id == code_id, cls.status.in_(AVAILABLE_CODE_STATUSES))
            .values(
                status=CODE_ASSIGNED,
                assigned_phone=phone,
                assigned_at=assigned_at or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @classmethod
    async def transition(
        cls,
        session: AsyncSession,
        code_id: int,
        *,
        from_status: str,
        to_status: str,
        redeemed_at: Optional[datetime],
    ) -> bool:
        """Move an assigned/redeemed code between states, guarded on ``from_status``."""

        stmt = (
            update(cls)
            .where(cls.id == code_id, cls.status == from_status)
            .values(status=to_status, redeemed_at=redeemed_at)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @classmethod
    async def find_by_code_or_suffix(
        cls,
        session: AsyncSession,
        value: str,
        *,
        statuses: Sequence[str],
    ) -> Optional["PrizeCode"]:
        """Find a code in ``statuses`` by full value, else by trailing characters.

        An exact match wins; among suffix matches the lowest ``id`` is
        returned so the choice does not depend on the store's default order.
        Suffix matching needs at least a full short code.
        """

        needle = value.strip().upper()
        if not needle:
            return None
        match = cls.code == needle
        if len(needle) >= SHORT_CODE_LENGTH:
            match = or_(match, cls.code.endswith(needle, autoescape=True))
        stmt = (
            select(cls)
            .where(cls.status.in_(statuses), match)
            .order_by((cls.code == needle).desc(), cls.id.asc())
            .limit(1)
        )
        return await session.scalar(stmt)

    @classmethod
    async def for_phone(
        cls,
        session: AsyncSession,
        phone: str,
        *,
        statuses: Optional[Iterable[str]] = None,
    ) -> list["PrizeCode"]:
        """Codes held by ``phone``, most recently assigned first."""

        stmt = select(cls).where(cls.assigned_phone == phone)
        if statuses is not None:
            stmt = stmt.where(cls.status.in_(list(statuses)))
        stmt = stmt.order_by(cls.assigned_at.desc(), cls.id.desc())
        return list(await session.scalars(stmt))

    @classmethod
    async def available_counts(cls, session: AsyncSession) -> dict[Rank, int]:
        """Count available codes per rank with a single grouped query."""

        stmt = (
            select(cls.rank, func.count(cls.id))
            .where(cls.status.in_(AVAILABLE_CODE_STATUSES))
            .group_by(cls.rank)
        )
        counts = {rank: 0 for rank in RANK_ORDER}
        for rank_value, count in (await session.execute(stmt)).all():
            counts[Rank.parse(rank_value)] = int(count)
        return counts

    @classmethod
    async def assigned_since(
        cls, session: AsyncSession, since: Optional[datetime] = None
    ) -> list["PrizeCode"]:
        """Codes that have been handed out (assigned or redeemed), oldest first."""

        stmt = select(cls).where(
            cls.status.in_((CODE_ASSIGNED, CODE_REDEEMED)),
            cls.assigned_phone.is_not(None),
        )
        if since is not None:
            stmt = stmt.where(cls.assigned_at >= since)
        stmt = stmt.order_by(cls.assigned_at.asc(), cls.id.asc())
        return list(await session.scalars(stmt))
