"""Draw tickets: one right to perform one draw, bound to a phone number."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from ..db.utils import dt_iso, utcnow
from .base import Base
from .id_type import ID_TYPE

TICKET_UNUSED = "unused"
TICKET_USED = "used"
TICKET_STATUSES = (TICKET_UNUSED, TICKET_USED)


class DrawTicket(Base):
    """A single draw right for ``phone`` that lapses at ``expires_at``."""

    __tablename__ = "draw_tickets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    """Canonical digits-only phone number of the holder."""

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TICKET_UNUSED
    )
    """Either ``"unused"`` or ``"used"``."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    """Grant time; the draw consumes tickets oldest first."""

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    """Instant after which the ticket can no longer be drawn or revoked."""

    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """When a draw consumed the ticket."""

    __table_args__ = (
        Index("ix_draw_tickets_phone_status", "phone", "status"),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            "<DrawTicket("
            f"id={self.id}, phone='{self.phone}', status='{self.status}', "
            f"expires_at={dt_iso(self.expires_at)}"
            ")>"
        )

    @classmethod
    def _available_clause(cls, phone: str, now: datetime):
        return (
            cls.phone == phone,
            cls.status == TICKET_UNUSED,
            cls.expires_at >= now,
        )

    @classmethod
    async def oldest_available(
        cls, session: AsyncSession, phone: str, *, now: Optional[datetime] = None
    ) -> Optional["DrawTicket"]:
        """Return the earliest-granted unused, unexpired ticket for ``phone``."""

        stmt = (
            select(cls)
            .where(*cls._available_clause(phone, now or utcnow()))
            .order_by(cls.created_at.asc(), cls.id.asc())
            .limit(1)
        )
        return await session.scalar(stmt)

    @classmethod
    async def newest_available(
        cls, session: AsyncSession, phone: str, *, now: Optional[datetime] = None
    ) -> Optional["DrawTicket"]:
        """Return the most recently granted unused, unexpired ticket for ``phone``."""

        stmt = (
            select(cls)
            .where(*cls._available_clause(phone, now or utcnow()))
            .order_by(cls.created_at.desc(), cls.id.desc())
            .limit(1)
        )
        return await session.scalar(stmt)

    @classmethod
    async def count_available(
        cls, session: AsyncSession, phone: str, *, now: Optional[datetime] = None
    ) -> int:
        """Count unused, unexpired tickets held by ``phone``."""

        stmt = select(func.count(cls.id)).where(
            *cls._available_clause(phone, now or utcnow())
        )
        return int(await session.scalar(stmt) or 0)

    @classmethod
    async def count_by_status(cls, session: AsyncSession, phone: str) -> dict[str, int]:
        """Return ``{"unused": n, "used": m}`` for ``phone`` regardless of expiry."""

        stmt = (
            select(cls.status, func.count(cls.id))
            .where(cls.phone == phone)
            .group_by(cls.status)
        )
        counts = {status: 0 for status in TICKET_STATUSES}
        for status, count in (await session.execute(stmt)).all():
            counts[status] = int(count)
        return counts

    @classmethod
    async def mark_used(
        cls, session: AsyncSession, ticket_id: int, *, used_at: Optional[datetime] = None
    ) -> bool:
        """Flip ticket ``ticket_id`` from unused to used.

        The update only applies while the row is still ``"unused"``; the
        return value reports whether this call performed the transition.
        """

        stmt = (
            update(cls)
            .where(cls.id == ticket_id, cls.status == TICKET_UNUSED)
            .values(status=TICKET_USED, used_at=used_at or utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @classmethod
    async def delete_if_unused(cls, session: AsyncSession, ticket_id: int) -> bool:
        """Delete ticket ``ticket_id`` only while it is still unused."""

        stmt = (
            delete(cls)
            .where(cls.id == ticket_id, cls.status == TICKET_UNUSED)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @classmethod
    async def used_for_phone(
        cls, session: AsyncSession, phone: str
    ) -> list["DrawTicket"]:
        """Return consumed tickets for ``phone`` in consumption order."""

        stmt = (
            select(cls)
            .where(cls.phone == phone, cls.status == TICKET_USED)
            .order_by(cls.used_at.asc(), cls.id.asc())
        )
        return list(await session.scalars(stmt))
