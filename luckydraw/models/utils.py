"""Utility helpers for the models package."""

from __future__ import annotations

import secrets
import string
from typing import Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .prize_code import SHORT_CODE_LENGTH, PrizeCode, short_code_of
from .rank import Rank, rank_from_benefit_text

# Upper-case letters and digits minus look-alikes (0/O, 1/I/L) so short codes
# can be read back over the counter without confusion.
CODE_ALPHABET = "".join(
    ch for ch in string.digits + string.ascii_uppercase if ch not in "01OIL"
)


def generate_prize_code(
    prefix: str,
    taken_short_codes: set[str],
    length: int = 10,
    max_attempts: int = 64,
) -> str:
    """Return a random prize code whose short code is not in ``taken_short_codes``.

    The chosen short code is added to ``taken_short_codes`` so a caller can
    generate a whole batch against one set.
    """

    if length < SHORT_CODE_LENGTH:
        raise ValueError(f"length must be at least {SHORT_CODE_LENGTH}")

    attempts = 0
    while attempts < max_attempts:
        body = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
        candidate = f"{prefix}-{body}" if prefix else body
        short = short_code_of(candidate)
        if short in taken_short_codes:
            attempts += 1
            continue
        taken_short_codes.add(short)
        return candidate

    raise RuntimeError(
        "Unable to generate a prize code with an unused short code after multiple attempts"
    )


async def load_taken_short_codes(session: AsyncSession) -> set[str]:
    """Collect the short codes of every prize code already in the store."""

    codes = await session.scalars(select(PrizeCode.code))
    return {short_code_of(code) for code in codes}


def find_short_code_collisions(codes: Iterable[str]) -> dict[str, list[str]]:
    """Group ``codes`` sharing a short code; only groups with 2+ members are returned."""

    groups: dict[str, list[str]] = {}
    for code in codes:
        groups.setdefault(short_code_of(code.strip().upper()), []).append(code)
    return {short: members for short, members in groups.items() if len(members) > 1}


async def generate_inventory(
    session: AsyncSession,
    *,
    rank_counts: dict,
    benefit_texts: dict,
    prefix: str = "",
    length: int = 10,
    taken_short_codes: Optional[set[str]] = None,
) -> list[PrizeCode]:
    """Create unassigned prize codes for each rank with globally unique short codes.

    Parameters
    ----------
    session : AsyncSession
        Session the new rows are added to; the caller commits.
    rank_counts : dict
        Number of codes to create per :class:`~luckydraw.models.rank.Rank`.
    benefit_texts : dict
        Benefit text per rank, conventionally prefixed with the rank label.
    prefix : str, default: ""
        Optional prefix prepended to each code.
    length : int, default: 10
        Number of random characters per code.
    taken_short_codes : Optional[set[str]], default: None
        Short codes to avoid. Loaded from the store when omitted.
    """

    if taken_short_codes is None:
        taken_short_codes = await load_taken_short_codes(session)

    created: list[PrizeCode] = []
    for rank, count in rank_counts.items():
        for _ in range(int(count)):
            code = PrizeCode(
                code=generate_prize_code(prefix, taken_short_codes, length=length),
                benefit_text=benefit_texts[rank],
                rank=rank,
            )
            session.add(code)
            created.append(code)
    await session.flush()
    return created


def plan_inventory(
    benefit_counts: Mapping[str, int],
) -> tuple[dict[Rank, int], dict[Rank, str]]:
    """Split ``{benefit_text: count}`` into per-rank counts and benefit texts.

    The rank of each entry comes from its benefit text label (``"SS賞 ..."``).

    Raises
    ------
    ValueError
        If a text carries no rank label, or two texts map to the same rank.
    """

    rank_counts: dict[Rank, int] = {}
    benefit_texts: dict[Rank, str] = {}
    for text, count in benefit_counts.items():
        rank = rank_from_benefit_text(text)
        if rank in benefit_texts:
            raise ValueError(
                f"Benefit texts '{benefit_texts[rank]}' and '{text}' share rank '{rank.value}'"
            )
        rank_counts[rank] = int(count)
        benefit_texts[rank] = text
    return rank_counts, benefit_texts
