"""Prize ranks shared by the inventory model and the draw engine."""

from __future__ import annotations

import enum
from typing import Union


class Rank(str, enum.Enum):
    """Prize tier, declared from most to least valuable."""

    SS = "ss"
    S = "s"
    A = "a"
    B = "b"

    @property
    def label(self) -> str:
        """Benefit text prefix conventionally used for the rank (e.g. ``"SS賞"``)."""
        return RANK_LABELS[self]

    @classmethod
    def parse(cls, value: Union[str, "Rank"]) -> "Rank":
        """Return the rank for ``value`` (case-insensitive)."""
        if isinstance(value, Rank):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown prize rank '{value}'") from exc


RANK_ORDER: tuple[Rank, ...] = (Rank.SS, Rank.S, Rank.A, Rank.B)

RANK_LABELS: dict[Rank, str] = {
    Rank.SS: "SS賞",
    Rank.S: "S賞",
    Rank.A: "A賞",
    Rank.B: "B賞",
}


def rank_from_benefit_text(benefit_text: str) -> Rank:
    """Derive the rank from a benefit text such as ``"SS賞 ドリンク無料"``.

    Longer labels are tested first so ``"SS賞"`` is not mistaken for ``"S賞"``.

    Raises
    ------
    ValueError
        If the text does not start with a known rank label.
    """
    text = benefit_text.strip().upper()
    for rank in sorted(RANK_ORDER, key=lambda r: len(r.label), reverse=True):
        if text.startswith(rank.label.upper()):
            return rank
    raise ValueError(f"Cannot derive a prize rank from benefit text '{benefit_text}'")


__all__ = ["RANK_LABELS", "RANK_ORDER", "Rank", "rank_from_benefit_text"]
