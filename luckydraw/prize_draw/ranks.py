"""Draw weights for each prize rank and the weighted rank selector."""

from __future__ import annotations

import random
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Mapping, Optional, Union

from ..models.rank import RANK_ORDER, Rank


def fallback_chain(rank: Union[str, Rank]) -> tuple[Rank, ...]:
    """Ranks to try, in order, once ``rank`` has been drawn.

    Allocation starts at the drawn rank and only ever falls through to less
    valuable ranks: ``ss -> (ss, s, a, b)``, ``b -> (b,)``.
    """
    start = RANK_ORDER.index(Rank.parse(rank))
    return RANK_ORDER[start:]


@dataclass(frozen=True)
class RankWeights:
    """Probability of each rank, held as exact decimals.

    Attributes
    ----------
    ss, s, a, b : Decimal
        Probability mass of each rank. Together they must sum to exactly 1.
    """

    ss: Decimal = Decimal("0.001")
    s: Decimal = Decimal("0.015")
    a: Decimal = Decimal("0.120")
    b: Decimal = Decimal("0.864")

    def __post_init__(self) -> None:
        for rank in RANK_ORDER:
            value = getattr(self, rank.value)
            if not isinstance(value, Decimal):
                object.__setattr__(self, rank.value, _to_decimal(value, rank))
        for rank in RANK_ORDER:
            if getattr(self, rank.value) < 0:
                raise ValueError(f"Weight for rank '{rank.value}' must not be negative")
        total = sum((getattr(self, rank.value) for rank in RANK_ORDER), Decimal(0))
        if total != Decimal(1):
            raise ValueError(f"Rank weights must sum to exactly 1, got {total}")

    def weight(self, rank: Union[str, Rank]) -> Decimal:
        return getattr(self, Rank.parse(rank).value)

    def cumulative_bounds(self) -> tuple[tuple[Rank, float], ...]:
        """Upper (exclusive) boundary of each rank on the unit interval.

        With the default weights this is
        ``((ss, 0.001), (s, 0.016), (a, 0.136), (b, 1.0))``.
        """
        bounds = []
        running = Decimal(0)
        for rank in RANK_ORDER:
            running += getattr(self, rank.value)
            bounds.append((rank, float(running)))
        return tuple(bounds)

    def as_dict(self) -> dict[str, Decimal]:
        return {rank.value: getattr(self, rank.value) for rank in RANK_ORDER}

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> "RankWeights":
        """Build weights from a ``{rank: weight}`` mapping naming every rank."""
        normalized = {Rank.parse(key): value for key, value in values.items()}
        missing = [rank.value for rank in RANK_ORDER if rank not in normalized]
        if missing:
            raise ValueError(f"Missing weight for rank(s): {', '.join(missing)}")
        return cls(**{rank.value: _to_decimal(normalized[rank], rank) for rank in RANK_ORDER})

    @classmethod
    def parse(cls, text: str) -> "RankWeights":
        """Parse ``"ss=0.001,s=0.015,a=0.12,b=0.864"``."""
        pairs: dict[str, str] = {}
        for chunk in text.split(","):
            chunk = chunk.strip()
            if not chunk:
                continue
            key, sep, value = chunk.partition("=")
            if not sep:
                raise ValueError(f"Malformed rank weight entry '{chunk}'")
            pairs[key.strip()] = value.strip()
        return cls.from_mapping(pairs)


def _to_decimal(value: object, rank: Rank) -> Decimal:
    if isinstance(value, float):
        # Go through repr so 0.1 becomes Decimal("0.1"), not its binary expansion.
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Weight for rank '{rank.value}' is not a number: {value!r}") from exc


DEFAULT_RANK_WEIGHTS = RankWeights()

RandomSource = Callable[[], float]


class RankSelector:
    """Map a uniform draw on ``[0, 1)`` to a rank using fixed weights.

    The selector keeps no state between calls; pass ``random_source`` to make
    a selection deterministic in tests.
    """

    def __init__(self, weights: Optional[RankWeights] = None) -> None:
        self._weights = weights or DEFAULT_RANK_WEIGHTS
        self._bounds = self._weights.cumulative_bounds()

    @property
    def weights(self) -> RankWeights:
        return self._weights

    def select(self, random_source: Optional[RandomSource] = None) -> Rank:
        """Return the rank whose cumulative interval contains the next random value.

        Raises
        ------
        ValueError
            If ``random_source`` produces a value outside ``[0, 1)``.
        """
        value = (random_source or random.random)()
        if not 0.0 <= value < 1.0:
            raise ValueError(f"random source must return a value in [0, 1), got {value!r}")
        for rank, upper in self._bounds:
            if value < upper:
                return rank
        # Unreachable with weights summing to 1; keep the least valuable rank.
        return RANK_ORDER[-1]


DEFAULT_RANK_SELECTOR = RankSelector()

__all__ = [
    "DEFAULT_RANK_SELECTOR",
    "DEFAULT_RANK_WEIGHTS",
    "RankSelector",
    "RankWeights",
    "RandomSource",
    "fallback_chain",
]
