"""Utilities for the prize draw subsystem."""

from .engine import DrawOutcome, PrizeDrawEngine
from .phone import mask_phone, normalize_phone
from .ranks import (
    DEFAULT_RANK_SELECTOR,
    DEFAULT_RANK_WEIGHTS,
    RankSelector,
    RankWeights,
    fallback_chain,
)

__all__ = [
    "DEFAULT_RANK_SELECTOR",
    "DEFAULT_RANK_WEIGHTS",
    "DrawOutcome",
    "PrizeDrawEngine",
    "RankSelector",
    "RankWeights",
    "fallback_chain",
    "mask_phone",
    "normalize_phone",
]
