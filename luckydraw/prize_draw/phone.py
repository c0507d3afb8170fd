"""Helpers for canonicalising customer phone numbers."""

from __future__ import annotations

import re
import unicodedata
from typing import Optional

_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_phone(raw: Optional[str]) -> str:
    """Reduce ``raw`` to its ASCII digits.

    Full-width digits (``"０９０"``) are folded to ASCII first, then every
    other character (hyphens, spaces, parentheses, ``+``) is dropped. The
    result may be empty; callers decide whether that is an error.

    Parameters
    ----------
    raw : Optional[str]
        Phone number as typed by a customer or operator.
    """

    if raw is None:
        return ""
    if not isinstance(raw, str):
        raise TypeError("phone must be a string")
    folded = unicodedata.normalize("NFKC", raw)
    return _NON_DIGITS.sub("", folded)


def mask_phone(phone: str) -> str:
    """Hide all but the last four digits, for log output."""

    if len(phone) <= 4:
        return "*" * len(phone)
    return "*" * (len(phone) - 4) + phone[-4:]


__all__ = ["mask_phone", "normalize_phone"]
