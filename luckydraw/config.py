"""Runtime configuration loaded from the environment (and ``.env``)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

from dotenv import load_dotenv

from .db.engine import DEFAULT_SQLITE_URL, ROOT_DIR
from .db.utils import parse_iso_datetime, resolve_sqlite_url
from .prize_draw.ranks import DEFAULT_RANK_WEIGHTS, RankWeights

# Program-wide expiry of every granted ticket: end of April 2027, JST.
DEFAULT_TICKET_EXPIRES_AT = "2027-04-30T14:59:59Z"
DEFAULT_DRAW_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class Settings:
    """Settings shared by the API, scripts and workflows.

    Attributes
    ----------
    db_url : str
        SQLAlchemy async database URL.
    admin_secret : Optional[str]
        Shared secret required by admin requests. When unset, admin requests
        are always rejected.
    ticket_expires_at : datetime
        Expiry stamped on every granted ticket.
    rank_weights : RankWeights
        Probability of each prize rank; validated to sum to exactly 1.
    draw_max_attempts : int
        How many times a draw re-picks a code after losing it to a
        concurrent draw.
    log_level : str
        Name of the root logging level.
    db_echo : bool
        Echo SQL statements (debugging).
    """

    db_url: str = DEFAULT_SQLITE_URL
    admin_secret: Optional[str] = None
    ticket_expires_at: datetime = field(
        default_factory=lambda: parse_iso_datetime(DEFAULT_TICKET_EXPIRES_AT)
    )
    rank_weights: RankWeights = DEFAULT_RANK_WEIGHTS
    draw_max_attempts: int = DEFAULT_DRAW_MAX_ATTEMPTS
    log_level: str = "INFO"
    db_echo: bool = False

    def __post_init__(self) -> None:
        if self.draw_max_attempts < 1:
            raise ValueError("draw_max_attempts must be at least 1")


def _env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``environ`` (``os.environ`` after ``load_dotenv``).

    Raises
    ------
    ValueError
        If a value cannot be parsed, including rank weights that do not sum
        to exactly 1. Failing here stops the server at startup.
    """

    if environ is None:
        load_dotenv()
        environ = os.environ

    db_url = environ.get("DB_URL")
    weights_text = environ.get("RANK_WEIGHTS")
    expires_text = environ.get("TICKET_EXPIRES_AT")
    attempts_text = environ.get("DRAW_MAX_ATTEMPTS")

    return Settings(
        db_url=resolve_sqlite_url(db_url, ROOT_DIR) if db_url else DEFAULT_SQLITE_URL,
        admin_secret=environ.get("ADMIN_SECRET") or None,
        ticket_expires_at=parse_iso_datetime(expires_text or DEFAULT_TICKET_EXPIRES_AT),
        rank_weights=RankWeights.parse(weights_text) if weights_text else DEFAULT_RANK_WEIGHTS,
        draw_max_attempts=int(attempts_text) if attempts_text else DEFAULT_DRAW_MAX_ATTEMPTS,
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        db_echo=_env_flag(environ.get("DB_ECHO")),
    )


__all__ = ["DEFAULT_TICKET_EXPIRES_AT", "Settings", "load_settings"]
