from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .rank import RANK_LABELS, RANK_ORDER, Rank, rank_from_benefit_text  # noqa: F401
from .ticket import (  # noqa: F401
    TICKET_UNUSED,
    TICKET_USED,
    DrawTicket,
)
from .prize_code import (  # noqa: F401
    AVAILABLE_CODE_STATUSES,
    CODE_ASSIGNED,
    CODE_REDEEMED,
    CODE_UNASSIGNED,
    CODE_UNUSED,
    PrizeCode,
    short_code_of,
)

__all__ = [
    "AVAILABLE_CODE_STATUSES",
    "Base",
    "CODE_ASSIGNED",
    "CODE_REDEEMED",
    "CODE_UNASSIGNED",
    "CODE_UNUSED",
    "DrawTicket",
    "PrizeCode",
    "RANK_LABELS",
    "RANK_ORDER",
    "Rank",
    "TICKET_UNUSED",
    "TICKET_USED",
    "rank_from_benefit_text",
    "short_code_of",
]
