from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .. import workflows
from ..config import Settings
from ..db.utils import parse_iso_datetime
from ..errors import InvalidInput
from ..prize_draw.ranks import RankSelector
from .deps import admin_context, get_selector, get_session, get_settings
from .schemas import (
    AdminCodeRequest,
    AdminPhoneRequest,
    AdminQueryRequest,
    AdminRequest,
    CodeListResponse,
    CustomerResponse,
    DrawRequest,
    DrawResponse,
    OkResponse,
    ReconcileRequest,
    StockResponse,
    TicketCountResponse,
)

router = APIRouter()
admin_router = APIRouter(prefix="/admin")


@router.post("/draw", response_model=DrawResponse)
async def draw(
    body: DrawRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    selector: RankSelector = Depends(get_selector),
) -> Any:
    """Spend one ticket of ``phone`` on a prize code."""
    outcome = await workflows.run_draw(
        session,
        body.phone,
        selector=selector,
        max_attempts=settings.draw_max_attempts,
    )
    return outcome.to_json()


@admin_router.post("/add-ticket", response_model=OkResponse)
async def add_ticket(
    body: AdminPhoneRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    auth = admin_context(settings, body.secret)
    await workflows.grant_ticket(
        session, auth, body.phone, expires_at=settings.ticket_expires_at
    )
    return {"ok": True}


@admin_router.post("/remove-ticket", response_model=OkResponse)
async def remove_ticket(
    body: AdminPhoneRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    auth = admin_context(settings, body.secret)
    await workflows.revoke_ticket(session, auth, body.phone)
    return {"ok": True}


@admin_router.post("/redeem", response_model=OkResponse)
async def redeem(
    body: AdminCodeRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    auth = admin_context(settings, body.secret)
    await workflows.redeem_code(session, auth, body.code)
    return {"ok": True}


@admin_router.post("/unredeem", response_model=OkResponse)
async def unredeem(
    body: AdminCodeRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    auth = admin_context(settings, body.secret)
    await workflows.unredeem_code(session, auth, body.code)
    return {"ok": True}


@admin_router.post("/stock", response_model=StockResponse)
async def stock(
    body: AdminRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    auth = admin_context(settings, body.secret)
    tally = await workflows.stock_tally(session, auth)
    return tally.to_json()


@admin_router.post("/ticket-count", response_model=TicketCountResponse)
async def ticket_count(
    body: AdminPhoneRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    auth = admin_context(settings, body.secret)
    count = await workflows.ticket_count(session, auth, body.phone)
    return {"count": count}


@admin_router.post("/lookup", response_model=CodeListResponse)
async def lookup(
    body: AdminPhoneRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    """Unredeemed codes held by a phone, newest first."""
    auth = admin_context(settings, body.secret)
    codes = await workflows.lookup_codes(session, auth, body.phone)
    return {"codes": [code.to_json() for code in codes]}


@admin_router.post("/user", response_model=CustomerResponse)
async def user(
    body: AdminQueryRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    """Customer summary by phone number or by a held code's short code."""
    auth = admin_context(settings, body.secret)
    summary = await workflows.search_customer(session, auth, body.query)
    return summary.to_json()


@admin_router.post("/reconcile", response_model=CodeListResponse)
async def reconcile(
    body: ReconcileRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    """Handed-out codes with no consumed ticket, for manual audit."""
    auth = admin_context(settings, body.secret)
    auth.require_admin()
    since = None
    if body.since:
        try:
            since = parse_iso_datetime(body.since)
        except (ValueError, OverflowError) as exc:
            raise InvalidInput("since must be an ISO 8601 timestamp") from exc
    codes = await workflows.find_unreconciled_assignments(
        session,
        auth,
        window=timedelta(minutes=body.window_minutes),
        since=since,
    )
    return {"codes": [code.to_json() for code in codes]}


router.include_router(admin_router)
