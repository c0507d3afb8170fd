from __future__ import annotations

import asyncio
import unittest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import func, select

from luckydraw.auth import ADMIN
from luckydraw.db.utils import utcnow
from luckydraw.errors import (
    InvalidInput,
    LuckyDrawError,
    NoStockAvailable,
    NoTicketAvailable,
    TicketRaceLost,
)
from luckydraw.models import DrawTicket, PrizeCode, Rank
from luckydraw.prize_draw import DrawOutcome, PrizeDrawEngine
from luckydraw.workflows import find_unreconciled_assignments, run_draw, stock_tally

from tests.db_case import AsyncDBTestCase

PHONE = "09011112222"

# Constant random sources that force the selector onto a rank.
PICK_SS = lambda: 0.0  # noqa: E731
PICK_S = lambda: 0.005  # noqa: E731
PICK_B = lambda: 0.5  # noqa: E731


class DrawGuardTests(AsyncDBTestCase):
    async def test_empty_phone_is_invalid_input(self) -> None:
        await self.add_code("GUARD-AAAA", Rank.B)
        async with self.Session() as session:
            for phone in (None, "", "  ", "tel:---"):
                with self.subTest(phone=phone):
                    with self.assertRaises(InvalidInput):
                        await run_draw(session, phone)

    async def test_phone_without_ticket(self) -> None:
        await self.add_code("GUARD-BBBB", Rank.B)
        async with self.Session() as session:
            with self.assertRaises(NoTicketAvailable):
                await run_draw(session, PHONE, random_source=PICK_B)

    async def test_expired_ticket_is_not_drawable(self) -> None:
        ticket_id = await self.add_ticket(PHONE, expires_at=utcnow() - timedelta(minutes=1))
        await self.add_code("GUARD-CCCC", Rank.B)

        async with self.Session() as session:
            with self.assertRaises(NoTicketAvailable):
                await run_draw(session, PHONE, random_source=PICK_B)

        ticket = await self.get_ticket(ticket_id)
        self.assertEqual(ticket.status, "unused")

    async def test_used_ticket_is_not_drawable(self) -> None:
        await self.add_ticket(PHONE, status="used")
        await self.add_code("GUARD-DDDD", Rank.B)
        async with self.Session() as session:
            with self.assertRaises(NoTicketAvailable):
                await run_draw(session, PHONE)

    async def test_no_stock_leaves_ticket_unused(self) -> None:
        ticket_id = await self.add_ticket(PHONE)
        await self.add_code("GUARD-EEEE", Rank.B, status="assigned", assigned_phone="0800")

        async with self.Session() as session:
            with self.assertRaises(NoStockAvailable):
                await run_draw(session, PHONE, random_source=PICK_B)

        ticket = await self.get_ticket(ticket_id)
        self.assertEqual(ticket.status, "unused")
        self.assertIsNone(ticket.used_at)

    async def test_stock_only_in_higher_rank_is_never_upgraded_into(self) -> None:
        await self.add_ticket(PHONE)
        await self.add_code("GUARD-FFFF", Rank.SS)

        async with self.Session() as session:
            with self.assertRaises(NoStockAvailable):
                await run_draw(session, PHONE, random_source=PICK_B)

    def test_max_attempts_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            PrizeDrawEngine(None, max_attempts=0)  # type: ignore[arg-type]


class DrawScenarioTests(AsyncDBTestCase):
    async def test_single_draw_consumes_ticket_and_assigns_code(self) -> None:
        ticket_id = await self.add_ticket(PHONE)
        await self.add_code("LUCKY-B7K9", Rank.B, benefit_text="B賞 トッピング1品無料")

        async with self.Session() as session:
            before = await stock_tally(session, ADMIN)

        async with self.Session() as session:
            outcome = await run_draw(session, "090-1111-2222")

        self.assertIsInstance(outcome, DrawOutcome)
        self.assertEqual(outcome.code, "LUCKY-B7K9")
        self.assertEqual(outcome.benefit_text, "B賞 トッピング1品無料")
        self.assertEqual(outcome.rank, Rank.B)
        self.assertEqual(outcome.phone, PHONE)
        self.assertEqual(outcome.ticket_id, ticket_id)
        self.assertEqual(outcome.to_json(), {"code": "LUCKY-B7K9", "benefit_text": "B賞 トッピング1品無料"})

        ticket = await self.get_ticket(ticket_id)
        self.assertEqual(ticket.status, "used")
        self.assertIsNotNone(ticket.used_at)

        code = await self.get_code("LUCKY-B7K9")
        self.assertEqual(code.status, "assigned")
        self.assertEqual(code.assigned_phone, PHONE)
        self.assertIsNotNone(code.assigned_at)

        async with self.Session() as session:
            after = await stock_tally(session, ADMIN)
        self.assertEqual(after.total, before.total - 1)

    async def test_fallback_lands_on_lowest_rank_with_stock(self) -> None:
        await self.add_ticket(PHONE)
        await self.add_code("FALL-BBB1", Rank.B)

        async with self.Session() as session:
            outcome = await run_draw(session, PHONE, random_source=PICK_SS)

        self.assertEqual(outcome.requested_rank, Rank.SS)
        self.assertEqual(outcome.rank, Rank.B)
        self.assertEqual(outcome.code, "FALL-BBB1")

    async def test_highest_rank_with_stock_wins(self) -> None:
        await self.add_ticket(PHONE)
        await self.add_code("HIGH-SSS1", Rank.S)
        await self.add_code("HIGH-AAA1", Rank.A)
        await self.add_code("HIGH-BBB1", Rank.B)

        async with self.Session() as session:
            outcome = await run_draw(session, PHONE, random_source=PICK_SS)
        self.assertEqual(outcome.rank, Rank.S)
        self.assertEqual(outcome.code, "HIGH-SSS1")

    async def test_drawn_rank_is_used_when_in_stock(self) -> None:
        await self.add_ticket(PHONE)
        await self.add_code("HIT-SSS2", Rank.S)
        await self.add_code("HIT-BBB2", Rank.B)

        async with self.Session() as session:
            outcome = await run_draw(session, PHONE, random_source=PICK_B)
        self.assertEqual(outcome.rank, Rank.B)
        self.assertEqual(outcome.requested_rank, Rank.B)

    async def test_oldest_ticket_is_consumed_first(self) -> None:
        now = utcnow()
        newer = await self.add_ticket(PHONE, created_at=now - timedelta(hours=1))
        older = await self.add_ticket(PHONE, created_at=now - timedelta(days=2))
        await self.add_code("FIFO-0001", Rank.B)
        await self.add_code("FIFO-0002", Rank.B)

        async with self.Session() as session:
            first = await run_draw(session, PHONE, random_source=PICK_B)
        self.assertEqual(first.ticket_id, older)

        async with self.Session() as session:
            second = await run_draw(session, PHONE, random_source=PICK_B)
        self.assertEqual(second.ticket_id, newer)

    async def test_legacy_unused_code_status_counts_as_stock(self) -> None:
        await self.add_ticket(PHONE)
        await self.add_code("LEGACY-0001", Rank.B, status="unused")

        async with self.Session() as session:
            outcome = await run_draw(session, PHONE, random_source=PICK_B)
        self.assertEqual(outcome.code, "LEGACY-0001")
        code = await self.get_code("LEGACY-0001")
        self.assertEqual(code.status, "assigned")

    async def test_code_within_rank_is_picked_at_random(self) -> None:
        for idx in range(5):
            await self.add_code(f"RAND-000{idx}", Rank.B)

        picked = set()
        async with self.Session() as session:
            for _ in range(60):
                code = await PrizeCode.pick_available(session, Rank.B)
                picked.add(code.code)
        self.assertGreater(len(picked), 1)

    async def test_each_draw_assigns_a_distinct_code(self) -> None:
        for _ in range(3):
            await self.add_ticket(PHONE)
        for idx in range(3):
            await self.add_code(f"SEQ-000{idx}", Rank.B)

        codes = []
        for _ in range(3):
            async with self.Session() as session:
                codes.append((await run_draw(session, PHONE, random_source=PICK_B)).code)
        self.assertEqual(len(set(codes)), 3)

        async with self.Session() as session:
            with self.assertRaises(NoTicketAvailable):
                await run_draw(session, PHONE, random_source=PICK_B)


class DrawCommitProtocolTests(AsyncDBTestCase):
    async def test_lost_code_claim_is_retried_with_a_new_pick(self) -> None:
        ticket_id = await self.add_ticket(PHONE)
        await self.add_code("RETRY-0001", Rank.B)
        await self.add_code("RETRY-0002", Rank.B)

        real_claim = PrizeCode.claim
        claimed_ids = []

        async def claim_losing_first(session, code_id, phone, **kwargs):
            claimed_ids.append(code_id)
            if len(claimed_ids) == 1:
                # A concurrent draw takes the code first.
                async with self.Session() as other:
                    await real_claim(other, code_id, "08000000000")
                    await other.commit()
            return await real_claim(session, code_id, phone, **kwargs)

        with patch.object(PrizeCode, "claim", side_effect=claim_losing_first):
            async with self.Session() as session:
                outcome = await run_draw(session, PHONE, random_source=PICK_B)

        self.assertEqual(outcome.attempts, 2)
        self.assertEqual(len(claimed_ids), 2)
        self.assertNotEqual(claimed_ids[0], claimed_ids[1])

        lost = [code for code in await self.all_codes() if code.id == claimed_ids[0]][0]
        self.assertEqual(lost.assigned_phone, "08000000000")
        won = await self.get_code(outcome.code)
        self.assertEqual(won.assigned_phone, PHONE)
        self.assertEqual((await self.get_ticket(ticket_id)).status, "used")

    async def test_exhausted_retries_surface_no_stock(self) -> None:
        ticket_id = await self.add_ticket(PHONE)
        await self.add_code("RETRY-0003", Rank.B)

        async def always_lose(session, code_id, phone, **kwargs):
            return False

        with patch.object(PrizeCode, "claim", side_effect=always_lose) as claim:
            async with self.Session() as session:
                with self.assertRaises(NoStockAvailable):
                    await run_draw(session, PHONE, random_source=PICK_B, max_attempts=3)
        self.assertEqual(claim.call_count, 3)
        self.assertEqual((await self.get_ticket(ticket_id)).status, "unused")

    async def test_ticket_race_keeps_assigned_code(self) -> None:
        ticket_id = await self.add_ticket(PHONE)
        await self.add_code("RACE-0001", Rank.B)

        real_mark_used = DrawTicket.mark_used

        async def consumed_elsewhere(session, tid, **kwargs):
            async with self.Session() as other:
                await real_mark_used(other, tid)
                await other.commit()
            return await real_mark_used(session, tid, **kwargs)

        with patch.object(DrawTicket, "mark_used", side_effect=consumed_elsewhere):
            async with self.Session() as session:
                with self.assertRaises(TicketRaceLost) as ctx:
                    await run_draw(session, PHONE, random_source=PICK_B)

        self.assertEqual(ctx.exception.code, "RACE-0001")
        self.assertEqual(ctx.exception.ticket_id, ticket_id)
        code = await self.get_code("RACE-0001")
        self.assertEqual(code.status, "assigned")
        self.assertEqual(code.assigned_phone, PHONE)

        async with self.Session() as session:
            unmatched = await find_unreconciled_assignments(session, ADMIN)
        # The ticket consumed elsewhere still pairs with the code in time.
        self.assertEqual([c.code for c in unmatched], [])


class ConcurrentDrawTests(AsyncDBTestCase):
    async def _draw(self, phone: str, random_source=PICK_B, max_attempts: int = 10):
        async with self.Session() as session:
            try:
                return await run_draw(
                    session, phone, random_source=random_source, max_attempts=max_attempts
                )
            except LuckyDrawError as exc:
                return exc

    async def test_single_code_is_never_assigned_twice(self) -> None:
        phones = [f"0901234{idx:04d}" for idx in range(8)]
        for phone in phones:
            await self.add_ticket(phone)
        await self.add_code("ONLY-0001", Rank.B)

        results = await asyncio.gather(*(self._draw(phone) for phone in phones))

        winners = [r for r in results if isinstance(r, DrawOutcome)]
        losers = [r for r in results if not isinstance(r, DrawOutcome)]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), 7)
        for loser in losers:
            self.assertIsInstance(loser, NoStockAvailable)

        code = await self.get_code("ONLY-0001")
        self.assertEqual(code.assigned_phone, winners[0].phone)

        async with self.Session() as session:
            used = await session.scalar(
                select(func.count(DrawTicket.id)).where(DrawTicket.status == "used")
            )
            remaining = sum(
                [await DrawTicket.count_available(session, phone) for phone in phones]
            )
        self.assertEqual(used, 1)
        self.assertEqual(remaining, 7)

    async def test_concurrent_draws_fall_back_instead_of_sharing(self) -> None:
        phones = [f"0805678{idx:04d}" for idx in range(4)]
        for phone in phones:
            await self.add_ticket(phone)
        await self.add_code("TOP-S001", Rank.S)
        for idx in range(3):
            await self.add_code(f"LOW-B00{idx}", Rank.B)

        results = await asyncio.gather(*(self._draw(p, PICK_S) for p in phones))

        self.assertTrue(all(isinstance(r, DrawOutcome) for r in results), results)
        codes = [r.code for r in results]
        self.assertEqual(len(set(codes)), 4)
        self.assertEqual(sum(1 for r in results if r.rank == Rank.S), 1)

    async def test_single_ticket_is_consumed_once(self) -> None:
        ticket_id = await self.add_ticket(PHONE)
        for idx in range(10):
            await self.add_code(f"MANY-{idx:04d}", Rank.B)

        results = await asyncio.gather(*(self._draw(PHONE) for _ in range(6)))

        winners = [r for r in results if isinstance(r, DrawOutcome)]
        self.assertEqual(len(winners), 1)
        races = [r for r in results if isinstance(r, TicketRaceLost)]
        for other in results:
            if other in winners:
                continue
            self.assertIsInstance(other, (TicketRaceLost, NoTicketAvailable))

        ticket = await self.get_ticket(ticket_id)
        self.assertEqual(ticket.status, "used")

        assigned = [c for c in await self.all_codes() if c.status == "assigned"]
        # Codes claimed by race losers stay assigned for reconciliation.
        self.assertEqual(len(assigned), 1 + len(races))
        self.assertEqual({c.code for c in assigned} - {r.code for r in races}, {winners[0].code})


if __name__ == "__main__":
    unittest.main()
