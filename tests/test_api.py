from __future__ import annotations

import unittest
from datetime import timedelta
from unittest import mock

import httpx
from sqlalchemy import text

from luckydraw.api import create_app
from luckydraw.config import Settings
from luckydraw.db.utils import as_utc, utcnow
from luckydraw.models import DrawTicket, Rank
from luckydraw.prize_draw import RankWeights

from tests.db_case import AsyncDBTestCase

SECRET = "s3cret"
PHONE = "09011112222"


class ApiTestCase(AsyncDBTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.settings = Settings(
            admin_secret=SECRET,
            ticket_expires_at=utcnow() + timedelta(days=30),
            # Every draw selects rank b.
            rank_weights=RankWeights.parse("ss=0,s=0,a=0,b=1"),
        )
        self.app = create_app(self.settings, sessionmaker=self.Session)
        self.client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self.app), base_url="http://testserver"
        )

    async def asyncTearDown(self) -> None:
        await self.client.aclose()
        await super().asyncTearDown()

    async def admin(self, path: str, **payload) -> httpx.Response:
        return await self.client.post(f"/api/admin/{path}", json={"secret": SECRET, **payload})


class DrawEndpointTests(ApiTestCase):
    async def test_draw_returns_code_and_benefit(self) -> None:
        await self.add_ticket(PHONE)
        await self.add_code("LUCKY-B7K9", Rank.B, benefit_text="B賞 トッピング1品無料")

        response = await self.client.post("/api/draw", json={"phone": "090-1111-2222"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"code": "LUCKY-B7K9", "benefit_text": "B賞 トッピング1品無料"}
        )
        self.assertIn("X-Process-Time", response.headers)

    async def test_draw_without_phone_is_bad_request(self) -> None:
        for body in ({}, {"phone": ""}, {"phone": None}):
            with self.subTest(body=body):
                response = await self.client.post("/api/draw", json=body)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json(), {"error": "phone required"})

    async def test_draw_without_ticket_is_bad_request(self) -> None:
        await self.add_code("LUCKY-0001", Rank.B)
        response = await self.client.post("/api/draw", json={"phone": PHONE})
        self.assertEqual(response.status_code, 400)
        self.assertIn("ticket", response.json()["error"])

    async def test_draw_without_stock_is_bad_request(self) -> None:
        await self.add_ticket(PHONE)
        response = await self.client.post("/api/draw", json={"phone": PHONE})
        self.assertEqual(response.status_code, 400)
        self.assertIn("stock", response.json()["error"])

        async with self.Session() as session:
            self.assertEqual(await DrawTicket.count_available(session, PHONE), 1)

    async def test_malformed_body_is_bad_request(self) -> None:
        response = await self.client.post(
            "/api/draw",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())


    async def test_numeric_phone_is_accepted(self) -> None:
        await self.add_ticket("9011112222")
        await self.add_code("LUCKY-N5M8", Rank.B)

        response = await self.client.post("/api/draw", json={"phone": 9011112222})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["code"], "LUCKY-N5M8")


class AdminEndpointTests(ApiTestCase):
    async def test_wrong_or_missing_secret_is_unauthorized(self) -> None:
        cases = [
            ("add-ticket", {"secret": "nope", "phone": PHONE}),
            ("remove-ticket", {"phone": PHONE}),
            ("stock", {"secret": ""}),
            ("ticket-count", {"secret": "S3CRET", "phone": PHONE}),
            ("redeem", {"secret": "x", "code": "ABCD"}),
            ("unredeem", {"secret": "x", "code": "ABCD"}),
            ("lookup", {"secret": "x", "phone": PHONE}),
            ("user", {"secret": "x", "query": PHONE}),
            ("reconcile", {"secret": "x", "since": "garbage"}),
        ]
        for path, body in cases:
            with self.subTest(path=path):
                response = await self.client.post(f"/api/admin/{path}", json=body)
                self.assertEqual(response.status_code, 401)
                self.assertEqual(response.json(), {"error": "secret mismatch"})

        async with self.Session() as session:
            self.assertEqual(await DrawTicket.count_available(session, PHONE), 0)

    async def test_unconfigured_secret_rejects_everything(self) -> None:
        app = create_app(Settings(admin_secret=None), sessionmaker=self.Session)
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://testserver"
        ) as client:
            response = await client.post("/api/admin/stock", json={"secret": ""})
        self.assertEqual(response.status_code, 401)

    async def test_ticket_grant_count_and_revoke(self) -> None:
        for _ in range(2):
            response = await self.admin("add-ticket", phone="090-1111-2222")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json(), {"ok": True})

        response = await self.admin("ticket-count", phone=PHONE)
        self.assertEqual(response.json(), {"count": 2})

        response = await self.admin("remove-ticket", phone=PHONE)
        self.assertEqual(response.status_code, 200)
        response = await self.admin("ticket-count", phone=PHONE)
        self.assertEqual(response.json(), {"count": 1})

        async with self.Session() as session:
            ticket = await DrawTicket.oldest_available(session, PHONE)
        self.assertEqual(as_utc(ticket.expires_at), self.settings.ticket_expires_at)

    async def test_remove_ticket_without_ticket_is_not_found(self) -> None:
        response = await self.admin("remove-ticket", phone=PHONE)
        self.assertEqual(response.status_code, 404)
        self.assertIn("error", response.json())

    async def test_add_ticket_accepts_numeric_phone(self) -> None:
        response = await self.admin("add-ticket", phone=8033334444)
        self.assertEqual(response.status_code, 200)
        response = await self.admin("ticket-count", phone="080-3333-4444")
        self.assertEqual(response.json(), {"count": 0})
        response = await self.admin("ticket-count", phone=8033334444)
        self.assertEqual(response.json(), {"count": 1})

    async def test_add_ticket_requires_phone(self) -> None:
        response = await self.admin("add-ticket")
        self.assertEqual(response.status_code, 400)

    async def test_draw_then_redeem_and_unredeem(self) -> None:
        await self.admin("add-ticket", phone=PHONE)
        await self.add_code("LUCKY-Q8W3", Rank.B)

        drawn = await self.client.post("/api/draw", json={"phone": PHONE})
        self.assertEqual(drawn.status_code, 200)

        stock = await self.admin("stock")
        self.assertEqual(stock.json(), {"ss": 0, "s": 0, "a": 0, "b": 0, "total": 0})

        lookup = await self.admin("lookup", phone=PHONE)
        self.assertEqual([c["short_code"] for c in lookup.json()["codes"]], ["Q8W3"])

        response = await self.admin("redeem", code="q8w3")
        self.assertEqual(response.status_code, 200)
        self.assertEqual((await self.get_code("LUCKY-Q8W3")).status, "redeemed")

        response = await self.admin("redeem", code="q8w3")
        self.assertEqual(response.status_code, 404)

        lookup = await self.admin("lookup", phone=PHONE)
        self.assertEqual(lookup.json(), {"codes": []})

        response = await self.admin("unredeem", code="LUCKY-Q8W3")
        self.assertEqual(response.status_code, 200)
        self.assertEqual((await self.get_code("LUCKY-Q8W3")).status, "assigned")

    async def test_redeem_without_code_is_bad_request(self) -> None:
        response = await self.admin("redeem")
        self.assertEqual(response.status_code, 400)

    async def test_user_summary(self) -> None:
        await self.add_ticket(PHONE)
        await self.add_code(
            "LUCKY-K7M2", Rank.B, status="assigned", assigned_phone=PHONE, assigned_at=utcnow()
        )

        for query in (PHONE, "k7m2"):
            with self.subTest(query=query):
                response = await self.admin("user", query=query)
                self.assertEqual(response.status_code, 200)
                body = response.json()
                self.assertEqual(body["phone"], PHONE)
                self.assertEqual(body["tickets"], {"unused": 1, "used": 0, "total": 1})
                self.assertEqual(body["codes"][0]["last4"], "K7M2")

    async def test_reconcile(self) -> None:
        await self.add_code(
            "LUCKY-LOST", Rank.B, status="assigned", assigned_phone=PHONE, assigned_at=utcnow()
        )
        response = await self.admin("reconcile")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([c["code"] for c in response.json()["codes"]], ["LUCKY-LOST"])

        response = await self.admin("reconcile", since="yesterday")
        self.assertEqual(response.status_code, 400)

        response = await self.admin("reconcile", window_minutes=0)
        self.assertEqual(response.status_code, 400)

    async def test_reconcile_since_out_of_range_is_bad_request(self) -> None:
        response = await self.admin("reconcile", since="9999-12-31T23:59:59-01:00")
        self.assertEqual(response.status_code, 400)
        self.assertIn("since", response.json()["error"])

    async def test_store_failure_is_server_error(self) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(text("DROP TABLE prize_codes"))

        response = await self.admin("stock")
        self.assertEqual(response.status_code, 500)
        self.assertIn("no such table", response.json()["error"])

    async def test_unexpected_error_is_json_server_error(self) -> None:
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self.app, raise_app_exceptions=False),
            base_url="http://testserver",
        )
        with mock.patch(
            "luckydraw.workflows.stock_tally", side_effect=RuntimeError("boom")
        ):
            async with client:
                response = await client.post("/api/admin/stock", json={"secret": SECRET})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "server error: boom"})


if __name__ == "__main__":
    unittest.main()
