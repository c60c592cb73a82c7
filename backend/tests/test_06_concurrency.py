"""
Concurrency & Race Condition Tests

Fire overlapping donation writes at the same campaigns and verify that no
increment is lost, no delete is reversed twice and the goal transition
happens once.

The in-memory fixtures share a single connection, so this module swaps in
a file-backed database where every request checks out its own connection.
SQLite has no row locks; each transaction takes the write lock with
``BEGIN IMMEDIATE`` and waiters queue on the busy timeout.
"""
import asyncio

import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from app.database import Base
from conftest import campaign_amount, create_campaign, create_donation


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed database with one connection per session."""
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'donations.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _configure(dbapi_conn, _record):
        # SQLAlchemy emits BEGIN itself, see _begin_immediate
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(eng.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


async def ledger_sum(client, headers, campaign_id: str) -> float:
    r = await client.get(
        "/api/donations",
        headers=headers,
        params={"campaign_id": campaign_id, "donation_type": "cash", "page_size": 100},
    )
    assert r.status_code == 200
    return round(sum(d["amount"] for d in r.json()["items"]), 2)


def _donation_body(campaign_id: str | None, amount: float, donor: str) -> dict:
    return {
        "donor_name": donor,
        "donation_type": "cash",
        "amount": amount,
        "date_received": "2024-05-01",
        "campaign_id": campaign_id,
    }


class TestConcurrentDonations:

    async def test_concurrent_creates_lose_no_increment(self, client, editor_headers, campaign):
        """20 simultaneous donations of 25 to one campaign all land."""
        cid = campaign["id"]
        results = await asyncio.gather(*[
            client.post("/api/donations", headers=editor_headers,
                        json=_donation_body(cid, 25, f"Donor {i}"))
            for i in range(20)
        ])

        assert [r.status_code for r in results] == [201] * 20
        assert await campaign_amount(client, editor_headers, cid) == 500
        assert await ledger_sum(client, editor_headers, cid) == 500

    async def test_concurrent_creates_cross_goal_once(self, client, editor_headers, admin_headers):
        c = await create_campaign(client, editor_headers, goal_amount=1000)
        results = await asyncio.gather(*[
            client.post("/api/donations", headers=editor_headers,
                        json=_donation_body(c["id"], 100, f"Donor {i}"))
            for i in range(10)
        ])
        assert all(r.status_code == 201 for r in results)

        r = await client.get(f"/api/campaigns/{c['id']}", headers=editor_headers)
        assert r.json()["current_amount"] == 1000
        assert r.json()["status"] == "completed"

        r = await client.get(
            "/api/admin/audit-log", headers=admin_headers,
            params={"action": "donation.create", "page_size": 100},
        )
        assert r.json()["total"] == 10

    async def test_concurrent_deletes_decrement_once(self, client, editor_headers, campaign):
        cid = campaign["id"]
        target = await create_donation(client, editor_headers, amount=100, campaign_id=cid)
        await create_donation(client, editor_headers, amount=50, campaign_id=cid)

        results = await asyncio.gather(*[
            client.delete(f"/api/donations/{target['id']}", headers=editor_headers)
            for _ in range(5)
        ])

        assert sorted(r.status_code for r in results) == [200, 404, 404, 404, 404]
        assert await campaign_amount(client, editor_headers, cid) == 50

    async def test_mixed_writes_keep_counter_equal_to_ledger(self, client, editor_headers, campaign):
        cid = campaign["id"]
        edited = await create_donation(client, editor_headers, amount=100, campaign_id=cid)
        removed = await create_donation(client, editor_headers, amount=30, campaign_id=cid)

        results = await asyncio.gather(
            client.put(f"/api/donations/{edited['id']}", headers=editor_headers,
                       json={"amount": 150}),
            client.post("/api/donations", headers=editor_headers,
                        json=_donation_body(cid, 40, "Rania")),
            client.post("/api/donations", headers=editor_headers,
                        json=_donation_body(cid, 60, "Sami")),
            client.delete(f"/api/donations/{removed['id']}", headers=editor_headers),
        )

        assert [r.status_code for r in results] == [200, 201, 201, 200]
        assert await campaign_amount(client, editor_headers, cid) == 250
        assert await ledger_sum(client, editor_headers, cid) == 250

    async def test_concurrent_moves_conserve_total(self, client, editor_headers):
        a = await create_campaign(client, editor_headers, title="North", goal_amount=0)
        b = await create_campaign(client, editor_headers, title="South", goal_amount=0)
        donations = [
            await create_donation(client, editor_headers, amount=10 * (i + 1), campaign_id=a["id"])
            for i in range(6)
        ]

        # Half move to South, half are bumped in place
        results = await asyncio.gather(*[
            client.put(
                f"/api/donations/{d['id']}", headers=editor_headers,
                json={"campaign_id": b["id"]} if i % 2 else {"amount": d["amount"] + 1},
            )
            for i, d in enumerate(donations)
        ])
        assert all(r.status_code == 200 for r in results)

        north = await campaign_amount(client, editor_headers, a["id"])
        south = await campaign_amount(client, editor_headers, b["id"])
        assert north == await ledger_sum(client, editor_headers, a["id"]) == 10 + 30 + 50 + 3
        assert south == await ledger_sum(client, editor_headers, b["id"]) == 20 + 40 + 60
        assert north + south == 210 + 3

    async def test_repair_alongside_donations_keeps_them(
        self, client, admin_headers, editor_headers, campaign
    ):
        cid = campaign["id"]
        await create_donation(client, editor_headers, amount=100, campaign_id=cid)

        results = await asyncio.gather(
            client.post("/api/admin/funding/reconcile", headers=admin_headers),
            *[
                client.post("/api/donations", headers=editor_headers,
                            json=_donation_body(cid, 50, f"Donor {i}"))
                for i in range(4)
            ],
        )

        assert results[0].status_code == 200
        assert results[0].json()["drifted"] == []
        assert [r.status_code for r in results[1:]] == [201] * 4
        assert await campaign_amount(client, editor_headers, cid) == 300
        assert await ledger_sum(client, editor_headers, cid) == 300
