"""Tests for the status API."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from weatherb.admin import AdminConfig, AdminGate
from weatherb.api.status_api import create_app
from weatherb.db.database import open_database
from weatherb.exceptions import PermanentJobError
from weatherb.queue.jobs import JobQueue
from weatherb.queue.payloads import SettleMarketPayload
from weatherb.store import OUTAGE_KEY, SharedStore


@pytest.fixture()
def db_url(tmp_path):
    """Temp SQLite DB with one pending and one dead-lettered settlement job."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'test_status.db'}"

    async def seed():
        db = await open_database(url)
        store = SharedStore(db)
        queue = JobQueue(db, "settlement", SettleMarketPayload, max_retries=1, backoff_base_ms=1)
        await queue.enqueue({"market_id": 1}, dedupe_key="settle:1")
        await queue.enqueue({"market_id": 2}, dedupe_key="settle:2")
        [job, _] = await queue.claim(2)
        await queue.fail(job, PermanentJobError("InvalidStatus"), permanent=True)
        await store.set(OUTAGE_KEY, "red")
        await AdminGate(store).write(AdminConfig(settler_paused=True))
        await db.close()

    asyncio.run(seed())
    return url


@pytest.fixture()
def client(db_url):
    with TestClient(create_app(db_url)) as c:
        yield c


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_status_reports_flags_and_counts(client):
    data = client.get("/status").json()

    assert data["outage"] is True
    assert data["admin"] == {"paused": False, "settler_paused": True}
    assert data["queues"]["settlement"] == {"pending": 0, "active": 1, "dead": 1}
    assert data["queues"]["market-creation"] == {"pending": 0, "active": 0, "dead": 0}


def test_dead_letters_listing(client):
    data = client.get("/dead-letters").json()

    assert data["count"] == 1
    [entry] = data["dead_letters"]
    assert entry["queue"] == "settlement"
    assert entry["dedupe_key"] == "settle:1"
    assert entry["failure_class"] == "permanent"
    assert entry["payload"]["market_id"] == 1


def test_dead_letters_filtered_by_queue(client):
    data = client.get("/dead-letters", params={"queue": "market-creation"}).json()
    assert data["count"] == 0


def test_dead_letters_rejects_unknown_queue(client):
    assert client.get("/dead-letters", params={"queue": "nope"}).status_code == 422
