"""Read-only FastAPI status surface: outage flag, admin flags, queue health."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request

from weatherb.admin import AdminGate
from weatherb.db.database import Database
from weatherb.queue.jobs import JobQueue
from weatherb.queue.payloads import PAYLOAD_MODELS, QueueName
from weatherb.store import OUTAGE_KEY, SharedStore


def _inspection_queue(db: Database, name: QueueName) -> JobQueue:
    # Retry settings are irrelevant for read-only inspection.
    return JobQueue(db, name.value, PAYLOAD_MODELS[name], max_retries=0, backoff_base_ms=1)


def create_app(database_url: Optional[str] = None) -> FastAPI:
    """Build the status app. ``database_url`` defaults to ``DATABASE_URL``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        url = database_url
        if url is None:
            from config.settings import settings
            url = settings.DATABASE_URL
        db = Database(url)
        await db.init()
        app.state.db = db
        app.state.store = SharedStore(db)
        app.state.queues = {name: _inspection_queue(db, name) for name in QueueName}
        try:
            yield
        finally:
            await db.close()

    app = FastAPI(title="weatherb status", version="1.0.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/status")
    async def status(request: Request) -> dict:
        store: SharedStore = request.app.state.store
        admin = await AdminGate(store).read()
        queues = {
            name.value: await queue.counts()
            for name, queue in request.app.state.queues.items()
        }
        return {
            "outage": await store.get(OUTAGE_KEY) is not None,
            "admin": {"paused": admin.paused, "settler_paused": admin.settler_paused},
            "queues": queues,
        }

    @app.get("/dead-letters")
    async def dead_letters(
        request: Request,
        queue: Optional[QueueName] = Query(default=None, description="Only this queue."),
        include_replayed: bool = Query(default=False),
        limit: int = Query(default=100, ge=1, le=1000),
    ) -> dict:
        names = [queue] if queue is not None else list(QueueName)
        rows = []
        for name in names:
            for dl in await request.app.state.queues[name].dead_letters(
                include_replayed=include_replayed, limit=limit,
            ):
                rows.append({
                    "id": dl.id,
                    "job_id": dl.job_id,
                    "queue": dl.queue,
                    "dedupe_key": dl.dedupe_key,
                    "payload": dl.payload,
                    "attempts": dl.attempts,
                    "failure_class": dl.failure_class,
                    "error": dl.error,
                    "created_at": dl.created_at.isoformat() if dl.created_at else None,
                    "replayed_at": dl.replayed_at.isoformat() if dl.replayed_at else None,
                })
        rows.sort(key=lambda r: r["id"], reverse=True)
        return {"count": len(rows[:limit]), "dead_letters": rows[:limit]}

    return app


app = create_app()
