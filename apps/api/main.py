"""
Datasheet Instruments API - FastAPI Backend
Main application entry point with health check and API routing.
"""

import asyncio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings
from database import engine, Base
import models  # noqa: F401
from routers import health, instruments
from services.snapshot_jobs import enqueue_snapshot_drain_job
from services.snapshot_worker import SnapshotWorker


async def _periodic_snapshot_sweep(worker: SnapshotWorker) -> None:
    """Drain rows released for retry; nothing is re-enqueued here."""
    interval_seconds = max(int(settings.SNAPSHOT_SWEEP_INTERVAL_SECONDS), 0)
    if interval_seconds <= 0:
        return
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            if settings.SNAPSHOT_RQ_ENABLED:
                await asyncio.to_thread(enqueue_snapshot_drain_job)
            else:
                worker.kick()
        except Exception as exc:
            print(f"⚠️ Snapshot sweep tick failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Datasheet Instruments API...")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")

    worker = SnapshotWorker()
    app.state.snapshot_worker = worker
    print(f"🧱 Snapshot worker ready (id={worker.worker_id}).")
    # Pick up anything left pending by a previous process.
    worker.kick()

    sweep_task = None
    if int(settings.SNAPSHOT_SWEEP_INTERVAL_SECONDS) > 0:
        sweep_task = asyncio.create_task(_periodic_snapshot_sweep(worker))
        print(
            "📅 Snapshot sweep loop enabled "
            f"(every {int(settings.SNAPSHOT_SWEEP_INTERVAL_SECONDS)} s)."
        )
    yield
    # Shutdown
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    await worker.wait_idle()
    app.state.snapshot_worker = None
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Datasheet Instruments API",
    description="Instrument-to-datasheet links served from rebuilt snapshots",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(instruments.router, tags=["Instruments"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Datasheet Instruments API",
        "version": "0.1.0",
        "status": "running"
    }
