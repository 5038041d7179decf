"""FastAPI application — event ingestion, inference, feedback and retraining.

This module wires together all infrastructure:
- CORS + API key auth middleware
- SQLite training store and model persistence
- Event collector feeding the emotion pipeline
- Background retraining scheduler
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException

from behavioral_emotion import __version__
from behavioral_emotion.affect.classifier import EmotionClassifier
from behavioral_emotion.affect.pipeline import EmotionPipeline
from behavioral_emotion.api.middleware import setup_middleware
from behavioral_emotion.api.routes.emotion import router as emotion_router
from behavioral_emotion.api.routes.training import router as training_router
from behavioral_emotion.api.schemas import EventBatch
from behavioral_emotion.collectors.events import EventCollector
from behavioral_emotion.config import get_settings
from behavioral_emotion.scheduler.service import RetrainingScheduler
from behavioral_emotion.storage.database import dispose_engine, init_db
from behavioral_emotion.storage.repository import (
    ModelStateRepository,
    TrainingStatsRepository,
    TrainingStore,
)

logger = structlog.get_logger(__name__)

# ── Shared state (initialised in lifespan) ────────────────────

_collector: EventCollector | None = None
_classifier: EmotionClassifier | None = None
_store: TrainingStore | None = None
_stats_repo: TrainingStatsRepository | None = None
_pipeline: EmotionPipeline | None = None
_scheduler: RetrainingScheduler | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hooks."""
    global _collector, _classifier, _store, _stats_repo, _pipeline, _scheduler

    settings = get_settings()

    # 1. Database
    await init_db()
    logger.info("server.db_ready")

    # 2. Repositories
    _store = TrainingStore()
    _stats_repo = TrainingStatsRepository()

    # 3. Classifier (loads or bootstraps the model)
    _classifier = EmotionClassifier(
        ModelStateRepository(),
        learning_rate=settings.model_learning_rate,
        persist_every=settings.model_persist_every,
        synthetic_samples=settings.model_synthetic_samples,
        seed=settings.model_seed,
    )
    await _classifier.initialize()

    # 4. Collector → pipeline
    _collector = EventCollector(
        window_ms=settings.collector_window_ms,
        tick_seconds=settings.collector_tick_seconds,
        viewport_width=settings.viewport_width,
        viewport_height=settings.viewport_height,
        document_height=settings.document_height,
    )
    _pipeline = EmotionPipeline(_collector, _classifier, _store)
    await _pipeline.start()

    # 5. Retraining (the scheduler object always exists so routes can force a run)
    _scheduler = RetrainingScheduler(_classifier, _store, _stats_repo)
    if settings.scheduler_enabled:
        await _scheduler.start()
        logger.info("server.scheduler_started")

    logger.info("server.started", port=settings.api_port)

    yield  # ← application runs

    # Shutdown
    if _scheduler:
        await _scheduler.stop()
    if _pipeline:
        await _pipeline.stop()
    if _classifier:
        await _classifier.save()
    await dispose_engine()
    logger.info("server.stopped")


app = FastAPI(
    title="Behavioral Emotion API",
    description="Emotion inference from keyboard, pointer and scroll telemetry with online retraining.",
    version=__version__,
    lifespan=lifespan,
)

# ── Middleware ────────────────────────────────────────────────
setup_middleware(app)

# ── Routers ───────────────────────────────────────────────────
app.include_router(emotion_router)
app.include_router(training_router)


# ── Health ────────────────────────────────────────────────────

@app.get("/health", tags=["system"])
async def health():
    return {
        "status": "ok",
        "model_ready": _classifier.is_ready if _classifier else False,
    }


@app.get("/system/info", tags=["system"])
async def system_info():
    """Detailed system status for operational monitoring."""
    settings = get_settings()
    return {
        "version": __version__,
        "collector": _collector.stats if _collector else {"running": False},
        "classifier": {
            "ready": _classifier.is_ready if _classifier else False,
            "training_count": _classifier.training_count if _classifier else 0,
        },
        "pipeline": _pipeline.stats if _pipeline else None,
        "scheduler": {
            "enabled": settings.scheduler_enabled,
            "interval_minutes": settings.scheduler_interval_minutes,
            **(_scheduler.stats if _scheduler else {}),
        },
    }


# ── Event ingestion ───────────────────────────────────────────

@app.post("/events", status_code=202, tags=["events"])
async def ingest_events(batch: EventBatch):
    """Feed a batch of host events into the collector."""
    if _collector is None or not _collector.is_running:
        raise HTTPException(503, "Collector not running.")

    if batch.viewport is not None:
        _collector.update_viewport(
            batch.viewport.width, batch.viewport.height, batch.viewport.document_height
        )

    stamped = [e.timestamp for e in batch.events if e.timestamp is not None]
    shift = _collector.align_host_clock(max(stamped)) if stamped else 0.0

    accepted = 0
    for event in batch.events:
        payload = event.model_dump(exclude_none=True, exclude={"category", "timestamp"})
        timestamp = event.timestamp + shift if event.timestamp is not None else None
        if _collector.record(event.category, timestamp, **payload):
            accepted += 1
    return {"accepted": accepted, "received": len(batch.events)}
