"""Retraining, maintenance and backup routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query

from behavioral_emotion.api.schemas import ImplicitFeedbackRequest
from behavioral_emotion.errors import ImportDataError

router = APIRouter(tags=["training"])


@router.get("/training/stats")
async def training_stats():
    """Last statistics published by the retraining scheduler."""
    from behavioral_emotion.api.server import _scheduler, _stats_repo

    stats = _scheduler.training_stats if _scheduler else None
    if stats is None and _stats_repo is not None:
        stats = await _stats_repo.get()
    if stats is None:
        raise HTTPException(404, "No retraining run has completed yet.")
    return stats.model_dump(mode="json")


@router.post("/training/retrain")
async def retrain(force: bool = Query(True)):
    """Run one retraining tick now.

    ``force`` skips the minimum interval between runs; the sample threshold
    and the busy guard still apply.
    """
    from behavioral_emotion.api.server import _scheduler

    if _scheduler is None:
        raise HTTPException(503, "Scheduler not ready.")
    ran = await _scheduler.tick(force=force)
    return {
        "ran": ran,
        "state": _scheduler.state.value,
        "stats": _scheduler.training_stats.model_dump(mode="json") if ran and _scheduler.training_stats else None,
    }


@router.post("/training/implicit")
async def implicit_feedback(req: ImplicitFeedbackRequest):
    """Train one step from a browsing action such as a purchase or quick exit."""
    from behavioral_emotion.api.server import _pipeline, _scheduler

    if _scheduler is None or _pipeline is None:
        raise HTTPException(503, "Scheduler not ready.")
    features = req.features if req.features is not None else _pipeline.latest_features
    if features is None:
        raise HTTPException(409, "No features supplied and no window has been processed yet.")
    emotion = await _scheduler.train_with_implicit_feedback(features, req.action)
    return {"action": req.action.value, "trained": emotion is not None, "emotion": emotion}


@router.post("/training/cleanup")
async def cleanup():
    """Apply the retention horizon now."""
    from behavioral_emotion.api.server import _store

    if _store is None:
        raise HTTPException(503, "Store not ready.")
    deleted = await _store.cleanup_old_samples()
    return {"deleted": deleted, "retention_days": _store.retention_days}


@router.get("/export")
async def export_data():
    from behavioral_emotion.api.server import _store

    if _store is None:
        raise HTTPException(503, "Store not ready.")
    return await _store.export_all()


@router.post("/import", status_code=201)
async def import_data(blob: Any = Body(...)):
    """Restore samples from an export.  Ids are reassigned."""
    from behavioral_emotion.api.server import _store

    if _store is None:
        raise HTTPException(503, "Store not ready.")
    try:
        imported = await _store.import_data(blob)
    except ImportDataError as exc:
        raise HTTPException(400, str(exc)) from exc
    return {"imported": imported}


@router.delete("/model")
async def reset_model():
    """Discard the learned weights and bootstrap a fresh model."""
    from behavioral_emotion.api.server import _classifier

    if _classifier is None:
        raise HTTPException(503, "Classifier not ready.")
    await _classifier.reset()
    return {"reset": True, "training_count": _classifier.training_count}
