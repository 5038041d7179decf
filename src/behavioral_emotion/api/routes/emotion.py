"""Inference, stored samples and feedback routes."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from behavioral_emotion.affect.classifier import neutral_prediction
from behavioral_emotion.api.schemas import EmotionResponse, FeedbackRequest, PredictRequest
from behavioral_emotion.errors import InvalidLabelError
from behavioral_emotion.models import parse_emotion

router = APIRouter(tags=["emotion"])


@router.get("/emotion", response_model=EmotionResponse)
async def current_emotion():
    """Latest emotion and confidence; neutral before the first window."""
    from behavioral_emotion.api.server import _pipeline

    latest = _pipeline.latest if _pipeline else None
    prediction = latest.prediction if latest else neutral_prediction()
    return prediction.consumer_view()


@router.post("/predict")
async def predict(req: PredictRequest):
    """Classify a feature vector computed by the host.

    The inference is stored as a training sample unless ``store`` is false.
    """
    from behavioral_emotion.api.server import _pipeline

    if _pipeline is None:
        raise HTTPException(503, "Pipeline not ready.")
    result = await _pipeline.predict_features(req.features, req.context, persist=req.store)
    return result.model_dump(mode="json")


@router.get("/samples")
async def list_samples(
    limit: int = Query(100, ge=1, le=1000),
    only_with_feedback: bool = Query(False),
):
    from behavioral_emotion.api.server import _store

    if _store is None:
        raise HTTPException(503, "Store not ready.")
    samples = await _store.get_samples(limit=limit, only_with_feedback=only_with_feedback)
    return [s.model_dump(mode="json") for s in samples]


@router.get("/samples/by-label/{emotion}")
async def samples_by_label(emotion: str, limit: int = Query(50, ge=1, le=1000)):
    from behavioral_emotion.api.server import _store

    if _store is None:
        raise HTTPException(503, "Store not ready.")
    if parse_emotion(emotion) is None:
        raise HTTPException(404, f"Unknown emotion '{emotion}'.")
    samples = await _store.get_samples_by_label(emotion, limit=limit)
    return [s.model_dump(mode="json") for s in samples]


@router.post("/samples/{sample_id}/feedback", status_code=201)
async def submit_feedback(sample_id: int, req: FeedbackRequest):
    """Confirm, reject or correct a stored prediction."""
    from behavioral_emotion.api.server import _store

    if _store is None:
        raise HTTPException(503, "Store not ready.")
    try:
        found = await _store.store_feedback(sample_id, req.feedback_type, req.corrected_emotion)
    except InvalidLabelError as exc:
        raise HTTPException(422, str(exc)) from exc
    if not found:
        raise HTTPException(404, "Sample not found; feedback was logged anyway.")
    return {"sample_id": sample_id, "feedback_type": req.feedback_type.value}


@router.get("/stats")
async def store_statistics():
    from behavioral_emotion.api.server import _store

    if _store is None:
        raise HTTPException(503, "Store not ready.")
    stats = await _store.get_statistics()
    return stats.model_dump(mode="json")


@router.delete("/samples")
async def clear_samples():
    """Remove every stored sample and the whole feedback log."""
    from behavioral_emotion.api.server import _store

    if _store is None:
        raise HTTPException(503, "Store not ready.")
    await _store.clear()
    return {"cleared": True}
