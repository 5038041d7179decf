"""Tests for the FastAPI server endpoints."""

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from behavioral_emotion.api import server
from behavioral_emotion.api.server import app
from behavioral_emotion.config import get_settings
from behavioral_emotion.storage.database import dispose_engine


@pytest.fixture
async def client(tmp_path, monkeypatch):
    """Async test client with lifespan (startup / shutdown) fully executed."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("SCHEDULER_MIN_SAMPLES", "3")
    monkeypatch.setenv("MODEL_SYNTHETIC_SAMPLES", "20")
    monkeypatch.setenv("MODEL_SEED", "11")
    monkeypatch.delenv("API_SECRET_KEY", raising=False)
    get_settings.cache_clear()
    await dispose_engine()

    async with LifespanManager(app) as manager:
        transport = ASGITransport(app=manager.app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c

    get_settings.cache_clear()


async def _predict(client: AsyncClient, value: float = 0.3) -> int:
    resp = await client.post("/predict", json={"features": [value] * 40, "context": {"page": "/cart"}})
    assert resp.status_code == 200
    return resp.json()["sample_id"]


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "model_ready": True}


@pytest.mark.asyncio
async def test_system_info(client: AsyncClient):
    resp = await client.get("/system/info")
    assert resp.status_code == 200
    body = resp.json()
    assert body["collector"]["running"] is True
    assert body["classifier"]["training_count"] == 20
    assert body["scheduler"]["enabled"] is False


@pytest.mark.asyncio
async def test_ingest_events(client: AsyncClient):
    batch = {
        "events": [
            {"category": "keydown", "timestamp": 1000, "key": "h", "code": "KeyH"},
            {"category": "keyup", "timestamp": 1080, "key": "h", "code": "KeyH"},
            {"category": "pointer_move", "timestamp": 1100, "x": 40, "y": 60},
            {"category": "scroll", "scroll_y": 250},
        ],
        "viewport": {"width": 1280, "height": 720, "document_height": 3000},
    }
    resp = await client.post("/events", json=batch)
    assert resp.status_code == 202
    assert resp.json() == {"accepted": 4, "received": 4}

    resp = await client.post("/events", json={"events": [{"category": "teleport"}]})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_consecutive_batches_keep_host_spacing(client: AsyncClient):
    def keydowns(start: int) -> dict:
        return {
            "events": [
                {"category": "keydown", "timestamp": start + 200 * i, "key": "a", "code": "KeyA"}
                for i in range(5)
            ]
        }

    # Both batches are posted back to back, so the second one arrives well
    # before a full second of server time has passed.
    assert (await client.post("/events", json=keydowns(0))).status_code == 202
    assert (await client.post("/events", json=keydowns(1000))).status_code == 202

    stamps = [k.timestamp for k in server._collector.get_buffer()["keystrokes"]]
    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert gaps == pytest.approx([200] * 9)


@pytest.mark.asyncio
async def test_emotion_is_neutral_before_first_window(client: AsyncClient):
    resp = await client.get("/emotion")
    assert resp.status_code == 200
    assert resp.json() == {"emotion": "Neutral", "confidence": 12}


@pytest.mark.asyncio
async def test_predict_feedback_and_stats(client: AsyncClient):
    sample_id = await _predict(client)

    resp = await client.get("/emotion")
    assert resp.json()["emotion"] in {"Happy", "Sad", "Angry", "Anxious", "Neutral", "Surprised", "Fearful", "Disgusted"}

    resp = await client.post(
        f"/samples/{sample_id}/feedback",
        json={"feedback_type": "corrected", "corrected_emotion": "Anxious"},
    )
    assert resp.status_code == 201

    resp = await client.get("/samples", params={"only_with_feedback": True})
    (sample,) = resp.json()
    assert sample["corrected_emotion"] == "Anxious"
    assert sample["context"] == {"page": "/cart"}

    resp = await client.get("/stats")
    assert resp.json()["total_samples"] == 1
    assert resp.json()["feedback_counts"] == {"corrected": 1}


@pytest.mark.asyncio
async def test_predict_stores_forty_features(client: AsyncClient):
    resp = await client.post("/predict", json={"features": [0.3] * 5})
    assert resp.status_code == 200

    (sample,) = (await client.get("/samples")).json()
    assert sample["features"] == [0.3] * 5 + [0.0] * 35

    blob = {"samples": [{"features": [0.3] * 5, "emotion": "Happy"}]}
    assert (await client.post("/import", json=blob)).status_code == 400


@pytest.mark.asyncio
async def test_feedback_errors(client: AsyncClient):
    sample_id = await _predict(client)

    resp = await client.post(f"/samples/{sample_id}/feedback", json={"feedback_type": "corrected"})
    assert resp.status_code == 422

    resp = await client.post("/samples/9999/feedback", json={"feedback_type": "correct"})
    assert resp.status_code == 404

    resp = await client.get("/samples/by-label/Bored")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_retrain_needs_enough_samples(client: AsyncClient):
    assert (await client.get("/training/stats")).status_code == 404

    await _predict(client)
    resp = await client.post("/training/retrain")
    assert resp.json() == {"ran": False, "state": "idle", "stats": None}

    for value in (0.1, 0.5):
        await _predict(client, value)
    resp = await client.post("/training/retrain")
    body = resp.json()
    assert body["ran"] is True
    assert body["stats"]["last_training_sample_count"] == 3

    resp = await client.get("/training/stats")
    assert resp.status_code == 200
    assert resp.json()["total_samples"] == 3


@pytest.mark.asyncio
async def test_implicit_feedback(client: AsyncClient):
    resp = await client.post("/training/implicit", json={"action": "purchase"})
    assert resp.status_code == 409

    resp = await client.post("/training/implicit", json={"action": "quick_exit", "features": [0.2] * 40})
    assert resp.json() == {"action": "quick_exit", "trained": True, "emotion": "Disgusted"}

    await _predict(client)
    resp = await client.post("/training/implicit", json={"action": "long_hesitation"})
    assert resp.json()["emotion"] == "Anxious"


@pytest.mark.asyncio
async def test_export_import(client: AsyncClient):
    await _predict(client, 0.1)
    await _predict(client, 0.2)
    blob = (await client.get("/export")).json()
    assert len(blob["samples"]) == 2

    assert (await client.delete("/samples")).json() == {"cleared": True}
    assert (await client.get("/samples")).json() == []

    resp = await client.post("/import", json=blob)
    assert resp.status_code == 201
    assert resp.json() == {"imported": 2}

    resp = await client.post("/import", json={"samples": [{"emotion": "Bored"}]})
    assert resp.status_code == 400
    assert len((await client.get("/samples")).json()) == 2


@pytest.mark.asyncio
async def test_cleanup_and_model_reset(client: AsyncClient):
    await _predict(client)
    resp = await client.post("/training/cleanup")
    assert resp.json() == {"deleted": 0, "retention_days": 30}

    resp = await client.delete("/model")
    assert resp.json() == {"reset": True, "training_count": 20}


@pytest.mark.asyncio
async def test_api_key_required_when_configured(client: AsyncClient, monkeypatch):
    monkeypatch.setenv("API_SECRET_KEY", "s3cret")
    get_settings.cache_clear()

    assert (await client.get("/samples")).status_code == 401
    assert (await client.get("/samples", headers={"X-API-Key": "s3cret"})).status_code == 200
    assert (await client.get("/samples", headers={"Authorization": "Bearer s3cret"})).status_code == 200
    assert (await client.get("/health")).status_code == 200
    assert (await client.get("/emotion")).status_code == 200


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    resp = await client.get("/stats", headers={"X-Request-ID": "abc123"})
    assert resp.headers["X-Request-ID"] == "abc123"

    resp = await client.get("/stats")
    assert len(resp.headers["X-Request-ID"]) == 32
