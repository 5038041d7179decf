"""Data-access layer — async repositories over the SQLAlchemy tables.

Every public write opens its own session and runs inside ``session.begin()``,
so each call is one self-contained transaction: it either commits whole or
leaves previously committed state untouched.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

import structlog
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from behavioral_emotion.config import get_settings
from behavioral_emotion.errors import ImportDataError, InvalidLabelError
from behavioral_emotion.models import (
    FEATURE_COUNT,
    Emotion,
    FeedbackRecord,
    FeedbackType,
    StoreStatistics,
    TrainingSample,
    TrainingStats,
    coerce_features,
    parse_emotion,
    to_naive_utc,
    utc_now,
)
from behavioral_emotion.storage.database import (
    FeedbackRow,
    ModelStateRow,
    TrainingSampleRow,
    TrainingStatsRow,
    get_session_factory,
)

logger = structlog.get_logger(__name__)

EXPORT_VERSION = 1


def _require_emotion(value: Any) -> Emotion:
    emotion = parse_emotion(value)
    if emotion is None:
        raise InvalidLabelError(f"Unknown emotion label: {value!r}")
    return emotion


class BaseRepository:
    """Shared base with session management for all repositories."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    @property
    def _factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()


class _ImportedSample(BaseModel):
    """Shape accepted by :meth:`TrainingStore.import_data` (ids are ignored)."""

    features: list[float] = Field(min_length=FEATURE_COUNT, max_length=FEATURE_COUNT)
    emotion: Emotion
    corrected_emotion: Emotion | None = None
    confidence: float = Field(0.0, ge=0, le=100)
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None
    feedback_type: FeedbackType | None = None


class TrainingStore(BaseRepository):
    """Durable corpus of inferred samples plus the feedback log."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        max_samples: int | None = None,
        retention_days: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(session_factory)
        settings = get_settings()
        self.max_samples = max_samples if max_samples is not None else settings.store_max_samples
        self.retention_days = (
            retention_days if retention_days is not None else settings.store_retention_days
        )
        self._clock = clock

    @staticmethod
    def _to_sample(row: TrainingSampleRow) -> TrainingSample:
        return TrainingSample(
            id=row.id,
            features=json.loads(row.features_json),
            emotion=Emotion(row.emotion),
            corrected_emotion=Emotion(row.corrected_emotion) if row.corrected_emotion else None,
            confidence=row.confidence,
            context=json.loads(row.context_json or "{}"),
            timestamp=row.timestamp,
            feedback_type=FeedbackType(row.feedback_type) if row.feedback_type else None,
        )

    # ── Write ─────────────────────────────────────────────────

    async def store_sample(
        self,
        features: Sequence[float],
        emotion: Emotion | str,
        confidence: float,
        context: dict[str, Any] | None = None,
    ) -> int:
        """Persist one inference and return its id.

        *features* is padded with zeros or truncated to 40 values.
        Insert and FIFO eviction share a transaction; the retention sweep
        runs afterwards as its own transaction.
        """
        label = _require_emotion(emotion)
        row = TrainingSampleRow(
            features_json=json.dumps(coerce_features(features)),
            emotion=label.value,
            confidence=max(0.0, min(100.0, float(confidence))),
            context_json=json.dumps(context or {}, default=str),
            timestamp=self._clock(),
        )
        async with self._factory() as session, session.begin():
            session.add(row)
            await session.flush()
            sample_id = row.id
            evicted = await self._evict_overflow(session)

        logger.debug("store.sample_stored", sample_id=sample_id, emotion=label.value, evicted=evicted)
        await self.cleanup_old_samples()
        return sample_id

    async def _evict_overflow(self, session: AsyncSession) -> int:
        total = await session.scalar(select(func.count()).select_from(TrainingSampleRow)) or 0
        overflow = total - self.max_samples
        if overflow <= 0:
            return 0
        oldest = (
            await session.scalars(
                select(TrainingSampleRow.id)
                .order_by(TrainingSampleRow.timestamp.asc(), TrainingSampleRow.id.asc())
                .limit(overflow)
            )
        ).all()
        await session.execute(delete(TrainingSampleRow).where(TrainingSampleRow.id.in_(oldest)))
        return len(oldest)

    async def store_feedback(
        self,
        sample_id: int,
        feedback_type: FeedbackType | str,
        corrected_emotion: Emotion | str | None = None,
    ) -> bool:
        """Append a feedback record and annotate the sample, atomically.

        Returns whether the sample still exists.  The record is appended
        either way; the log is independent of the corpus.
        """
        ftype = FeedbackType(feedback_type)
        corrected = _require_emotion(corrected_emotion) if corrected_emotion is not None else None
        if ftype is FeedbackType.CORRECTED and corrected is None:
            raise InvalidLabelError("'corrected' feedback needs a corrected emotion")

        async with self._factory() as session, session.begin():
            session.add(
                FeedbackRow(
                    sample_id=sample_id,
                    feedback_type=ftype.value,
                    corrected_emotion=corrected.value if corrected else None,
                    timestamp=self._clock(),
                )
            )
            row = await session.get(TrainingSampleRow, sample_id)
            if row is not None:
                row.feedback_type = ftype.value
                if corrected is not None:
                    row.corrected_emotion = corrected.value

        logger.info(
            "store.feedback_stored",
            sample_id=sample_id,
            feedback_type=ftype.value,
            found=row is not None,
        )
        return row is not None

    # ── Read ──────────────────────────────────────────────────

    async def get_samples(self, limit: int = 100, only_with_feedback: bool = False) -> list[TrainingSample]:
        """Most recent first."""
        stmt = select(TrainingSampleRow)
        if only_with_feedback:
            stmt = stmt.where(TrainingSampleRow.feedback_type.is_not(None))
        stmt = stmt.order_by(TrainingSampleRow.timestamp.desc(), TrainingSampleRow.id.desc()).limit(limit)
        async with self._factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [self._to_sample(r) for r in rows]

    async def get_samples_without_feedback(self, limit: int = 50) -> list[TrainingSample]:
        stmt = (
            select(TrainingSampleRow)
            .where(TrainingSampleRow.feedback_type.is_(None))
            .order_by(TrainingSampleRow.timestamp.desc(), TrainingSampleRow.id.desc())
            .limit(limit)
        )
        async with self._factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [self._to_sample(r) for r in rows]

    async def get_samples_by_label(self, label: Emotion | str, limit: int = 50) -> list[TrainingSample]:
        """Samples whose *predicted* label is *label*, most recent first."""
        emotion = _require_emotion(label)
        stmt = (
            select(TrainingSampleRow)
            .where(TrainingSampleRow.emotion == emotion.value)
            .order_by(TrainingSampleRow.timestamp.desc(), TrainingSampleRow.id.desc())
            .limit(limit)
        )
        async with self._factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [self._to_sample(r) for r in rows]

    async def get_sample(self, sample_id: int) -> TrainingSample | None:
        async with self._factory() as session:
            row = await session.get(TrainingSampleRow, sample_id)
        return self._to_sample(row) if row is not None else None

    async def get_feedback(self, sample_id: int | None = None, limit: int = 100) -> list[FeedbackRecord]:
        stmt = select(FeedbackRow)
        if sample_id is not None:
            stmt = stmt.where(FeedbackRow.sample_id == sample_id)
        stmt = stmt.order_by(FeedbackRow.timestamp.desc(), FeedbackRow.id.desc()).limit(limit)
        async with self._factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [
            FeedbackRecord(
                id=r.id,
                sample_id=r.sample_id,
                feedback_type=FeedbackType(r.feedback_type),
                corrected_emotion=Emotion(r.corrected_emotion) if r.corrected_emotion else None,
                timestamp=r.timestamp,
            )
            for r in rows
        ]

    async def count(self) -> int:
        async with self._factory() as session:
            return await session.scalar(select(func.count()).select_from(TrainingSampleRow)) or 0

    async def get_statistics(self) -> StoreStatistics:
        async with self._factory() as session:
            total, avg_conf, oldest, newest = (
                await session.execute(
                    select(
                        func.count(TrainingSampleRow.id),
                        func.avg(TrainingSampleRow.confidence),
                        func.min(TrainingSampleRow.timestamp),
                        func.max(TrainingSampleRow.timestamp),
                    )
                )
            ).one()
            total_feedback = await session.scalar(select(func.count()).select_from(FeedbackRow)) or 0
            emotion_rows = (
                await session.execute(
                    select(TrainingSampleRow.emotion, func.count()).group_by(TrainingSampleRow.emotion)
                )
            ).all()
            feedback_rows = (
                await session.execute(
                    select(TrainingSampleRow.feedback_type, func.count())
                    .where(TrainingSampleRow.feedback_type.is_not(None))
                    .group_by(TrainingSampleRow.feedback_type)
                )
            ).all()

        return StoreStatistics(
            total_samples=total or 0,
            total_feedback=total_feedback,
            emotion_counts={e: n for e, n in emotion_rows},
            feedback_counts={f: n for f, n in feedback_rows},
            avg_confidence=round(float(avg_conf), 1) if avg_conf is not None else 0.0,
            oldest_sample=oldest,
            newest_sample=newest,
        )

    # ── Maintenance ───────────────────────────────────────────

    async def cleanup_old_samples(self, now: datetime | None = None) -> int:
        """Delete samples older than the retention horizon.  Returns count deleted."""
        cutoff = (now or self._clock()) - timedelta(days=self.retention_days)
        async with self._factory() as session, session.begin():
            result = await session.execute(
                delete(TrainingSampleRow).where(TrainingSampleRow.timestamp < cutoff)
            )
        deleted = result.rowcount or 0
        if deleted:
            logger.info("store.cleanup", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted

    async def clear(self) -> None:
        """Remove every sample and every feedback record."""
        async with self._factory() as session, session.begin():
            await session.execute(delete(TrainingSampleRow))
            await session.execute(delete(FeedbackRow))
        logger.warning("store.cleared")

    # ── Backup / restore ──────────────────────────────────────

    async def export_all(self) -> dict[str, Any]:
        samples = await self.get_samples(limit=self.max_samples)
        stats = await self.get_statistics()
        return {
            "samples": [s.model_dump(mode="json") for s in samples],
            "stats": stats.model_dump(mode="json"),
            "export_date": self._clock().isoformat(),
            "version": EXPORT_VERSION,
        }

    async def import_data(self, blob: Any) -> int:
        """Restore samples from an :meth:`export_all` blob.

        Ids are reassigned.  The whole blob is validated before anything is
        written; an invalid blob raises :class:`ImportDataError` and changes
        nothing.
        """
        if not isinstance(blob, dict) or not isinstance(blob.get("samples"), list):
            raise ImportDataError("Import data must be an object with a 'samples' list")
        try:
            incoming = [_ImportedSample.model_validate(s) for s in blob["samples"]]
        except ValidationError as exc:
            raise ImportDataError(f"Invalid sample in import data: {exc.error_count()} error(s)") from exc

        now = self._clock()
        rows = [
            TrainingSampleRow(
                features_json=json.dumps(coerce_features(s.features)),
                emotion=s.emotion.value,
                corrected_emotion=s.corrected_emotion.value if s.corrected_emotion else None,
                confidence=s.confidence,
                context_json=json.dumps(s.context, default=str),
                feedback_type=s.feedback_type.value if s.feedback_type else None,
                timestamp=to_naive_utc(s.timestamp) if s.timestamp else now,
            )
            for s in incoming
        ]
        async with self._factory() as session, session.begin():
            session.add_all(rows)
            await session.flush()
            evicted = await self._evict_overflow(session)

        logger.info("store.imported", count=len(rows), evicted=evicted)
        return len(rows)


class ModelStateRepository(BaseRepository):
    """Opaque persisted classifier state, stored under a single key."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        key: str = "emotion_classifier",
    ) -> None:
        super().__init__(session_factory)
        self.key = key

    async def get(self) -> dict[str, Any] | None:
        async with self._factory() as session:
            row = await session.get(ModelStateRow, self.key)
        if row is None:
            return None
        return json.loads(row.state_json)

    async def save(self, blob: dict[str, Any]) -> None:
        async with self._factory() as session, session.begin():
            await session.merge(
                ModelStateRow(
                    key=self.key,
                    state_json=json.dumps(blob, default=str),
                    training_count=int(blob.get("training_count", 0)),
                    version=int(blob.get("version", 1)),
                    updated_at=utc_now(),
                )
            )

    async def delete(self) -> bool:
        async with self._factory() as session, session.begin():
            result = await session.execute(delete(ModelStateRow).where(ModelStateRow.key == self.key))
        return bool(result.rowcount)


class TrainingStatsRepository(BaseRepository):
    """Latest published :class:`TrainingStats` snapshot."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        key: str = "retraining",
    ) -> None:
        super().__init__(session_factory)
        self.key = key

    async def get(self) -> TrainingStats | None:
        async with self._factory() as session:
            row = await session.get(TrainingStatsRow, self.key)
        if row is None:
            return None
        return TrainingStats.model_validate_json(row.stats_json)

    async def publish(self, stats: TrainingStats) -> None:
        async with self._factory() as session, session.begin():
            await session.merge(
                TrainingStatsRow(key=self.key, stats_json=stats.model_dump_json(), updated_at=utc_now())
            )
