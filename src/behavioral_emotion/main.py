"""Application entrypoint — start the API server or run one-off commands."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import uvicorn

from behavioral_emotion.config import get_settings
from behavioral_emotion.logger import setup_logging


async def _retrain() -> bool:
    from behavioral_emotion.affect.classifier import EmotionClassifier
    from behavioral_emotion.scheduler.service import RetrainingScheduler
    from behavioral_emotion.storage.database import dispose_engine, init_db
    from behavioral_emotion.storage.repository import (
        ModelStateRepository,
        TrainingStatsRepository,
        TrainingStore,
    )

    settings = get_settings()
    await init_db()
    try:
        classifier = EmotionClassifier(
            ModelStateRepository(),
            learning_rate=settings.model_learning_rate,
            persist_every=settings.model_persist_every,
            synthetic_samples=settings.model_synthetic_samples,
            seed=settings.model_seed,
        )
        await classifier.initialize()
        scheduler = RetrainingScheduler(classifier, TrainingStore(), TrainingStatsRepository())
        ran = await scheduler.tick(force=True)
        if ran and scheduler.training_stats:
            print(scheduler.training_stats.model_dump_json(indent=2))
        else:
            print("Retraining skipped (not enough samples).")
        return ran
    finally:
        await dispose_engine()


async def _with_store(action: str, path: str | None = None) -> None:
    from behavioral_emotion.storage.database import dispose_engine, init_db
    from behavioral_emotion.storage.repository import TrainingStore

    await init_db()
    store = TrainingStore()
    try:
        if action == "stats":
            print((await store.get_statistics()).model_dump_json(indent=2))
        elif action == "export":
            blob = await store.export_all()
            Path(path).write_text(json.dumps(blob, indent=2), encoding="utf-8")
            print(f"Exported {len(blob['samples'])} samples to {path}.")
        elif action == "import":
            blob = json.loads(Path(path).read_text(encoding="utf-8"))
            print(f"Imported {await store.import_data(blob)} samples.")
        elif action == "cleanup":
            print(f"Deleted {await store.cleanup_old_samples()} expired samples.")
    finally:
        await dispose_engine()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="behavioral-emotion",
        description="Emotion inference from interaction telemetry.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── serve ─────────────────────────────────────────────────
    serve_parser = sub.add_parser("serve", help="Start the API server.")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # ── maintenance ───────────────────────────────────────────
    sub.add_parser("init-db", help="Create database tables.")
    sub.add_parser("retrain", help="Run one retraining cycle now.")
    sub.add_parser("stats", help="Print training store statistics.")
    sub.add_parser("cleanup", help="Delete samples past the retention horizon.")

    export_parser = sub.add_parser("export", help="Write a JSON backup of the training store.")
    export_parser.add_argument("path")
    import_parser = sub.add_parser("import", help="Restore samples from a JSON backup.")
    import_parser.add_argument("path")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    if args.command == "serve":
        uvicorn.run(
            "behavioral_emotion.api.server:app",
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
            reload=args.reload,
        )
    elif args.command == "init-db":
        from behavioral_emotion.storage.database import init_db

        asyncio.run(init_db())
        print("Database tables created.")
    elif args.command == "retrain":
        asyncio.run(_retrain())
    elif args.command in ("stats", "cleanup", "export", "import"):
        asyncio.run(_with_store(args.command, getattr(args, "path", None)))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
