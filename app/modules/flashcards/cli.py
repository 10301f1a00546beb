from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from pathlib import Path

from app.core.db.base import async_session_maker, init_models
from app.core.config import settings
from app.core.logging import setup_logging
from app.modules.flashcards.backfill import backfill_categories
from app.modules.flashcards.category_sync import sync_categories
from app.modules.flashcards.main import FlashcardPipeline, GenerationRequest
from app.modules.flashcards.unify import UnificationEngine
from app.modules.generation.errors import GenerationError
from app.modules.generation.fallback import build_controller


def _load_topic(args: argparse.Namespace) -> str:
    if args.topic and args.topic_file:
        raise SystemExit("Provide either --topic or --topic-file, not both")
    if args.topic_file:
        return Path(args.topic_file).read_text(encoding="utf-8").strip()
    if args.topic:
        return args.topic
    raise SystemExit("--topic or --topic-file is required")


async def _generate(args: argparse.Namespace) -> dict:
    request = GenerationRequest(
        topic=_load_topic(args),
        count=args.count,
        category=args.category,
        contributor_id=args.contributor,
    )
    async with async_session_maker() as session:
        outcome = await FlashcardPipeline(session, build_controller()).generate(request)
        data = {
            "normalized_topic": outcome.payload.normalized_topic,
            "category": outcome.payload.category,
            "flashcards": [c.model_dump() for c in outcome.payload.flashcards],
            "model": outcome.model,
        }
        if outcome.flashcard_set is not None:
            data["set_id"] = outcome.flashcard_set.id
            data["created"] = outcome.unified.created
        if outcome.storage_error:
            data["storage_error"] = outcome.storage_error
        return data


async def _consolidate(args: argparse.Namespace) -> dict:
    async with async_session_maker() as session:
        report = await UnificationEngine(session).consolidate()
    return asdict(report)


async def _sync(args: argparse.Namespace) -> dict:
    async with async_session_maker() as session:
        report = await sync_categories(session)
    return asdict(report)


async def _backfill(args: argparse.Namespace) -> dict:
    async with async_session_maker() as session:
        report = await backfill_categories(
            session, build_controller(), limit=args.limit, item_delay=args.delay
        )
    return asdict(report)


async def _run(handler, args: argparse.Namespace) -> dict:
    if settings.database.auto_create:
        await init_models()
    return await handler(args)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="flashcards", description="Flashcard generation and maintenance CLI"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    g = sub.add_parser("generate", help="Generate flashcards for a topic and store them")
    g.add_argument("--topic", "-t", help="Topic (text)")
    g.add_argument("--topic-file", help="Path to a file containing the topic")
    g.add_argument("--count", "-n", type=int, default=None, help="Number of cards")
    g.add_argument("--category", "-c", default=None, help="Category hint")
    g.add_argument("--contributor", default=None, help="Contributor id")
    g.set_defaults(handler=_generate)

    c = sub.add_parser("consolidate", help="Merge duplicate sets that share a topic")
    c.set_defaults(handler=_consolidate)

    s = sub.add_parser("sync-categories", help="Repair category rows and set links")
    s.set_defaults(handler=_sync)

    b = sub.add_parser("backfill", help="Categorize sets that have no category")
    b.add_argument("--limit", type=int, default=None, help="Sets per run")
    b.add_argument("--delay", type=float, default=None, help="Seconds between sets")
    b.set_defaults(handler=_backfill)

    args = parser.parse_args(argv)
    setup_logging()
    try:
        result = asyncio.run(_run(args.handler, args))
    except GenerationError as exc:
        print(json.dumps({"error": type(exc).__name__, "detail": str(exc)}, ensure_ascii=False))
        return 1
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
