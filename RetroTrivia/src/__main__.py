"""Command line entry point: load a batch of questions and print them."""

import argparse
import asyncio
import logging
import uuid
from pathlib import Path

from dotenv import load_dotenv

from .cli import _ensure_utf8_stdout, question_payload, say, status_payload
from .logging_utils import setup_logging
from .models import Difficulty
from .service_container import ServiceContainer, build_container
from .sources.bundle import BundledQuestionSet


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="RetroTrivia question supply")
    parser.add_argument("--config", default="settings.yaml", help="Path to the YAML settings")
    parser.add_argument(
        "--difficulty",
        choices=[d.value for d in Difficulty],
        help="Difficulty filter, saved as the new preference",
    )
    parser.add_argument("--count", type=int, default=5, help="Questions to print")
    parser.add_argument("--reveal", action="store_true", help="Include the correct answers")
    parser.add_argument("--bundle-only", action="store_true", help="Skip every source but the bundle")
    parser.add_argument("--status", action="store_true", help="Print the pool status at the end")
    parser.add_argument("--clear-cache", action="store_true", help="Empty the local question cache first")
    parser.add_argument(
        "--upload",
        metavar="JSON",
        help="Seed the record store with the questions in JSON (bundle format) and exit",
    )
    parser.add_argument(
        "--delete-remote", action="store_true", help="Delete every record store question and exit"
    )
    return parser.parse_args(argv)


async def maintain_record_store(args: argparse.Namespace, container: ServiceContainer) -> int:
    client = container.record_store()
    if args.delete_remote:
        deleted = await client.delete_all()
        say({"type": "deleted", "count": deleted})
    if args.upload:
        questions = BundledQuestionSet(args.upload).load_all()
        result = await client.upload_questions(questions)
        say({"type": "uploaded", "saved": result.saved, "failed": result.failed})
        return 0 if questions and not result.failed else 1
    return 0


async def run(args: argparse.Namespace, container: ServiceContainer) -> int:
    try:
        if args.upload or args.delete_remote:
            return await maintain_record_store(args, container)
        manager = container.question_manager()
        if args.clear_cache:
            manager.clear_cache()
        if args.difficulty:
            manager.set_difficulty(Difficulty.from_str(args.difficulty))
        manager.force_bundle_mode = args.bundle_only

        await manager.load_questions()
        served = 0
        while served < args.count:
            question = manager.get_next_question()
            if question is None:
                say(status_payload("No questions available"))
                break
            say(question_payload(question, reveal=args.reveal))
            manager.mark_question_asked(question.id)
            served += 1

        await manager.wait_for_refill()
        if args.status:
            say(status_payload(manager.get_pool_status()))
        return 0 if served else 1
    finally:
        await container.aclose()


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    _ensure_utf8_stdout()
    args = parse_args(argv)
    container = build_container(args.config)
    settings = container.settings
    listener = setup_logging(
        Path(settings.log_path),
        logging.DEBUG if settings.debug else settings.log_level,
        console=settings.debug,
        session_id=uuid.uuid4().hex[:8],
    )
    try:
        return asyncio.run(run(args, container))
    finally:
        listener.stop()


if __name__ == "__main__":
    raise SystemExit(main())
