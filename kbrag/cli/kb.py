# =============================================================================
# kbrag/cli/kb.py: Operator CLI
# =============================================================================
#
# Supported subcommands:
#
#   ingest       Run the ingestion pipeline for one artifact right now
#   status       Print an artifact's processing state and progress log
#   worker       Process queued ingestion jobs (drain once, or --follow)
#   encrypt-key  Encrypt a BYOK / self-hosted API key for storage
#
# Usage examples:
#   python -m kbrag.cli ingest 7f0c...
#   python -m kbrag.cli status 7f0c...
#   python -m kbrag.cli worker --follow
#   python -m kbrag.cli encrypt-key --key sk-...
# =============================================================================

"""Operator CLI for the kbrag knowledge-base core."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

from kbrag.config.settings import Settings
from kbrag.utils.errors import KnowledgeBaseError

# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, app_settings: Settings) -> int:
    """Run the pipeline in-process, bypassing the job queue."""
    from kbrag.main import build_components, initialize_components

    components = build_components(app_settings)
    await initialize_components(components)

    print(f"Ingesting artifact: {args.artifact_id}")
    outcome = await components["ingestion_service"].process(args.artifact_id)

    print(f"\nIngestion {outcome.status.value}:")
    print(f"  Chunks:          {outcome.chunk_count}")
    print(f"  Embedding model: {outcome.embedding_model or '-'}")
    if outcome.entity_count or outcome.relationship_count:
        print(f"  Graph:           {outcome.entity_count} entities, {outcome.relationship_count} relationships")
    if outcome.error:
        print(f"  Error:           {outcome.error}", file=sys.stderr)
        return 1
    return 0


async def _handle_status(args: argparse.Namespace, app_settings: Settings) -> int:
    from kbrag.main import build_components, initialize_components

    components = build_components(app_settings)
    await initialize_components(components)

    artifact = await components["store"].get_artifact(args.artifact_id)
    if artifact is None:
        print(f"Artifact not found: {args.artifact_id}", file=sys.stderr)
        return 1

    print(f"{artifact.kind.value} {artifact.id}: {artifact.display_title}")
    print(f"  Status:    {artifact.status.value}")
    print(f"  Processed: {'yes' if artifact.is_processed else 'no'}")
    if artifact.processing_error:
        print(f"  Error:     {artifact.processing_error}")
    if artifact.progress_log:
        print("\n  Progress log:")
        for entry in artifact.progress_log:
            print(f"    {entry.time}  {entry.progress:>3}%  {entry.message}")
    return 0


async def _handle_worker(args: argparse.Namespace, app_settings: Settings) -> int:
    from kbrag.main import build_components, initialize_components

    components = build_components(app_settings)
    await initialize_components(components)
    job_queue = components["job_queue"]

    if not args.follow:
        runs = await job_queue.drain()
        print(f"Processed {runs} job(s).")
        return 0

    print("Worker running; press Ctrl+C to stop.")
    await job_queue.start()
    try:
        await asyncio.Event().wait()
    finally:
        await job_queue.stop()
    return 0


def _handle_encrypt_key(args: argparse.Namespace, app_settings: Settings) -> int:
    from kbrag.utils.crypto import KeyEncryptor

    plaintext = args.key or getpass.getpass("API key: ")
    if not plaintext:
        print("Error: no key given.", file=sys.stderr)
        return 1
    print(KeyEncryptor(app_settings.encryption_key).encrypt(plaintext))
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m kbrag.cli",
        description="Operate the kbrag knowledge-base core.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    ingest_parser = subparsers.add_parser("ingest", help="Run ingestion for one artifact now")
    ingest_parser.add_argument("artifact_id", help="Document or article id")

    status_parser = subparsers.add_parser("status", help="Show an artifact's processing state")
    status_parser.add_argument("artifact_id", help="Document or article id")

    worker_parser = subparsers.add_parser("worker", help="Process queued ingestion jobs")
    worker_parser.add_argument(
        "--follow",
        action="store_true",
        help="Keep running and wait for new jobs instead of exiting when the queue is empty",
    )

    key_parser = subparsers.add_parser("encrypt-key", help="Encrypt a provider API key for storage")
    key_parser.add_argument("--key", default="", help="Key to encrypt (prompted when omitted)")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, dispatch to a handler and return its exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    app_settings = Settings()

    try:
        if args.command == "encrypt-key":
            return _handle_encrypt_key(args, app_settings)
        if args.command == "ingest":
            return asyncio.run(_handle_ingest(args, app_settings))
        if args.command == "status":
            return asyncio.run(_handle_status(args, app_settings))
        return asyncio.run(_handle_worker(args, app_settings))
    except KnowledgeBaseError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
