# src/main.py — v3
"""CLI entry point — run, resume, status, checkpoints, cleanup commands.

Usage:
    stageflow run "<theme>" [--user-id U] [--session-id S]
    stageflow resume <session_id>
    stageflow status <session_id>
    stageflow checkpoints <session_id> [--limit N]
    stageflow cleanup [--retention-days N]

Stage workers are loaded from STAGEFLOW_STAGE_WORKERS.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from stageflow.version import __version__

if TYPE_CHECKING:
    from stageflow.config.settings import Settings

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        from stageflow.config.settings import Settings
        from stageflow.logging.logger import setup_logging

        settings = Settings()
        setup_logging(settings, "DEBUG" if args.verbose else None)
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stageflow",
        description=f"stageflow v{__version__} — Five-stage content pipeline",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- run ---
    p_run = subparsers.add_parser("run", help="Run the pipeline for a theme")
    p_run.add_argument("theme", help="Theme to research (1-500 characters)")
    p_run.add_argument("--user-id", default="", help="Owner of the session")
    p_run.add_argument(
        "--session-id", default=None,
        help="Session ID (default: random UUID)",
    )
    p_run.add_argument(
        "--max-retries", type=int, default=None,
        help="Retries per stage, 0-5 (default: STAGEFLOW_MAX_RETRIES)",
    )
    p_run.add_argument(
        "--timeout", type=int, default=None, dest="timeout_s",
        help="Per-stage timeout in seconds, 60-3600",
    )
    p_run.set_defaults(func=_cmd_run)

    # --- resume ---
    p_resume = subparsers.add_parser(
        "resume", help="Resume a session from its latest checkpoint",
    )
    p_resume.add_argument("session_id", help="Session to resume")
    p_resume.set_defaults(func=_cmd_resume)

    # --- status ---
    p_status = subparsers.add_parser("status", help="Show a session's status")
    p_status.add_argument("session_id", help="Session to inspect")
    p_status.set_defaults(func=_cmd_status)

    # --- checkpoints ---
    p_ckpt = subparsers.add_parser(
        "checkpoints", help="List a session's checkpoints, newest first",
    )
    p_ckpt.add_argument("session_id", help="Session to inspect")
    p_ckpt.add_argument(
        "--limit", type=int, default=10,
        help="Maximum rows to show (default: 10)",
    )
    p_ckpt.set_defaults(func=_cmd_checkpoints)

    # --- cleanup ---
    p_cleanup = subparsers.add_parser(
        "cleanup", help="Delete checkpoints past the retention window",
    )
    p_cleanup.add_argument(
        "--retention-days", type=int, default=None,
        help="Age limit in days (default: STAGEFLOW_CHECKPOINT_RETENTION_DAYS)",
    )
    p_cleanup.set_defaults(func=_cmd_cleanup)

    return parser


async def _cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Execute a fresh run."""
    from stageflow.api.facade import run_pipeline
    from stageflow.api.models import RunOptions, RunRequest

    fields = {"theme": args.theme, "user_id": args.user_id}
    if args.session_id:
        fields["session_id"] = args.session_id
    request = RunRequest(
        **fields,
        options=RunOptions(max_retries=args.max_retries, timeout_s=args.timeout_s),
    )

    result = await run_pipeline(request, settings=settings)
    _print_result_summary(result)
    return 0 if result.success else 2


async def _cmd_resume(args: argparse.Namespace, settings: Settings) -> int:
    """Resume a session from its latest checkpoint."""
    from stageflow.api.facade import resume_pipeline

    result = await resume_pipeline(args.session_id, settings=settings)
    _print_result_summary(result)
    return 0 if result.success else 2


async def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Display phase, progress and status for a session."""
    from stageflow.api.facade import get_execution_status

    status = await get_execution_status(args.session_id, settings=settings)
    if status.checkpoint_id is None and status.session_status is None:
        logger.error("Unknown session: %s", args.session_id)
        return 1

    print(f"\nSession {status.session_id}:")
    print(f"  Status:     {status.session_status.value if status.session_status else '-'}")
    print(f"  Phase:      {status.phase.value}")
    print(f"  Progress:   {status.progress}%")
    if status.current_agent:
        print(f"  Agent:      {status.current_agent}")
    if status.error_message:
        print(f"  Error:      {status.error_message}")
    return 0


async def _cmd_checkpoints(args: argparse.Namespace, settings: Settings) -> int:
    """List checkpoints of a session, newest first."""
    from stageflow.checkpoint.checkpoint_factory import create_checkpoint_store

    store = create_checkpoint_store(settings)
    try:
        rows = [
            record async for record in store.list_checkpoints(
                args.session_id, limit=args.limit
            )
        ]
    finally:
        store.close()

    if not rows:
        print(f"\nNo checkpoints for {args.session_id}")
        return 0
    print(f"\nCheckpoints for {args.session_id}:")
    for record in rows:
        print(
            f"  {record.created_at.isoformat()}  {record.id}  "
            f"{record.metadata.phase or '-':<12} {record.metadata.reason}"
        )
    return 0


async def _cmd_cleanup(args: argparse.Namespace, settings: Settings) -> int:
    """Prune old checkpoints."""
    from stageflow.api.facade import cleanup_checkpoints

    removed = await cleanup_checkpoints(args.retention_days, settings=settings)
    print(f"\nRemoved {removed} checkpoints")
    return 0


def _print_result_summary(result: object) -> None:
    """Print a human-readable summary of an ExecutionResult."""
    state = result.state
    print(f"\nRun {'completed' if result.success else 'failed'}:")
    print(f"  Session ID:   {result.session_id}")
    print(f"  Phase:        {state.current_phase.value}")
    print(f"  Progress:     {state.progress}%")
    print(f"  Duration:     {result.execution_time_ms}ms")
    done = [name for name, output in result.outputs.items() if output is not None]
    print(f"  Stages done:  {', '.join(done) or '-'}")
    if result.error is not None:
        print(f"  Error:        {result.error.message} ({result.error.type.value})")
        print(f"  Recovery:     {result.recovery_action.value if result.recovery_action else '-'}")
        print(f"  Retryable:    {'yes' if result.retryable else 'no'}")


if __name__ == "__main__":
    sys.exit(main())
