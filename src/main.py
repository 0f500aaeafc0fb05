# src/main.py - v1
"""CLI entry point.

Usage:
    stagegate register <definition.json|yaml> [--scope-grants]
    stagegate trigger --repository R --branch B --commit C
    stagegate advance|run|status|history <execution_id>
    stagegate approve|reject <execution_id> --actor NAME [--comment TEXT]
    stagegate cancel <execution_id> [--reason TEXT]
    stagegate expire | resume | archive [--days N] | stats <pipeline>
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from stagegate.core.errors import PipelineError
from stagegate.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(_dispatch(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except PipelineError as exc:
        logger.error("%s: %s", exc.error_type, exc)
        return 2
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


async def _dispatch(args: argparse.Namespace) -> int:
    from stagegate.api.facade import build_controller
    from stagegate.config.settings import load_settings
    from stagegate.logging.logger import configure_from_settings

    settings = load_settings()
    configure_from_settings(settings, verbose=args.verbose)
    controller = build_controller(settings)
    try:
        return await args.func(controller, settings, args)
    finally:
        await controller.gate.channel.drain()
        controller.state.close()


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stagegate",
        description=f"stagegate v{__version__} - continuous-delivery pipeline orchestrator",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # --- register ---
    p = subparsers.add_parser("register", help="Register a pipeline definition file")
    p.add_argument("file", type=Path, help="Definition file (.json, .yml, .yaml)")
    p.add_argument(
        "--scope-grants", action="store_true",
        help="Replace declared grants with exactly the required ones",
    )
    p.set_defaults(func=_cmd_register)

    # --- trigger ---
    p = subparsers.add_parser("trigger", help="Simulate a source change event")
    p.add_argument("--repository", required=True)
    p.add_argument("--branch", default="main")
    p.add_argument("--commit", required=True, help="Commit reference")
    p.add_argument("--pusher", default=None)
    p.add_argument("--no-run", action="store_true", help="Only create the executions")
    p.set_defaults(func=_cmd_trigger)

    # --- single-execution commands ---
    for name, func, help_text in (
        ("advance", _cmd_advance, "Run one step of an execution"),
        ("run", _cmd_run, "Run an execution until it suspends or ends"),
        ("status", _cmd_status, "Show an execution report"),
        ("history", _cmd_history, "Show an execution's audit trail"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("execution_id")
        if name == "history":
            p.add_argument("--jsonl", type=Path, default=None, help="Export to a JSONL file")
        p.set_defaults(func=func)

    for name, func in (("approve", _cmd_approve), ("reject", _cmd_reject)):
        p = subparsers.add_parser(name, help=f"{name.capitalize()} a pending approval")
        p.add_argument("execution_id")
        p.add_argument("--actor", required=True, help="Reviewer identity")
        p.add_argument("--comment", default=None)
        p.add_argument("--request-id", default=None)
        p.set_defaults(func=func)

    p = subparsers.add_parser("cancel", help="Cancel an execution at the next stage boundary")
    p.add_argument("execution_id")
    p.add_argument("--reason", default="cancelled by operator")
    p.set_defaults(func=_cmd_cancel)

    p = subparsers.add_parser("expire", help="Expire overdue approvals")
    p.set_defaults(func=_cmd_expire)

    p = subparsers.add_parser("resume", help="Continue in-flight executions after a restart")
    p.set_defaults(func=_cmd_resume)

    p = subparsers.add_parser("archive", help="Remove artifacts of old terminal executions")
    p.add_argument("--days", type=int, default=None, help="Retention (default: settings)")
    p.set_defaults(func=_cmd_archive)

    p = subparsers.add_parser("stats", help="Show outcome statistics of a pipeline")
    p.add_argument("pipeline")
    p.set_defaults(func=_cmd_stats)

    return parser


async def _cmd_register(controller, settings, args: argparse.Namespace) -> int:
    from stagegate.config.pipelines import load_definition

    definition = load_definition(args.file)
    pipeline = await controller.register_pipeline(definition, scope_grants=args.scope_grants)
    print(f"Registered {pipeline.name} v{pipeline.version} ({pipeline.fingerprint[:12]})")
    return 0


async def _cmd_trigger(controller, settings, args: argparse.Namespace) -> int:
    from stagegate.core.models import TriggerEvent
    from stagegate.triggers.webhook import SourceTrigger

    event = TriggerEvent(
        repository=args.repository,
        branch=args.branch,
        commit_ref=args.commit,
        pusher=args.pusher,
    )
    trigger = SourceTrigger(controller)
    if args.no_run:
        started = await trigger.handle(event)
        results = {execution_id: "running" for execution_id in started}
    else:
        results = await trigger.dispatch(event)

    if not results:
        print("No pipeline matched the event")
        return 1
    for execution_id, status in results.items():
        print(f"{execution_id}  {status}")
    return 0


async def _cmd_advance(controller, settings, args: argparse.Namespace) -> int:
    print(await controller.advance(args.execution_id))
    return 0


async def _cmd_run(controller, settings, args: argparse.Namespace) -> int:
    status = await controller.run(args.execution_id)
    print(status)
    return 0 if status != "failed" else 3


async def _cmd_status(controller, settings, args: argparse.Namespace) -> int:
    from stagegate.tracking.exporter import export_report_summary

    print(export_report_summary(await controller.report(args.execution_id)))
    return 0


async def _cmd_history(controller, settings, args: argparse.Namespace) -> int:
    from stagegate.tracking.exporter import export_audit_jsonl

    records = await controller.history(args.execution_id)
    if args.jsonl:
        count = export_audit_jsonl(records, args.jsonl)
        print(f"Exported {count} records to {args.jsonl}")
        return 0
    for record in records:
        who = f" by {record.actor}" if record.actor else ""
        print(
            f"{record.timestamp.isoformat()}  {record.stage:15s} "
            f"{record.event:20s} {record.outcome}{who}"
        )
    return 0


async def _cmd_approve(controller, settings, args: argparse.Namespace) -> int:
    status = await controller.approve(
        args.execution_id, args.actor, args.comment, request_id=args.request_id
    )
    print(status)
    return 0


async def _cmd_reject(controller, settings, args: argparse.Namespace) -> int:
    status = await controller.reject(
        args.execution_id, args.actor, args.comment, request_id=args.request_id
    )
    print(status)
    return 0


async def _cmd_cancel(controller, settings, args: argparse.Namespace) -> int:
    print(await controller.cancel(args.execution_id, args.reason))
    return 0


async def _cmd_expire(controller, settings, args: argparse.Namespace) -> int:
    for execution_id in await controller.expire_overdue():
        print(f"{execution_id}  expired")
    return 0


async def _cmd_resume(controller, settings, args: argparse.Namespace) -> int:
    for execution_id, status in (await controller.resume_pending()).items():
        print(f"{execution_id}  {status}")
    return 0


async def _cmd_archive(controller, settings, args: argparse.Namespace) -> int:
    days = args.days if args.days is not None else settings.artifact_retention_days
    archived = await controller.archive_expired(days)
    print(f"Archived {len(archived)} executions")
    return 0


async def _cmd_stats(controller, settings, args: argparse.Namespace) -> int:
    from stagegate.tracking.exporter import export_stats_summary

    print(export_stats_summary(await controller.stats(args.pipeline)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
