"""
Regulatory Truth CLI
====================

Operator commands for the pipeline.

Usage:
    regtruth seed
    regtruth sentinel [--source SOURCE_ID] [--limit N]
    regtruth extract [--evidence EVIDENCE_ID ...] [--limit N]
    regtruth publish RULE_ID [RULE_ID ...]
    regtruth resolve-conflicts
    regtruth digest

Exit codes:
    0  success
    1  at least one item of the batch failed or was blocked
    2  fatal configuration error (store unreachable, provider missing)

Version: 0.1.0
"""

import argparse
import asyncio
import signal
import sys
from collections.abc import Awaitable, Callable

from shared.config import settings
from shared.logging import get_logger, run_context, setup_logging
from services.regulatory_truth.errors import ConfigurationError, RegulatoryTruthError
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2

PipelineFactory = Callable[[bool], Awaitable[RegulatoryTruthPipeline]]


async def cmd_seed(pipeline: RegulatoryTruthPipeline, args: argparse.Namespace) -> int:
    report = await pipeline.seed()
    logger.info(
        "seed_completed",
        created=report.created,
        existing=len(report.existing),
        entry_items=report.entry_items_created,
    )
    return EXIT_OK


async def cmd_sentinel(pipeline: RegulatoryTruthPipeline, args: argparse.Namespace) -> int:
    report = await pipeline.run_sentinel(
        source_id=args.source,
        limit=args.limit,
        cancel_event=args.cancel_event,
    )
    logger.info(
        "sentinel_summary",
        due=report.due,
        scanned=report.batch.total,
        failed=report.batch.failed,
        skipped=report.batch.skipped,
        changed=report.changed,
        new_evidence=len(report.evidence_ids),
        discovered=report.discovered,
    )
    return EXIT_FAILURES if report.batch.has_failures else EXIT_OK


async def cmd_extract(pipeline: RegulatoryTruthPipeline, args: argparse.Namespace) -> int:
    batch = await pipeline.run_extraction(
        evidence_ids=args.evidence or None,
        limit=args.limit,
        cancel_event=args.cancel_event,
    )
    outcomes = [r.value for r in batch.results if r.ok and r.value is not None]
    logger.info(
        "extraction_summary",
        evidence=batch.total,
        failed=batch.failed,
        skipped=batch.skipped,
        rules=sum(len(o.rule_ids) for o in outcomes),
        rejected_facts=sum(o.rejected_facts for o in outcomes),
        conflicts=sum(len(o.conflict_ids) for o in outcomes),
    )
    for entity_id, error in batch.errors:
        logger.error("extraction_failed", evidence_id=entity_id, error=error)
    return EXIT_FAILURES if batch.has_failures else EXIT_OK


async def cmd_publish(pipeline: RegulatoryTruthPipeline, args: argparse.Namespace) -> int:
    report = await pipeline.publish(args.rule_ids, actor=args.actor)
    for result in report.blocked:
        logger.error(
            "publish_blocked",
            rule_id=result.rule_id,
            block_reason=result.block_reason.value if result.block_reason else None,
            message=result.message,
        )
    logger.info("publish_summary", published=report.published, blocked=len(report.blocked))
    return EXIT_OK if report.all_published else EXIT_FAILURES


async def cmd_resolve_conflicts(pipeline: RegulatoryTruthPipeline, args: argparse.Namespace) -> int:
    outcomes = await pipeline.resolve_conflicts()
    unresolved = [o for o in outcomes if not o.resolved]
    for outcome in unresolved:
        logger.warning("conflict_left_open", conflict_id=outcome.conflict_id, message=outcome.message)
    logger.info("resolve_summary", total=len(outcomes), resolved=len(outcomes) - len(unresolved))
    return EXIT_FAILURES if unresolved else EXIT_OK


async def cmd_digest(pipeline: RegulatoryTruthPipeline, args: argparse.Namespace) -> int:
    digest = await pipeline.send_digest()
    logger.info("digest_summary", status=digest.status, warnings=len(digest.warnings), delivered=digest.delivered)
    return EXIT_OK if all(digest.delivered.values()) else EXIT_FAILURES


COMMANDS: dict[str, Callable[[RegulatoryTruthPipeline, argparse.Namespace], Awaitable[int]]] = {
    "seed": cmd_seed,
    "sentinel": cmd_sentinel,
    "extract": cmd_extract,
    "publish": cmd_publish,
    "resolve-conflicts": cmd_resolve_conflicts,
    "digest": cmd_digest,
}


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for every command."""
    parser = argparse.ArgumentParser(
        prog="regtruth",
        description="Regulatory truth pipeline operator commands",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed", help="Seed the built-in source catalogue")

    sentinel = sub.add_parser("sentinel", help="Scan due items")
    sentinel.add_argument("--source", help="Only scan this source id")
    sentinel.add_argument("--limit", type=int, help="Maximum items to scan")

    extract = sub.add_parser("extract", help="Extract rules from evidence")
    extract.add_argument(
        "--evidence",
        action="append",
        help="Evidence id to extract (repeatable; default: all not yet extracted)",
    )
    extract.add_argument("--limit", type=int, help="Maximum evidence records to extract")

    publish = sub.add_parser("publish", help="Publish approved rules")
    publish.add_argument("rule_ids", nargs="+", metavar="RULE_ID")
    publish.add_argument("--actor", default="cli", help="Recorded in the rule history")

    sub.add_parser("resolve-conflicts", help="Arbitrate every open conflict")
    sub.add_parser("digest", help="Send the daily watchdog digest")

    return parser


async def run_command(
    args: argparse.Namespace,
    factory: PipelineFactory = RegulatoryTruthPipeline.from_settings,
) -> int:
    """Build the pipeline, run one command and release resources."""
    args.cancel_event = asyncio.Event()
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, args.cancel_event.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("sigterm_handler_unavailable")

    try:
        pipeline = await factory(args.command == "extract")
    except ConfigurationError as e:
        logger.error("configuration_error", command=args.command, error=str(e))
        return EXIT_CONFIG

    try:
        with run_context(command=args.command):
            return await COMMANDS[args.command](pipeline, args)
    except ConfigurationError as e:
        logger.error("configuration_error", command=args.command, error=str(e))
        return EXIT_CONFIG
    except RegulatoryTruthError as e:
        logger.error("command_failed", command=args.command, error=str(e), error_type=type(e).__name__)
        return EXIT_FAILURES
    finally:
        await pipeline.close()


def main(argv: list[str] | None = None) -> int:
    """Console entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(
        log_level=args.log_level or settings.log_level.value,
        json_logs=args.json_logs or settings.is_production,
        service_name="regtruth-cli",
    )
    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
