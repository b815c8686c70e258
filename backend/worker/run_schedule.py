"""Worker: activate scheduled rule deployments and expire lapsed ones.

Usage:
    python -m worker.run_schedule
    python -m worker.run_schedule --org ORG_ID --now 2026-01-15T09:00:00Z
    python -m worker.run_schedule --expire-only
"""

import argparse
from datetime import datetime

import structlog

from db.connection import get_session
from ucr.services._helpers import parse_iso
from ucr.services.orchestrator import DeploymentOrchestrator

logger = structlog.get_logger(__name__)


def parse_instant(raw: str) -> datetime:
    try:
        return parse_iso(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Invalid timestamp '{raw}'. Expected ISO format (e.g. 2026-01-15T09:00:00Z)"
        )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Activate due scheduled deployments and expire lapsed rules"
    )
    parser.add_argument("--org", "-o", default=None, help="Only this organization")
    parser.add_argument(
        "--now", type=parse_instant, default=None,
        help="Evaluate schedules as of this instant (default: current time)",
    )
    parser.add_argument(
        "--expire-only", action="store_true", default=False,
        help="Only deprecate rules whose effective window has ended",
    )
    args = parser.parse_args(argv)

    with get_session() as session:
        orchestrator = DeploymentOrchestrator(session)

        if args.expire_only:
            logger.info("Starting expiry sweep", organization_id=args.org)
            expired = orchestrator.expire_due(args.now, organization_id=args.org)
            logger.info("Expiry sweep complete", expired=len(expired))
            return 0

        logger.info("Starting scheduled activation", organization_id=args.org)
        result = orchestrator.activate_due(args.now, organization_id=args.org)

    logger.info(
        "Scheduled activation complete",
        activated=len(result.activated),
        failed=len(result.failed),
        expired=len(result.expired),
    )

    for record in result.failed:
        logger.warning(
            "scheduled_deployment_failed",
            deployment_id=record.id,
            smart_code=record.smart_code,
            detail=record.error,
        )
    return 1 if result.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
