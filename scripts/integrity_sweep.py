#!/usr/bin/env python3
"""
Run a consistency sweep, and optionally repair what it finds.

Usage:
    python scripts/integrity_sweep.py                       # report only
    python scripts/integrity_sweep.py --dry-run             # plan repairs
    python scripts/integrity_sweep.py --repair              # safe repairs
    python scripts/integrity_sweep.py --repair --confirm-destructive
    python scripts/integrity_sweep.py --json --database-url sqlite:////tmp/ops.db

Safe repairs (synthesizing an invoice, clamping a negative lot, projecting
a ledger row, recomputing a batch cost) run with --repair.  Repairs that
delete rows are listed as pending until --confirm-destructive is given.

Exit codes:
    0  store is clean after the run
    1  findings remain
    2  configuration error or another sweep holds the maintenance lock
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from ops_config import get_active_config
from ops_kernel.db.engine import get_session, init_engine_from_url, reset_engine
from ops_kernel.domain.integrity import AuditReport, RepairReport
from ops_kernel.domain.settings import SYSTEM_ACTOR_ID
from ops_kernel.exceptions import MaintenanceLockHeldError
from ops_kernel.logging_config import configure_logging
from ops_kernel.selectors.consistency_auditor import ConsistencyAuditor
from ops_kernel.services.integrity_issue_service import IntegrityIssueService
from ops_kernel.services.repair_engine import RepairEngine

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Detect (and optionally repair) cross-table integrity faults.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--database-url", help="Overrides config and DATABASE_URL")
    parser.add_argument("--config", type=Path, help="Configuration YAML file")
    parser.add_argument(
        "--dry-run", action="store_true", help="Plan repairs without writing anything"
    )
    parser.add_argument("--repair", action="store_true", help="Apply repairs")
    parser.add_argument(
        "--confirm-destructive",
        action="store_true",
        help="Allow repairs that delete rows",
    )
    parser.add_argument("--json", action="store_true", help="Print a JSON report on stdout")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    return parser


def _print_report(before: AuditReport, repair: RepairReport | None, after: AuditReport) -> None:
    print(f"Findings: {len(before.findings)}")
    for category, count in sorted(before.counts_by_category.items()):
        print(f"  {category:<26} {count}")
    for finding in before.findings:
        print(f"  [{finding.severity.value:<8}] {finding.category.value}: {finding.description}")

    if repair is not None:
        mode = "Planned" if repair.dry_run else "Repairs"
        print(f"\n{mode} (sweep {repair.sweep_id}):")
        for action in repair.actions:
            line = f"  {action.outcome.value:<21} {action.finding.category.value}: {action.description}"
            if action.error:
                line += f" ({action.error})"
            print(line)

    status = "clean" if after.is_clean else f"{len(after.findings)} finding(s) remain"
    print(f"\nResult: {status}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError, TypeError, yaml.YAMLError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_ERROR

    database_url = args.database_url or config.database.url
    if not database_url:
        print(
            "Configuration error: no database URL (use --database-url or DATABASE_URL)",
            file=sys.stderr,
        )
        return EXIT_ERROR

    init_engine_from_url(
        database_url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        busy_timeout_seconds=config.database.sqlite_busy_timeout_seconds,
    )
    session = get_session()
    try:
        auditor = ConsistencyAuditor(session, money_decimal_places=config.kernel.money_decimal_places)
        before = auditor.run_full_check()
        repair = None

        if args.repair or args.dry_run:
            engine = RepairEngine(session, settings=config.kernel, actor_id=SYSTEM_ACTOR_ID)
            try:
                repair = engine.run(
                    dry_run=args.dry_run or not args.repair,
                    confirm_destructive=args.confirm_destructive,
                )
            except MaintenanceLockHeldError as exc:
                print(f"Sweep refused: {exc}", file=sys.stderr)
                return EXIT_ERROR
            after = before if repair.dry_run else auditor.run_full_check()
        else:
            IntegrityIssueService(session).record_findings(before.findings)
            session.commit()
            after = before

        if args.json:
            print(json.dumps(
                {
                    "config_id": config.config_id,
                    "config_checksum": config.checksum,
                    "before": before.to_dict(),
                    "repair": repair.to_dict() if repair else None,
                    "after": after.to_dict(),
                },
                indent=2,
                default=str,
            ))
        else:
            _print_report(before, repair, after)

        return EXIT_CLEAN if after.is_clean else EXIT_FINDINGS
    finally:
        session.close()
        reset_engine()


if __name__ == "__main__":
    sys.exit(main())
