"""
dry_run.py — Generate or regenerate a clerkship schedule from CSV tables

Full orchestration:
  1. Load the snapshot (students, preceptors, patterns, rules, assignments)
  2. Validate references and resolve every requirement's configuration
  3. Generate the window, or regenerate it from a cutover date
  4. Check constraints (hard + soft)
  5. Export assignment CSV, schedule report, violations report
  6. Print summary to console

Nothing is written back to the data directory; the exported CSV can be
copied over assignments.csv to seed the next incremental run.

Usage:
  python -m clerkship_scheduler.dry_run --start 2025-01-06 --end 2025-02-28
  python -m clerkship_scheduler.dry_run --start 2025-01-06 --end 2025-02-28 \\
      --regenerate-from 2025-02-03 --strategy minimal-change
  python -m clerkship_scheduler.dry_run --start 2025-01-06 --end 2025-02-28 \\
      --regenerate-from 2025-02-03 --preview
"""

import argparse
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from clerkship_scheduler.constraints import ConstraintChecker
from clerkship_scheduler.engine import AssignmentGenerator, calculate_schedule_metrics, generate_schedule
from clerkship_scheduler.errors import SchedulingError
from clerkship_scheduler.exporter import export_assignments_csv, export_schedule_report, export_violations
from clerkship_scheduler.loader import DEFAULT_DATA_DIR, load_snapshot, validate_snapshot
from clerkship_scheduler.regeneration import (
    RegenerationStrategy,
    analyze_regeneration_impact,
    regenerate,
)

logger = logging.getLogger(__name__)

OUTPUTS_DIR = PROJECT_ROOT / "outputs"


def run_dry_run(
    start_date: date,
    end_date: date,
    data_dir: Path = DEFAULT_DATA_DIR,
    output_dir: Path = OUTPUTS_DIR,
    regenerate_from: Optional[date] = None,
    strategy: RegenerationStrategy = RegenerationStrategy.FULL_REOPTIMIZE,
    preview: bool = False,
) -> Dict[str, Any]:
    """
    Generate (or regenerate) a schedule and write reports.

    Args:
        start_date:      First date of the window
        end_date:        Last date of the window
        data_dir:        Directory of input CSV tables
        output_dir:      Directory for output files
        regenerate_from: Cutover date; assignments before it are kept
        strategy:        Regeneration strategy when regenerate_from is set
        preview:         With regenerate_from, only report the impact

    Returns:
        Dict with assignments, metrics, violations, output paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = f"dry_run_{start_date}_{end_date}"
    sep = "=" * 70

    print(f"\n{sep}")
    print(f"  DRY RUN — clerkship schedule")
    print(f"  Period: {start_date} → {end_date}")
    if regenerate_from:
        print(f"  Regenerate from: {regenerate_from} ({RegenerationStrategy(strategy).value})")
    print(f"{sep}\n")

    # ── Step 1: Load ──────────────────────────────────────────────────────
    print("Step 1/5: Loading snapshot...")
    snapshot = load_snapshot(data_dir)
    print(
        f"  ✓ {len(snapshot.students)} students | {len(snapshot.preceptors)} preceptors | "
        f"{len(snapshot.clerkships)} clerkships | {len(snapshot.assignments)} existing assignments"
    )

    # ── Step 2: Validate ──────────────────────────────────────────────────
    print("\nStep 2/5: Validating inputs...")
    errors, warnings = validate_snapshot(snapshot)
    for err in errors:
        print(f"  ✗ ERROR: {err}")
    for w in warnings:
        print(f"  ⚠ WARNING: {w}")
    if errors:
        print("\n  ✗ Cannot proceed — fix data errors above.")
        sys.exit(1)

    configs = AssignmentGenerator(snapshot).resolve_configs()
    for (clerkship_id, requirement_type), config in configs.items():
        print(
            f"  ✓ {clerkship_id}/{requirement_type.value}: {config.required_days} days, "
            f"{config.assignment_strategy.value}, {config.source}"
        )

    if regenerate_from and preview:
        impact = analyze_regeneration_impact(snapshot, regenerate_from, strategy, start_date, end_date)
        print(f"\n  Preview: {impact.summary}")
        for row in impact.student_progress:
            if row["remaining_days"]:
                print(
                    f"    {row['student_id']:<16} {row['clerkship_id']:<16} "
                    f"{row['completed_days']}/{row['required_days']} done"
                )
        print(f"\n{sep}\n")
        return {"impact": impact, "outputs": {}}

    # ── Step 3: Generate ──────────────────────────────────────────────────
    print("\nStep 3/5: Generating assignments...")
    if regenerate_from:
        regen = regenerate(snapshot, start_date, end_date, regenerate_from, strategy)
        result = regen.as_generation_result()
        schedule = regen.merged
        print(
            f"  ✓ {len(regen.past)} past kept | {len(regen.retained)} out of scope | "
            f"{len(regen.preserved)} future preserved | "
            f"{len(regen.discarded)} discarded | {len(regen.generated)} generated"
        )
    else:
        result = generate_schedule(snapshot, start_date, end_date)
        schedule = sorted(list(snapshot.assignments) + result.assignments, key=lambda a: (a.date, a.student_id))
        print(f"  ✓ {len(result.assignments)} new assignments")

    metrics = calculate_schedule_metrics(result)

    # ── Step 4: Constraints ───────────────────────────────────────────────
    print("\nStep 4/5: Checking constraints...")
    checker = ConstraintChecker(snapshot)
    hard, soft = checker.check_all(schedule, result.shortfalls, result.unscheduled)
    status = "✓" if not hard else "✗"
    print(f"  {status} Hard violations: {len(hard)}")
    print(f"    Soft violations: {len(soft)}")
    for v in hard[:10]:
        print(f"    {v}")

    # ── Step 5: Export ────────────────────────────────────────────────────
    print("\nStep 5/5: Exporting outputs...")
    csv_path = output_dir / f"{prefix}.csv"
    report_path = output_dir / f"{prefix}_report.txt"
    violations_path = output_dir / f"{prefix}_violations.txt"

    export_assignments_csv(schedule, csv_path)
    export_schedule_report(
        metrics, result.progress.values(), result.shortfalls, result.unscheduled, report_path,
        title=f"{start_date} → {end_date}",
    )
    export_violations(hard + soft, violations_path)
    print(f"  ✓ CSV:        {csv_path.name}")
    print(f"  ✓ Report:     {report_path.name}")
    print(f"  ✓ Violations: {violations_path.name}")

    print(f"\n{sep}")
    print("  SUMMARY")
    print(f"{sep}")
    print(f"  Period:               {start_date} → {end_date}")
    print(f"  New assignments:      {metrics['total_assignments']}")
    print(f"  Via fallback:         {metrics['fallback_assignments']}")
    print(f"  Requirements met:     {metrics['requirements_satisfied']}/{metrics['requirements_total']}")
    print(f"  Shortfall days:       {metrics['shortfall_days']}")
    print(f"  Unscheduled days:     {metrics['unscheduled_days']}")
    print(f"  Hard violations:      {len(hard)}  {status}")
    print(f"  Soft violations:      {len(soft)}")
    print(f"\n{sep}\n")

    return {
        "assignments":     schedule,
        "result":          result,
        "metrics":         metrics,
        "hard_violations": hard,
        "soft_violations": soft,
        "outputs": {
            "csv":        csv_path,
            "report":     report_path,
            "violations": violations_path,
        },
    }


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def _parse_cli_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Dry-run clerkship schedule generation (writes reports only)"
    )
    parser.add_argument("--start",           required=True, help="Start date YYYY-MM-DD")
    parser.add_argument("--end",             required=True, help="End date YYYY-MM-DD")
    parser.add_argument("--data-dir",        default=None,  help="Input CSV directory (default: config/sample/)")
    parser.add_argument("--output-dir",      default=None,  help="Output directory (default: outputs/)")
    parser.add_argument("--regenerate-from", default=None,  help="Cutover date YYYY-MM-DD; earlier assignments are kept")
    parser.add_argument(
        "--strategy",
        default=RegenerationStrategy.FULL_REOPTIMIZE.value,
        choices=[s.value for s in RegenerationStrategy],
        help="Regeneration strategy (default: full-reoptimize)",
    )
    parser.add_argument("--preview", action="store_true", help="With --regenerate-from, only show the impact")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        start = _parse_cli_date(args.start)
        end = _parse_cli_date(args.end)
        cutover = _parse_cli_date(args.regenerate_from) if args.regenerate_from else None
    except ValueError as e:
        print(f"Invalid date format: {e}")
        sys.exit(1)

    if start > end:
        print("Error: start date must be before end date")
        sys.exit(1)

    try:
        run_dry_run(
            start, end,
            data_dir=Path(args.data_dir) if args.data_dir else DEFAULT_DATA_DIR,
            output_dir=Path(args.output_dir) if args.output_dir else OUTPUTS_DIR,
            regenerate_from=cutover,
            strategy=RegenerationStrategy(args.strategy),
            preview=args.preview,
        )
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
