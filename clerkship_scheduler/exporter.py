"""
exporter.py — Export layer for generated clerkship schedules

Outputs:
  - CSV: flat assignment batch, same columns loader.load_assignments reads,
    so a run's output can seed the next incremental run
  - Schedule report (.txt): requirement progress per student, preceptor
    load, shortfalls and unscheduled student-days

Usage:
  from clerkship_scheduler.exporter import export_assignments_csv, export_schedule_report
"""

import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from clerkship_scheduler.models import (
    RequirementProgress,
    RequirementType,
    ScheduleAssignment,
    Shortfall,
    UnscheduledDay,
)

logger = logging.getLogger(__name__)

ASSIGNMENT_COLUMNS = [
    "date",
    "student_id",
    "preceptor_id",
    "clerkship_id",
    "requirement_type",
    "site_id",
    "status",
    "id",
    "block_number",
    "fallback_depth",
]


# ---------------------------------------------------------------------------
# CSV Export
# ---------------------------------------------------------------------------

def assignment_to_row(a: ScheduleAssignment) -> Dict[str, Any]:
    return {
        "date": a.date.isoformat(),
        "student_id": a.student_id,
        "preceptor_id": a.preceptor_id,
        "clerkship_id": a.clerkship_id,
        "requirement_type": RequirementType(a.requirement_type).value,
        "site_id": a.site_id or "",
        "status": getattr(a.status, "value", a.status),
        "id": a.id or "",
        "block_number": "" if a.block_number is None else a.block_number,
        "fallback_depth": a.fallback_depth,
    }


def export_assignments_csv(
    assignments: Iterable[ScheduleAssignment],
    output_path: Path,
) -> None:
    """
    Export assignments to a flat CSV sorted by (date, student).

    Args:
        assignments: ScheduleAssignment records
        output_path: .csv file path
    """
    import csv
    output_path.parent.mkdir(parents=True, exist_ok=True)

    rows = sorted((assignment_to_row(a) for a in assignments), key=lambda r: (r["date"], r["student_id"]))
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=ASSIGNMENT_COLUMNS)
        writer.writeheader()
        writer.writerows(rows)

    logger.info(f"CSV exported → {output_path} ({len(rows)} assignments)")


# ---------------------------------------------------------------------------
# Text report
# ---------------------------------------------------------------------------

def export_schedule_report(
    metrics: Dict[str, Any],
    progress: Iterable[RequirementProgress],
    shortfalls: Iterable[Shortfall],
    unscheduled: Iterable[UnscheduledDay],
    output_path: Path,
    title: str = "",
    max_unscheduled_lines: int = 50,
) -> None:
    """
    Export a text report of a generation or regeneration run.

    Args:
        metrics:      Output of engine.calculate_schedule_metrics()
        progress:     RequirementProgress records from the result
        shortfalls:   Shortfall records
        unscheduled:  UnscheduledDay records
        output_path:  .txt file path
        title:        Optional label (e.g. the window or cutover date)
        max_unscheduled_lines: cap on listed unscheduled student-days
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    shortfalls = list(shortfalls)
    unscheduled = list(unscheduled)

    sep = "=" * 70
    rule = "─" * 70
    total = metrics.get("requirements_total", 0)
    satisfied = metrics.get("requirements_satisfied", 0)
    status = "✓ COMPLETE" if not shortfalls else "✗ SHORTFALL"

    lines = [
        sep,
        f"  CLERKSHIP SCHEDULE REPORT{(' — ' + title) if title else ''}",
        sep,
        "",
        f"  Assignments:           {metrics.get('total_assignments', 0)}",
        f"  Via fallback:          {metrics.get('fallback_assignments', 0)}",
        f"  Requirements met:      {satisfied}/{total}  {status}",
        f"  Students complete:     {metrics.get('students_complete', 0)}",
        f"  Shortfall days:        {metrics.get('shortfall_days', 0)}",
        f"  Unscheduled days:      {metrics.get('unscheduled_days', 0)}",
        "",
        rule,
        "  Requirement Progress",
        rule,
        f"  {'Student':<16} {'Clerkship':<16} {'Type':<11} {'Done':>5} {'Req':>5}  State",
    ]

    by_student: Dict[str, List[RequirementProgress]] = defaultdict(list)
    for prog in progress:
        by_student[prog.student_id].append(prog)
    for student_id in sorted(by_student):
        for prog in sorted(by_student[student_id], key=lambda p: (p.clerkship_id, RequirementType(p.requirement_type).value)):
            lines.append(
                f"  {student_id:<16} {prog.clerkship_id:<16} {RequirementType(prog.requirement_type).value:<11} "
                f"{prog.completed_days:>5} {prog.required_days:>5}  {prog.state.value}"
            )

    lines += ["", rule, "  Preceptor Load", rule]
    load = metrics.get("preceptor_load", {})
    if load:
        for preceptor_id, count in sorted(load.items(), key=lambda kv: (-kv[1], kv[0])):
            lines.append(f"  {preceptor_id:<24} {count:>5}")
    else:
        lines.append("  (no assignments)")

    lines += ["", rule, "  Shortfalls", rule]
    if shortfalls:
        for s in sorted(shortfalls, key=lambda s: (s.student_id, s.clerkship_id)):
            lines.append(
                f"  {s.student_id:<16} {s.clerkship_id:<16} {RequirementType(s.requirement_type).value:<11} "
                f"short {s.shortfall_days} of {s.required_days}  ({s.reason})"
            )
    else:
        lines.append("  None")

    lines += ["", rule, "  Unscheduled Student-Days", rule]
    if unscheduled:
        for u in sorted(unscheduled, key=lambda u: (u.date, u.student_id))[:max_unscheduled_lines]:
            lines.append(f"  {u.date.isoformat()}  {u.student_id:<16} {u.reason}")
        if len(unscheduled) > max_unscheduled_lines:
            lines.append(f"  ... {len(unscheduled) - max_unscheduled_lines} more")
    else:
        lines.append("  None")

    lines += ["", sep, ""]
    output_path.write_text("\n".join(lines))
    logger.info(f"Schedule report exported → {output_path}")


def export_violations(violations: Iterable[Any], output_path: Optional[Path]) -> None:
    """One violation per line, using ConstraintViolation.__str__."""
    if output_path is None:
        return
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("\n".join(str(v) for v in violations) + "\n")
    logger.info(f"Violations exported → {output_path}")
