"""
Report Formatter
================
Console rendering of a LoopReport. The loop core never formats output;
every human-facing string is produced here.

Line formats:
    {KIND} error in {file}:{line} ({scenario}) → {message}  [seen N×]
    Applied {candidate} to {file}:{line} → {description}
"""
from typing import List

from fixloop.models.error_record import ErrorRecord
from fixloop.models.fix_candidate import AppliedPatch
from fixloop.models.loop_report import FinalStatus, LoopReport

# U+2192 RIGHTWARDS ARROW.
ARROW = "\u2192"

_STATUS_LABELS = {
    FinalStatus.CONVERGED: "CONVERGED",
    FinalStatus.EXHAUSTED: "EXHAUSTED",
    FinalStatus.LAUNCH_FAILED: "LAUNCH FAILED",
}


def format_record(record: ErrorRecord) -> str:
    where = str(record.location) if record.location else record.component
    return (
        f"{record.kind.value.upper()} error in {where} ({record.scenario}) "
        f"{ARROW} {record.message}  [seen {record.occurrence_count}×]"
    )


def format_applied_patch(patch: AppliedPatch) -> str:
    line = patch.applied_line if patch.applied_line is not None else "?"
    return f"Applied {patch.candidate_id} to {patch.patch.file}:{line} {ARROW} {patch.description}"


def format_report(report: LoopReport) -> str:
    """Multi-line summary suitable for a terminal."""
    lines: List[str] = [
        f"fixloop: {_STATUS_LABELS[report.final_status]} (exit {report.exit_code})",
        report.summary,
    ]
    if report.exhaustion_reason and report.final_status != FinalStatus.CONVERGED:
        lines.append(f"Reason: {report.exhaustion_reason}")

    for iteration in report.iterations:
        passed = sum(1 for v in iteration.verdicts if v.passed)
        lines.append(
            f"  Iteration {iteration.index}: {len(iteration.diagnosis.error_ids)} error(s), "
            f"{len(iteration.candidates_tried)} tried, {passed} passed, "
            f"{len(iteration.applied_candidate_ids)} applied, "
            f"{len(iteration.resolved_error_ids)} resolved ({iteration.iteration_time_seconds:.1f}s)"
        )

    if report.applied_patches:
        lines.append("Applied patches:")
        lines.extend(f"  {format_applied_patch(p)}" for p in report.applied_patches)

    if report.remaining_errors:
        lines.append("Remaining errors:")
        for record in report.remaining_errors:
            lines.append(f"  {format_record(record)}")
            if record.last_diagnostics and record.last_diagnostics != record.message:
                detail = record.last_diagnostics.strip().splitlines()[0][:200]
                lines.append(f"      last seen: {detail}")

    if report.inconclusive_candidate_ids:
        lines.append("Inconclusive (needs review): " + ", ".join(report.inconclusive_candidate_ids))

    return "\n".join(lines)
