"""
Results Writer
==============
Serializes the final LoopReport (plus the run's telemetry counters) into
results.json for dashboards and CI artifacts.
"""
import json
import logging
import os
from typing import Optional

from fixloop.core.report_formatter import format_applied_patch, format_record
from fixloop.models.loop_report import LoopReport
from fixloop.state.loop_state import LoopRunState

logger = logging.getLogger(__name__)


class ResultsWriter:
    """
    Service responsible for compiling the full history of a loop run
    into a structured JSON file.
    """

    @staticmethod
    def build_payload(report: LoopReport, state: Optional[LoopRunState] = None) -> dict:
        data = report.model_dump(mode="json")
        data["exit_code"] = report.exit_code
        data["formatted"] = {
            "remaining_errors": [format_record(r) for r in report.remaining_errors],
            "applied_patches": [format_applied_patch(p) for p in report.applied_patches],
        }
        if state is not None:
            data["telemetry"] = {
                "source_root": state.get("source_root", ""),
                "phase_history": state.get("phase_history", []),
                "total_errors_seen": state.get("total_errors_seen", 0),
                "candidates_validated": state.get("candidates_validated", 0),
                "patches_applied": state.get("patches_applied", 0),
                "patches_rolled_back": state.get("patches_rolled_back", 0),
                "inconclusive_verdicts": state.get("inconclusive_verdicts", 0),
            }
        return data

    @staticmethod
    def write_results(report: LoopReport, output_path: str = "results.json",
                      state: Optional[LoopRunState] = None) -> bool:
        """
        Compile the report and write it to ``output_path``.
        """
        try:
            data = ResultsWriter.build_payload(report, state)
            abs_output = os.path.abspath(output_path)
            logger.info("Writing final results to %s", abs_output)

            with open(abs_output, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            return True

        except OSError as e:
            logger.error("Failed to write results: %s", e, exc_info=True)
            return False
