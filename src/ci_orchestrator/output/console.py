"""
Console Output Formatter

Colored pipeline progress and reports for terminals.
"""

import sys
from datetime import datetime
from typing import Any, Dict

from .base import BaseFormatter, OutputLevel
from ..main import (
    JobInstance,
    JobOutcome,
    PipelineReport,
    ReleaseGateResult,
    VersionDecision,
)


class ConsoleFormatter(BaseFormatter):
    """
    Prints job progress and pipeline reports to stdout.

    Tolerated failures get their own symbol so they read as warnings
    rather than breakage. Colors are dropped when stdout is not a TTY.
    """

    COLORS = {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "dim": "\033[2m",
        "green": "\033[32m",
        "yellow": "\033[33m",
        "red": "\033[31m",
        "blue": "\033[34m",
        "cyan": "\033[36m",
        "magenta": "\033[35m",
    }

    SYMBOLS = {
        "pending": "○",
        "running": "◔",
        "passed": "●",
        "failed": "✗",
        "tolerated": "⚠",
    }

    def __init__(self, level: OutputLevel = OutputLevel.NORMAL, use_colors: bool = True):
        super().__init__(level)
        self.use_colors = use_colors and sys.stdout.isatty()

    def _c(self, color: str, text: str) -> str:
        """Apply color to text"""
        if self.use_colors:
            return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"
        return text

    def _symbol(self, status: str) -> str:
        return self.SYMBOLS.get(status, "○")

    def _timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def job_started(self, instance: JobInstance) -> None:
        if self.level < OutputLevel.VERBOSE:
            return

        symbol = self._c("blue", self._symbol("running"))
        ts = self._c("dim", f"[{self._timestamp()}]")
        print(f"{symbol} {ts} {instance.name}")
        if self.level >= OutputLevel.DEBUG:
            print(f"  {self._c('dim', '$')} {instance.command}")

    def job_finished(self, instance: JobInstance) -> None:
        if self.level < OutputLevel.NORMAL:
            return

        if instance.outcome == JobOutcome.PASSED:
            symbol = self._c("green", self._symbol("passed"))
            status = self._c("green", "PASSED")
        elif instance.tolerant:
            symbol = self._c("yellow", self._symbol("tolerated"))
            status = self._c("yellow", "FAILED (tolerated)")
        else:
            symbol = self._c("red", self._symbol("failed"))
            status = self._c("red", "FAILED")

        duration = ""
        if instance.duration_ms is not None:
            duration = self._c("dim", f" ({instance.duration_ms / 1000:.1f}s)")

        print(f"{symbol} {self._c('cyan', instance.name)} {status}{duration}")

        if instance.outcome == JobOutcome.FAILED and instance.failure_kind is not None:
            print(f"  {self._c('dim', 'Cause:')} {instance.failure_kind.value}")
        if instance.outcome == JobOutcome.FAILED and self.level >= OutputLevel.VERBOSE:
            for line in instance.log.strip().splitlines()[-10:]:  # tail
                print(f"    {self._c('dim', line)}")

    def version_decision(self, decision: VersionDecision) -> None:
        previous = decision.previous_tag or f"{decision.previous_version} (floor)"
        print(
            f"{self._c('bold', 'Version:')} {previous} -> "
            f"{self._c('cyan', decision.computed_version)} "
            f"{self._c('dim', f'[{decision.bump_level.name.lower()}]')}"
        )

        if self.level >= OutputLevel.NORMAL and decision.changelog:
            print(f"  {self._c('dim', 'Changelog:')}")
            for entry in decision.changelog:
                print(f"    {entry}")

    def gate_result(self, result: ReleaseGateResult) -> None:
        if result.passed:
            print(f"  {self._c('green', '✓')} {self._c('green', 'RELEASE GATE PASSED')}")
        else:
            print(f"  {self._c('red', '✗')} {self._c('red', 'RELEASE GATE BLOCKED')}")
            print(f"    {result.reason}")

    def report(self, report: PipelineReport) -> None:
        print()
        print(self._c("bold", "═" * 50))
        print(self._c("bold", f"  PIPELINE {report.pipeline.upper()}"))
        print(self._c("bold", "═" * 50))

        passed = sum(1 for job in report.job_outcomes if not job.failed)
        print(f"\n  {self._c('bold', 'Jobs:')}")
        print(f"    Passed:    {self._c('green', str(passed))}")
        print(f"    Failed:    {self._c('red', str(len(report.failures)))}")
        print(f"    Tolerated: {self._c('yellow', str(len(report.warnings)))}")

        if report.warnings:
            print(f"\n  {self._c('bold', 'Warnings:')}")
            for warning in report.warnings:
                print(f"    {self._c('yellow', '-')} {warning}")

        if report.failures:
            print(f"\n  {self._c('bold', 'Failures:')}")
            for failure in report.failures:
                print(f"    {self._c('red', '-')} {failure}")

        if report.gate_result is not None:
            print(f"\n  {self._c('bold', 'Release:')}")
            if report.version_decision is not None:
                print(f"    Version: {report.version_decision.computed_version}")
            gate = "passed" if report.gate_result.passed else "blocked"
            print(f"    Gate:    {gate}")

        status = report.overall_status.value.upper()
        color = "green" if report.passed else "red"
        print(f"\n  {self._c('bold', 'Status:')} {self._c(color, status)}")
        print()
        print(self._c("bold", "═" * 50))

    def summary(self, stats: Dict[str, Any]) -> None:
        if self.level < OutputLevel.VERBOSE:
            return

        print(f"\n  {self._c('bold', 'Orchestrator:')}")
        print(f"    Runs:        {stats.get('runs_started', 0)}")
        print(f"    Superseded:  {stats.get('runs_superseded', 0)}")
        print(f"    Jobs run:    {stats.get('jobs_run', 0)}")
        print(f"    Jobs failed: {stats.get('jobs_failed', 0)}")


def print_banner() -> None:
    """Print the orchestrator banner"""
    from .. import __version__

    banner = f"""
╔═══════════════════════════════════════════════════════════╗
║                                                           ║
║                 CI ORCHESTRATOR v{__version__:<25}║
║       Matrix builds, semantic versions, release gates     ║
║                                                           ║
╚═══════════════════════════════════════════════════════════╝
"""
    print(banner)
