"""
Base Output Formatter

A formatter renders one pipeline run for a human. attach() subscribes it
to an orchestrator's job lifecycle events so progress is shown as
instances start and finish; the release stage and the final report are
rendered once the run returns.
"""

from abc import ABC, abstractmethod
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..main import JobInstance, PipelineReport, ReleaseGateResult, VersionDecision

if TYPE_CHECKING:
    from ..orchestrator import PipelineOrchestrator, PipelineRun


class OutputLevel(IntEnum):
    """How much of a run is shown"""
    QUIET = 0       # final verdict only
    NORMAL = 1      # plus finished jobs and the changelog
    VERBOSE = 2     # plus started jobs, failure logs and stats
    DEBUG = 3       # plus expanded commands


class BaseFormatter(ABC):
    """Base class for run formatters"""

    def __init__(self, level: OutputLevel = OutputLevel.NORMAL):
        self.level = level

    def attach(self, orchestrator: "PipelineOrchestrator") -> None:
        """Render job progress from the orchestrator's events"""
        orchestrator.on("job.started", self._on_job_event)
        orchestrator.on("job.finished", self._on_job_event)

    def _on_job_event(self, event: str, run: "PipelineRun", job: str = "", **kwargs) -> None:
        instance: Optional[JobInstance] = next(
            (i for i in run.instances if i.name == job), None
        )
        if instance is None:
            return
        if event == "job.started":
            self.job_started(instance)
        else:
            self.job_finished(instance)

    def render(self, report: PipelineReport) -> None:
        """Release stage first, then the report itself"""
        if report.version_decision is not None:
            self.version_decision(report.version_decision)
        if report.gate_result is not None:
            self.gate_result(report.gate_result)
        self.report(report)

    @abstractmethod
    def job_started(self, instance: JobInstance) -> None:
        pass

    @abstractmethod
    def job_finished(self, instance: JobInstance) -> None:
        pass

    @abstractmethod
    def version_decision(self, decision: VersionDecision) -> None:
        """Computed release version and changelog"""
        pass

    @abstractmethod
    def gate_result(self, result: ReleaseGateResult) -> None:
        """Release gate verdict, with the marker to add when blocked"""
        pass

    @abstractmethod
    def report(self, report: PipelineReport) -> None:
        pass

    @abstractmethod
    def summary(self, stats: Dict[str, Any]) -> None:
        """Orchestrator counters after all runs"""
        pass
