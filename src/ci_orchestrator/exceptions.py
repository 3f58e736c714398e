"""
Exception hierarchy for the CI Orchestrator.

Only ConfigurationError aborts a run. The other failures are recorded on
the entity that owns them and surface through the PipelineReport.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .main import ReleaseGateResult


class OrchestratorError(Exception):
    """Base exception for orchestrator errors"""
    pass


class ConfigurationError(OrchestratorError):
    """Malformed job template, matrix axis, trigger or policy"""
    pass


class JobExecutionFailure(OrchestratorError):
    """A check reported failure or exceeded its deadline"""
    pass


class ExternalToolUnavailable(OrchestratorError):
    """A check tool could not be invoked at all"""
    pass


class RunCancelled(OrchestratorError):
    """A pipeline run was superseded before it produced a report"""
    pass


class ReleaseGateViolation(OrchestratorError):
    """
    Raised when the computed version bump is smaller than the API change
    requires.

    Attributes
    ----------
    result : ReleaseGateResult
    """

    def __init__(self, result: "ReleaseGateResult") -> None:
        self.result = result
        super().__init__(f"Release blocked: {result.reason}")
