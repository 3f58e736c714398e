"""
CI Orchestrator

Runs matrix verification jobs for pull requests, pushes and scheduled
builds, computes the next semantic version from commit messages and
gates releases on the API compatibility of the change.

Rules the orchestrator holds to:
1. Every job instance runs to a terminal outcome; no job sees another's.
2. Tolerant failures become warnings, never failures of the pipeline.
3. A release whose bump is smaller than its API change requires is blocked.
4. Without an API classification the release gate fails closed.
"""

__version__ = "1.0.0"

# Orchestrator
from .orchestrator import PipelineOrchestrator, PipelineRun

# Configuration and types
from .main import (
    ApiDiff,
    BumpLevel,
    CommitRecord,
    Event,
    EventKind,
    FailureKind,
    JobInstance,
    JobOutcome,
    JobResult,
    JobTemplate,
    MarkerSet,
    OrchestratorConfig,
    OverallStatus,
    PipelineReport,
    ReleaseGateResult,
    ReleasePolicy,
    VersionDecision,
)
from .config import PipelineDefinition, ReleaseStageConfig, load_pipelines, parse_pipelines

# Building blocks
from .aggregator import aggregate
from .dispatcher import TriggerDispatcher, TriggerSpec
from .matrix import expand, expand_all
from .release_gate import ReleaseGate, required_minimum_bump
from .versioning import SemanticVersion, VersionArbiter, write_manifest_version

from .exceptions import (
    ConfigurationError,
    ExternalToolUnavailable,
    JobExecutionFailure,
    OrchestratorError,
    ReleaseGateViolation,
    RunCancelled,
)

__all__ = [
    # Orchestrator
    "PipelineOrchestrator",
    "PipelineRun",
    # Types
    "ApiDiff",
    "BumpLevel",
    "CommitRecord",
    "Event",
    "EventKind",
    "FailureKind",
    "JobInstance",
    "JobOutcome",
    "JobResult",
    "JobTemplate",
    "MarkerSet",
    "OrchestratorConfig",
    "OverallStatus",
    "PipelineReport",
    "ReleaseGateResult",
    "ReleasePolicy",
    "VersionDecision",
    # Configuration
    "PipelineDefinition",
    "ReleaseStageConfig",
    "load_pipelines",
    "parse_pipelines",
    # Building blocks
    "aggregate",
    "TriggerDispatcher",
    "TriggerSpec",
    "expand",
    "expand_all",
    "ReleaseGate",
    "required_minimum_bump",
    "SemanticVersion",
    "VersionArbiter",
    "write_manifest_version",
    # Errors
    "ConfigurationError",
    "ExternalToolUnavailable",
    "JobExecutionFailure",
    "OrchestratorError",
    "ReleaseGateViolation",
    "RunCancelled",
    # Meta
    "__version__",
]
