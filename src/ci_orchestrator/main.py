"""
Configuration and Types for the CI Orchestrator
"""

import os
import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ConfigurationError


class EventKind(Enum):
    """Kinds of trigger events"""
    PULL_REQUEST = "pull_request"
    PUSH = "push"
    SCHEDULE = "schedule"


class JobOutcome(Enum):
    """Outcome of a single job instance"""
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class FailureKind(Enum):
    """Why a job instance failed"""
    CHECK_FAILED = "check_failed"
    TIMED_OUT = "timed_out"
    TOOL_UNAVAILABLE = "tool_unavailable"


class BumpLevel(IntEnum):
    """
    Semantic version bump granularity.

    Totally ordered: PATCH < MINOR < MAJOR.
    """
    PATCH = 0
    MINOR = 1
    MAJOR = 2

    def join(self, other: "BumpLevel") -> "BumpLevel":
        """Least upper bound of two levels"""
        return max(self, other)


class ApiDiff(Enum):
    """API compatibility classification reported by an API checker"""
    NO_CHANGE = "no-change"
    ADDITIVE = "additive"
    BREAKING = "breaking"


class OverallStatus(Enum):
    """Aggregated pipeline verdict"""
    PASS = "pass"
    FAIL = "fail"


# =========================================================================
# Trigger events
# =========================================================================

@dataclass(frozen=True)
class Event:
    """An incoming trigger (pull request, push or scheduled run)"""
    kind: EventKind
    ref: str
    base_ref: Optional[str] = None
    schedule: Optional[str] = None
    sha: Optional[str] = None

    @property
    def branch(self) -> str:
        return strip_ref(self.ref)

    @property
    def base_branch(self) -> Optional[str]:
        return strip_ref(self.base_ref) if self.base_ref else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "ref": self.ref,
            "base_ref": self.base_ref,
            "schedule": self.schedule,
            "sha": self.sha,
        }


def strip_ref(ref: str) -> str:
    """Turn refs/heads/main into main"""
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


# =========================================================================
# Jobs
# =========================================================================

MATRIX_PLACEHOLDER = re.compile(r"\$\{\{\s*matrix\.([A-Za-z_][A-Za-z0-9_-]*)\s*\}\}")


@dataclass(frozen=True)
class JobTemplate:
    """
    A job definition before matrix expansion.

    `axes` keeps the declaration order of the matrix; the first axis
    varies slowest when expanded.
    """
    name: str
    command: str = ""
    axes: Tuple[Tuple[str, Tuple[Any, ...]], ...] = ()
    tool: str = "command"
    tolerant: bool = False
    tolerant_when: Dict[str, Tuple[Any, ...]] = field(default_factory=dict)
    title: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    working_directory: Optional[str] = None
    timeout_ms: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.title or self.name

    @property
    def axis_names(self) -> List[str]:
        return [name for name, _ in self.axes]


@dataclass
class JobInstance:
    """
    One concrete combination of a template's matrix axes.

    Mutated only by the runner executing it.
    """
    template: JobTemplate
    axis_assignment: Dict[str, Any] = field(default_factory=dict)
    index: int = 0
    tolerant: bool = False
    outcome: JobOutcome = JobOutcome.PENDING
    log: str = ""
    failure_kind: Optional[FailureKind] = None
    api_diff: Optional[ApiDiff] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        if not self.axis_assignment:
            return self.template.name
        values = ", ".join(str(v) for v in self.axis_assignment.values())
        return f"{self.template.name} ({values})"

    @property
    def command(self) -> str:
        """Template command with ${{ matrix.<axis> }} substituted"""
        return MATRIX_PLACEHOLDER.sub(
            lambda m: str(self.axis_assignment[m.group(1)]),
            self.template.command,
        )

    @property
    def is_terminal(self) -> bool:
        return self.outcome != JobOutcome.PENDING

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at and self.finished_at:
            delta = self.finished_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "template": self.template.name,
            "axis_assignment": {k: str(v) for k, v in self.axis_assignment.items()},
            "tolerant": self.tolerant,
            "outcome": self.outcome.value,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "duration_ms": self.duration_ms,
            "log": self.log,
        }


# =========================================================================
# Release versioning
# =========================================================================

@dataclass(frozen=True)
class CommitRecord:
    """A commit between the previous release tag and the current ref"""
    sha: str
    message: str
    timestamp: Optional[datetime] = None

    @property
    def subject(self) -> str:
        return self.message.strip().splitlines()[0] if self.message.strip() else ""


@dataclass(frozen=True)
class VersionDecision:
    """The next release version and changelog for a commit range"""
    previous_version: str
    bump_level: BumpLevel
    computed_version: str
    changelog: Tuple[str, ...] = ()
    previous_tag: Optional[str] = None
    bootstrapped: bool = False
    commit_count: int = 0

    @property
    def changelog_text(self) -> str:
        return "\n".join(self.changelog)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_version": self.previous_version,
            "previous_tag": self.previous_tag,
            "bump_level": self.bump_level.name,
            "computed_version": self.computed_version,
            "changelog": list(self.changelog),
            "bootstrapped": self.bootstrapped,
            "commit_count": self.commit_count,
        }


@dataclass(frozen=True)
class ReleaseGateResult:
    """Outcome of comparing the computed bump with the detected API change"""
    passed: bool
    required_minimum_bump: Optional[BumpLevel]
    reason: str
    bump_level: Optional[BumpLevel] = None
    api_diff: Optional[ApiDiff] = None
    required_marker: Optional[str] = None

    def raise_for_status(self) -> None:
        """Raise ReleaseGateViolation if the gate blocked the release"""
        if not self.passed:
            from .exceptions import ReleaseGateViolation

            raise ReleaseGateViolation(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "required_minimum_bump": (
                self.required_minimum_bump.name if self.required_minimum_bump is not None else None
            ),
            "bump_level": self.bump_level.name if self.bump_level is not None else None,
            "api_diff": self.api_diff.value if self.api_diff else None,
            "required_marker": self.required_marker,
            "reason": self.reason,
        }


# =========================================================================
# Reports
# =========================================================================

@dataclass(frozen=True)
class JobResult:
    """Immutable snapshot of a finished job instance"""
    name: str
    template: str
    axis_assignment: Tuple[Tuple[str, str], ...]
    outcome: JobOutcome
    tolerant: bool
    failure_kind: Optional[FailureKind] = None
    log: str = ""
    duration_ms: Optional[int] = None

    @classmethod
    def from_instance(cls, instance: JobInstance) -> "JobResult":
        return cls(
            name=instance.name,
            template=instance.template.name,
            axis_assignment=tuple((k, str(v)) for k, v in instance.axis_assignment.items()),
            outcome=instance.outcome,
            tolerant=instance.tolerant,
            failure_kind=instance.failure_kind,
            log=instance.log,
            duration_ms=instance.duration_ms,
        )

    @property
    def failed(self) -> bool:
        return self.outcome == JobOutcome.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "template": self.template,
            "axis_assignment": dict(self.axis_assignment),
            "outcome": self.outcome.value,
            "tolerant": self.tolerant,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class PipelineReport:
    """Terminal artifact of a pipeline run"""
    pipeline: str
    job_outcomes: Tuple[JobResult, ...]
    gate_result: Optional[ReleaseGateResult]
    overall_status: OverallStatus
    warnings: Tuple[str, ...] = ()
    failures: Tuple[str, ...] = ()
    version_decision: Optional[VersionDecision] = None
    event: Optional[Event] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def passed(self) -> bool:
        return self.overall_status == OverallStatus.PASS

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": self.pipeline,
            "overall_status": self.overall_status.value,
            "jobs": [job.to_dict() for job in self.job_outcomes],
            "warnings": list(self.warnings),
            "failures": list(self.failures),
            "gate": self.gate_result.to_dict() if self.gate_result else None,
            "version": self.version_decision.to_dict() if self.version_decision else None,
            "event": self.event.to_dict() if self.event else None,
            "created_at": self.created_at.isoformat(),
        }


# =========================================================================
# Configuration
# =========================================================================

POLICY_KEYS = {"tag_prefix", "floor_version", "allow_minor_breaking_pre_stable", "markers"}
MARKER_KEYS = {"major", "minor", "ignore"}
TRUE_VALUES = {"true", "1", "yes", "on"}
FALSE_VALUES = {"false", "0", "no", "off"}


def _section(raw: Any, label: str, allowed: set) -> Dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{label} must be a mapping")
    unknown = set(raw) - allowed
    if unknown:
        raise ConfigurationError(f"{label}: unknown key(s) {sorted(str(k) for k in unknown)}")
    return dict(raw)


def _require_bool(value: Any, label: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{label} must be true or false")
    return value


def _require_positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"{label} must be a positive integer")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    if raw.strip().lower() in TRUE_VALUES:
        return True
    if raw.strip().lower() in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be true or false, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    return _require_positive_int(value, name)


@dataclass(frozen=True)
class MarkerSet:
    """Commit message markers recognised by the version arbiter"""
    major: str = "(MAJOR)"
    minor: str = "(MINOR)"
    ignore: str = "(IGNORE)"


@dataclass(frozen=True)
class ReleasePolicy:
    """
    Release versioning policy.

    floor_version is the previous version assumed when no release tag
    exists yet. allow_minor_breaking_pre_stable lets a breaking API change
    ship as a MINOR bump while the major version is 0.
    """
    tag_prefix: str = "v"
    floor_version: str = "0.1.0"
    allow_minor_breaking_pre_stable: bool = True
    markers: MarkerSet = field(default_factory=MarkerSet)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ReleasePolicy":
        """Build a policy from the `policy` config section. Raises ConfigurationError."""
        data = _section(data, "policy", POLICY_KEYS)
        markers = _section(data.get("markers"), "policy.markers", MARKER_KEYS)
        for key, marker in markers.items():
            if not isinstance(marker, str) or not marker:
                raise ConfigurationError(f"policy.markers.{key} must be a non-empty string")

        kwargs: Dict[str, Any] = {}
        if "tag_prefix" in data:
            if not isinstance(data["tag_prefix"], str):
                raise ConfigurationError("policy.tag_prefix must be a string")
            kwargs["tag_prefix"] = data["tag_prefix"]
        if "floor_version" in data:
            # YAML reads an unquoted 1.0 as a float
            kwargs["floor_version"] = str(data["floor_version"])
        if "allow_minor_breaking_pre_stable" in data:
            kwargs["allow_minor_breaking_pre_stable"] = _require_bool(
                data["allow_minor_breaking_pre_stable"],
                "policy.allow_minor_breaking_pre_stable",
            )

        policy = cls(markers=MarkerSet(**markers), **kwargs)
        policy.validate()
        return policy

    def validate(self) -> None:
        """Reject a floor version that is not MAJOR.MINOR.PATCH"""
        from .versioning import SemanticVersion

        try:
            SemanticVersion.parse(str(self.floor_version), self.tag_prefix)
        except ValueError as e:
            raise ConfigurationError(f"policy.floor_version: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag_prefix": self.tag_prefix,
            "floor_version": self.floor_version,
            "allow_minor_breaking_pre_stable": self.allow_minor_breaking_pre_stable,
            "markers": {
                "major": self.markers.major,
                "minor": self.markers.minor,
                "ignore": self.markers.ignore,
            },
        }


@dataclass
class OrchestratorConfig:
    """
    Configuration for the CI Orchestrator.

    Controls concurrency, timeouts, release policy and event delivery.
    """
    name: str = "ci-orchestrator"

    # Execution settings
    max_concurrent_jobs: int = 8
    default_job_timeout_ms: int = 3600000  # 1 hour

    # Release policy
    policy: ReleasePolicy = field(default_factory=ReleasePolicy)

    # Event delivery
    enable_events: bool = False
    events_url: Optional[str] = field(default_factory=lambda: os.getenv("CI_EVENTS_URL"))
    events_timeout_ms: int = 5000

    # Paths
    workspace_path: Path = field(
        default_factory=lambda: Path(os.getenv("CI_WORKSPACE", "."))
    )

    @classmethod
    def from_yaml(cls, path: str) -> "OrchestratorConfig":
        """Load config from YAML file, ignoring the pipelines section"""
        import yaml

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrchestratorConfig":
        if not isinstance(data, dict):
            raise ConfigurationError("config file must contain a mapping")
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        for key in ("max_concurrent_jobs", "default_job_timeout_ms", "events_timeout_ms"):
            if key in kwargs:
                _require_positive_int(kwargs[key], key)
        if "enable_events" in kwargs:
            _require_bool(kwargs["enable_events"], "enable_events")
        kwargs["policy"] = ReleasePolicy.from_dict(data.get("policy"))
        if "workspace_path" in kwargs:
            kwargs["workspace_path"] = Path(kwargs["workspace_path"])
        return cls(**kwargs)

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Load config from environment variables"""
        policy = ReleasePolicy(
            tag_prefix=os.getenv("CI_TAG_PREFIX", "v"),
            floor_version=os.getenv("CI_FLOOR_VERSION", "0.1.0"),
            allow_minor_breaking_pre_stable=_env_bool("CI_ALLOW_MINOR_BREAKING_PRE_STABLE", True),
        )
        policy.validate()
        return cls(
            max_concurrent_jobs=_env_int("CI_MAX_CONCURRENT_JOBS", 8),
            default_job_timeout_ms=_env_int("CI_JOB_TIMEOUT_MS", 3600000),
            policy=policy,
            enable_events=_env_bool("CI_ENABLE_EVENTS", False),
        )
