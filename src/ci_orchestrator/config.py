"""
Pipeline Configuration

Loads pipeline definitions (jobs, matrices, tolerance, triggers and the
release stage) from YAML. Every structural problem is reported as a
ConfigurationError here, before any job can be scheduled.

Example:

    pipelines:
      - name: ci
        triggers:
          pull_request:
          push: {branches: [main]}
          schedule: ["0 18 * * 1,4,6"]
        jobs:
          cargo-deny:
            name: License / vulnerability audit
            matrix:
              checks: [advisories, bans licenses sources]
            tolerant_when: {checks: [advisories]}
            run: cargo deny check ${{ matrix.checks }}
        release:
          api_check:
            run: ./scripts/api-diff.sh
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .dispatcher import BranchFilter, TriggerSpec
from .exceptions import ConfigurationError
from .main import JobTemplate
from .matrix import validate_template

logger = logging.getLogger(__name__)

JOB_KEYS = {
    "name", "run", "matrix", "tool", "tolerant", "tolerant_when",
    "env", "working_directory", "timeout_ms",
}
TRIGGER_KEYS = {"pull_request", "push", "schedule"}
PIPELINE_KEYS = {"name", "triggers", "jobs", "release"}


@dataclass(frozen=True)
class ReleaseStageConfig:
    """Release stage of a pipeline: version arbiter, API check, gate"""
    api_check: Optional[JobTemplate] = None
    ref: str = "HEAD"


@dataclass(frozen=True)
class PipelineDefinition:
    """A named set of job templates with its triggers and release stage"""
    name: str
    triggers: TriggerSpec
    jobs: Tuple[JobTemplate, ...] = ()
    release: Optional[ReleaseStageConfig] = None

    def get_job(self, name: str) -> Optional[JobTemplate]:
        return next((job for job in self.jobs if job.name == name), None)


def _as_list(value: Any, label: str) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    raise ConfigurationError(f"{label} must be a list, got {type(value).__name__}")


def _as_mapping(value: Any, label: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    raise ConfigurationError(f"{label} must be a mapping, got {type(value).__name__}")


def _check_keys(data: Dict[str, Any], allowed: set, label: str) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ConfigurationError(f"{label}: unknown key(s) {sorted(str(k) for k in unknown)}")


def parse_matrix(raw: Any, label: str) -> Tuple[Tuple[str, Tuple[Any, ...]], ...]:
    """
    Parse a matrix given either as a mapping (declaration order kept) or
    as a list of single-key mappings.
    """
    if raw is None:
        return ()
    if isinstance(raw, dict):
        items = list(raw.items())
    else:
        items = []
        for entry in _as_list(raw, f"{label}.matrix"):
            entry = _as_mapping(entry, f"{label}.matrix entry")
            if len(entry) != 1:
                raise ConfigurationError(f"{label}.matrix entries must have exactly one axis")
            items.extend(entry.items())

    return tuple(
        (str(axis), tuple(_as_list(values, f"{label}.matrix.{axis}")))
        for axis, values in items
    )


def parse_job(job_id: str, raw: Any, default_tool: str = "command") -> JobTemplate:
    label = f"job '{job_id}'"
    data = _as_mapping(raw, label)
    _check_keys(data, JOB_KEYS, label)

    tolerant = data.get("tolerant", False)
    if not isinstance(tolerant, bool):
        raise ConfigurationError(f"{label}.tolerant must be true or false")

    tolerant_when = {
        str(axis): tuple(_as_list(values, f"{label}.tolerant_when.{axis}"))
        for axis, values in _as_mapping(data.get("tolerant_when"), f"{label}.tolerant_when").items()
    }

    timeout_ms = data.get("timeout_ms")
    if timeout_ms is not None and (not isinstance(timeout_ms, int) or timeout_ms <= 0):
        raise ConfigurationError(f"{label}.timeout_ms must be a positive integer")

    template = JobTemplate(
        name=job_id,
        title=data.get("name"),
        command=str(data.get("run", "")),
        axes=parse_matrix(data.get("matrix"), label),
        tool=str(data.get("tool", default_tool)),
        tolerant=tolerant,
        tolerant_when=tolerant_when,
        env={str(k): str(v) for k, v in _as_mapping(data.get("env"), f"{label}.env").items()},
        working_directory=data.get("working_directory"),
        timeout_ms=timeout_ms,
    )
    validate_template(template)
    return template


def _parse_branch_filter(raw: Any, label: str) -> BranchFilter:
    data = _as_mapping(raw, label)
    _check_keys(data, {"branches"}, label)
    if "branches" not in data:
        return BranchFilter()
    branches = data["branches"]
    if isinstance(branches, str):
        branches = [branches]
    return BranchFilter(
        branches=tuple(str(b) for b in _as_list(branches, f"{label}.branches"))
    )


def parse_triggers(raw: Any, label: str) -> TriggerSpec:
    data = _as_mapping(raw, f"{label}.triggers")
    _check_keys(data, TRIGGER_KEYS, f"{label}.triggers")

    return TriggerSpec(
        pull_request=(
            _parse_branch_filter(data["pull_request"], f"{label}.triggers.pull_request")
            if "pull_request" in data else None
        ),
        push=(
            _parse_branch_filter(data["push"], f"{label}.triggers.push")
            if "push" in data else None
        ),
        schedule=tuple(
            str(cron) for cron in _as_list(data.get("schedule", []), f"{label}.triggers.schedule")
        ),
    )


def parse_release(raw: Any, label: str) -> Optional[ReleaseStageConfig]:
    if raw is None or raw is False:
        return None
    if raw is True:
        return ReleaseStageConfig()

    data = _as_mapping(raw, f"{label}.release")
    _check_keys(data, {"api_check", "ref"}, f"{label}.release")

    api_check = None
    if data.get("api_check") is not None:
        api_check = parse_job("api-check", data["api_check"])
        if api_check.axes:
            raise ConfigurationError(f"{label}.release.api_check cannot have a matrix")

    return ReleaseStageConfig(api_check=api_check, ref=str(data.get("ref", "HEAD")))


def parse_pipeline(raw: Any) -> PipelineDefinition:
    data = _as_mapping(raw, "pipeline")
    if "name" not in data:
        raise ConfigurationError("Every pipeline needs a name")
    label = f"pipeline '{data['name']}'"
    _check_keys(data, PIPELINE_KEYS, label)

    jobs = tuple(
        parse_job(str(job_id), job)
        for job_id, job in _as_mapping(data.get("jobs"), f"{label}.jobs").items()
    )

    return PipelineDefinition(
        name=str(data["name"]),
        triggers=parse_triggers(data.get("triggers"), label),
        jobs=jobs,
        release=parse_release(data.get("release"), label),
    )


def parse_pipelines(data: Dict[str, Any]) -> List[PipelineDefinition]:
    pipelines = [parse_pipeline(p) for p in _as_list(data.get("pipelines", []), "pipelines")]

    names = [p.name for p in pipelines]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate pipeline name(s): {duplicates}")

    return pipelines


def load_pipelines(path: Union[str, Path]) -> List[PipelineDefinition]:
    """Load and validate every pipeline in a YAML config file"""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    pipelines = parse_pipelines(_as_mapping(data, str(path)))
    logger.info(f"Loaded {len(pipelines)} pipeline(s) from {path}")
    return pipelines
