"""
Pipeline Result Aggregator

Combines job outcomes and the release gate result into one verdict.
Tolerance is consulted here and nowhere else: a tolerant failure becomes
a warning, a non-tolerant failure or a blocked gate fails the pipeline.
"""

import logging
from typing import Iterable, List, Optional

from .exceptions import OrchestratorError
from .main import (
    Event,
    JobInstance,
    JobResult,
    OverallStatus,
    PipelineReport,
    ReleaseGateResult,
    VersionDecision,
)

logger = logging.getLogger(__name__)


def aggregate(
    pipeline: str,
    instances: Iterable[JobInstance],
    gate_result: Optional[ReleaseGateResult] = None,
    version_decision: Optional[VersionDecision] = None,
    event: Optional[Event] = None,
) -> PipelineReport:
    """
    Build the PipelineReport for a finished run.

    gate_result is None for pipelines without a release stage.
    Raises OrchestratorError if any instance has not reached a terminal
    outcome.
    """
    instances = list(instances)
    pending = [i.name for i in instances if not i.is_terminal]
    if pending:
        raise OrchestratorError(f"Cannot aggregate {pipeline}: jobs still pending: {pending}")

    results = tuple(JobResult.from_instance(i) for i in instances)

    warnings: List[str] = []
    failures: List[str] = []
    for result in results:
        if not result.failed:
            continue
        kind = result.failure_kind.value if result.failure_kind else "failed"
        if result.tolerant:
            warnings.append(f"{result.name}: {kind} (tolerated)")
        else:
            failures.append(f"{result.name}: {kind}")

    if gate_result is not None and not gate_result.passed:
        failures.append(f"release gate: {gate_result.reason}")

    status = OverallStatus.FAIL if failures else OverallStatus.PASS

    report = PipelineReport(
        pipeline=pipeline,
        job_outcomes=results,
        gate_result=gate_result,
        overall_status=status,
        warnings=tuple(warnings),
        failures=tuple(failures),
        version_decision=version_decision,
        event=event,
    )

    logger.info(
        f"Pipeline {pipeline}: {status.value.upper()} "
        f"({len(results)} job(s), {len(failures)} failure(s), {len(warnings)} warning(s))"
    )
    return report
