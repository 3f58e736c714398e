"""
CI Orchestrator - Pipeline Run Loop

Takes an event to one PipelineReport per selected pipeline:

  event -> dispatcher -> matrix expansion (all configuration errors
  surface here, before anything runs) -> job instances run concurrently
  while the release sequence (history -> arbiter -> API check -> gate)
  runs alongside -> aggregation once everything is terminal.

A newer run for the same pipeline and ref supersedes the one in flight.
The superseded run is cancelled, its partial results are dropped and its
caller receives RunCancelled instead of a report.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .adapters.base import BaseCheckTool
from .adapters.command import CommandCheckTool
from .aggregator import aggregate
from .config import PipelineDefinition
from .dispatcher import TriggerDispatcher
from .events import EventSink
from .exceptions import ConfigurationError, ExternalToolUnavailable, RunCancelled
from .history import GitHistory
from .main import (
    ApiDiff,
    Event,
    JobInstance,
    JobOutcome,
    OrchestratorConfig,
    PipelineReport,
    ReleaseGateResult,
    VersionDecision,
    strip_ref,
)
from .matrix import expand, expand_all
from .release_gate import ReleaseGate
from .runner import JobRunner
from .versioning import VersionArbiter

logger = logging.getLogger(__name__)


class PipelineRun:
    """Book-keeping for one in-flight pipeline run"""

    def __init__(self, pipeline: PipelineDefinition, event: Event, instances: List[JobInstance]):
        self.run_id = str(uuid.uuid4())[:8]
        self.pipeline = pipeline
        self.event = event
        self.instances = instances
        self.started_at = datetime.now()
        self.task: Optional[asyncio.Task] = None
        self.superseded = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.pipeline.name, self.event.branch)

    def cancel(self) -> None:
        self.superseded = True
        if self.task is not None and not self.task.done():
            self.task.cancel()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline.name,
            "ref": self.event.ref,
            "event": self.event.kind.value,
            "jobs": len(self.instances),
            "started_at": self.started_at.isoformat(),
        }


class PipelineOrchestrator:
    """
    Runs pipelines for trigger events.

    Job instances share no state and never see each other's outcomes;
    tolerance is only looked at when the report is aggregated.
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        pipelines: Optional[List[PipelineDefinition]] = None,
        tools: Optional[Dict[str, BaseCheckTool]] = None,
        history: Optional[Any] = None,
        event_sink: Optional[EventSink] = None,
    ):
        self.config = config or OrchestratorConfig()
        self.dispatcher = TriggerDispatcher(pipelines or [])

        self._tools: Dict[str, BaseCheckTool] = {
            "command": CommandCheckTool(self.config.workspace_path),
        }
        self._tools.update(tools or {})
        self._runner = JobRunner(self._tools, self.config.default_job_timeout_ms)

        policy = self.config.policy
        policy.validate()
        self._history = history or GitHistory(
            self.config.workspace_path, tag_prefix=policy.tag_prefix
        )
        self._arbiter = VersionArbiter(policy)
        self._gate = ReleaseGate(policy)

        if event_sink is None and self.config.enable_events and self.config.events_url:
            event_sink = EventSink(
                self.config.events_url,
                service=self.config.name,
                timeout_ms=self.config.events_timeout_ms,
            )
        self._event_sink = event_sink

        self._active_runs: Dict[Tuple[str, str], PipelineRun] = {}
        self._event_handlers: Dict[str, List[Callable]] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None

        self._stats = {
            "runs_started": 0,
            "runs_passed": 0,
            "runs_failed": 0,
            "runs_superseded": 0,
            "jobs_run": 0,
            "jobs_failed": 0,
            "tolerated_failures": 0,
            "releases_blocked": 0,
        }

    # =========================================================================
    # Tool Management
    # =========================================================================

    def register_tool(self, name: str, tool: BaseCheckTool) -> None:
        """Bind a check tool to the name job templates refer to"""
        self._tools[name] = tool
        logger.info(f"Registered check tool: {name}")

    def get_tool(self, name: str) -> Optional[BaseCheckTool]:
        return self._tools.get(name)

    async def initialize(self) -> None:
        for tool in self._tools.values():
            await tool.initialize()

    async def shutdown(self) -> None:
        for run in list(self._active_runs.values()):
            run.cancel()
        for tool in self._tools.values():
            await tool.shutdown()
        if self._event_sink is not None:
            await self._event_sink.close()

    # =========================================================================
    # Run Lifecycle
    # =========================================================================

    def plan(self, pipeline: PipelineDefinition) -> List[JobInstance]:
        """Expand every job matrix of a pipeline. Raises ConfigurationError."""
        return expand_all(list(pipeline.jobs))

    async def handle_event(
        self,
        event: Event,
        api_diff: Optional[ApiDiff] = None,
    ) -> List[PipelineReport]:
        """
        Run every pipeline the event triggers.

        All matrices are expanded before the first job starts. Reports of
        superseded runs are left out of the result.
        """
        plans = [(p, self.plan(p)) for p in self.dispatcher.select(event)]

        async def run_or_drop(pipeline, instances):
            try:
                return await self._start_run(pipeline, event, instances, api_diff)
            except RunCancelled as e:
                logger.info(str(e))
                return None

        reports = await asyncio.gather(*(run_or_drop(p, i) for p, i in plans))
        await self._flush_events()
        return [r for r in reports if r is not None]

    async def run_pipeline(
        self,
        pipeline: PipelineDefinition,
        event: Event,
        api_diff: Optional[ApiDiff] = None,
    ) -> PipelineReport:
        """Run one pipeline. Raises RunCancelled if superseded."""
        instances = self.plan(pipeline)
        report = await self._start_run(pipeline, event, instances, api_diff)
        await self._flush_events()
        return report

    def cancel(self, ref: str, pipeline: Optional[str] = None) -> int:
        """Cancel in-flight runs for a ref. Returns the number cancelled."""
        branch = strip_ref(ref)
        cancelled = 0
        for key, run in list(self._active_runs.items()):
            if key[1] != branch:
                continue
            if pipeline is not None and key[0] != pipeline:
                continue
            run.cancel()
            cancelled += 1
        return cancelled

    def active_runs(self) -> List[PipelineRun]:
        return list(self._active_runs.values())

    async def _start_run(
        self,
        pipeline: PipelineDefinition,
        event: Event,
        instances: List[JobInstance],
        api_diff: Optional[ApiDiff],
    ) -> PipelineReport:
        run = PipelineRun(pipeline, event, instances)

        previous = self._active_runs.get(run.key)
        if previous is not None:
            logger.info(
                f"Run {run.run_id} supersedes run {previous.run_id} "
                f"of {pipeline.name} on {event.branch}"
            )
            previous.cancel()
            self._stats["runs_superseded"] += 1

        run.task = asyncio.create_task(self._execute_run(run, api_diff))
        self._active_runs[run.key] = run

        try:
            return await run.task
        except asyncio.CancelledError:
            if not run.superseded:
                raise
            await self._emit_event("run.cancelled", run)
            raise RunCancelled(
                f"Run {run.run_id} of {pipeline.name} on {event.branch} was superseded"
            ) from None
        finally:
            if self._active_runs.get(run.key) is run:
                del self._active_runs[run.key]

    async def _execute_run(
        self,
        run: PipelineRun,
        api_diff: Optional[ApiDiff],
    ) -> PipelineReport:
        self._stats["runs_started"] += 1
        await self._emit_event("run.started", run)
        logger.info(
            f"Run {run.run_id}: {run.pipeline.name} on {run.event.ref} "
            f"({len(run.instances)} job(s))"
        )

        stages = [self._run_jobs(run)]
        if run.pipeline.release is not None:
            stages.append(self._run_release(run, api_diff))

        results = await asyncio.gather(*stages)

        decision: Optional[VersionDecision] = None
        gate_result: Optional[ReleaseGateResult] = None
        if len(results) > 1:
            decision, gate_result = results[1]

        report = aggregate(
            run.pipeline.name,
            run.instances,
            gate_result=gate_result,
            version_decision=decision,
            event=run.event,
        )

        if report.passed:
            self._stats["runs_passed"] += 1
        else:
            self._stats["runs_failed"] += 1

        await self._emit_event("run.completed", run, report=report.to_dict())
        return report

    # =========================================================================
    # Job Matrix
    # =========================================================================

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.max_concurrent_jobs)
        return self._semaphore

    async def _run_jobs(self, run: PipelineRun) -> None:
        await asyncio.gather(*(self._run_job(run, i) for i in run.instances))

    async def _run_job(self, run: PipelineRun, instance: JobInstance) -> None:
        async with self._get_semaphore():
            await self._emit_event("job.started", run, job=instance.name)
            await self._runner.run(instance)

        self._stats["jobs_run"] += 1
        if instance.outcome == JobOutcome.FAILED:
            self._stats["jobs_failed"] += 1
            if instance.tolerant:
                self._stats["tolerated_failures"] += 1

        await self._emit_event(
            "job.finished",
            run,
            job=instance.name,
            outcome=instance.outcome.value,
            tolerant=instance.tolerant,
        )

    # =========================================================================
    # Release Sequence
    # =========================================================================

    async def _run_release(
        self,
        run: PipelineRun,
        api_diff: Optional[ApiDiff],
    ) -> Tuple[Optional[VersionDecision], ReleaseGateResult]:
        release = run.pipeline.release

        try:
            tag = await self._history.previous_tag(release.ref)
            commits = await self._history.commits_since(tag, release.ref)
            decision = self._arbiter.decide(commits, tag)
        except (ExternalToolUnavailable, ConfigurationError) as e:
            logger.warning(f"Run {run.run_id}: cannot compute release version: {e}")
            gate_result = self._gate.unavailable(f"release version could not be computed: {e}")
            self._stats["releases_blocked"] += 1
            await self._emit_event("release.gated", run, gate=gate_result.to_dict())
            return None, gate_result

        await self._emit_event("release.decided", run, decision=decision.to_dict())

        detail = "no API compatibility checker configured"
        if api_diff is None and release.api_check is not None:
            api_diff, detail = await self._classify_api(release)

        if api_diff is None:
            gate_result = self._gate.unavailable(
                f"API compatibility classification unavailable: {detail}", decision
            )
        else:
            gate_result = self._gate.evaluate(decision, api_diff)

        if not gate_result.passed:
            self._stats["releases_blocked"] += 1

        await self._emit_event("release.gated", run, gate=gate_result.to_dict())
        return decision, gate_result

    async def _classify_api(self, release) -> Tuple[Optional[ApiDiff], str]:
        """Run the API compatibility checker and read its classification"""
        instance = expand(release.api_check)[0]
        await self._runner.run(instance)

        if instance.api_diff is not None:
            return instance.api_diff, ""
        if instance.failure_kind is not None:
            return None, f"API checker {instance.failure_kind.value}: {instance.log.strip()[-500:]}"
        return None, "API checker did not report a classification"

    # =========================================================================
    # Event System
    # =========================================================================

    def on(self, event: str, handler: Callable) -> None:
        """Register event handler"""
        if event not in self._event_handlers:
            self._event_handlers[event] = []
        self._event_handlers[event].append(handler)

    async def _flush_events(self) -> None:
        if self._event_sink is not None:
            await self._event_sink.flush()

    async def _emit_event(self, event: str, run: PipelineRun, **kwargs) -> None:
        """Emit an event to handlers and the event sink"""
        handlers = self._event_handlers.get(event, [])
        for handler in handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event, run, **kwargs)
                else:
                    handler(event, run, **kwargs)
            except Exception as e:
                logger.error(f"Event handler error: {e}")

        if self._event_sink is not None:
            status = "fail" if kwargs.get("outcome") == "failed" else "info"
            self._event_sink.publish(
                f"ci.{event}",
                status=status,
                metadata={**run.to_dict(), **kwargs},
            )

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        return {
            **self._stats,
            "active_runs": len(self._active_runs),
        }
