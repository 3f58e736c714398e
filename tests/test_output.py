"""
Tests for console output
"""

import pytest

from ci_orchestrator import Event, EventKind, PipelineOrchestrator
from ci_orchestrator.adapters.mock import MockCheckTool
from ci_orchestrator.config import PipelineDefinition
from ci_orchestrator.dispatcher import BranchFilter, TriggerSpec
from ci_orchestrator.main import JobTemplate
from ci_orchestrator.output import ConsoleFormatter, OutputLevel


def make_pipeline() -> PipelineDefinition:
    return PipelineDefinition(
        name="ci",
        triggers=TriggerSpec(push=BranchFilter()),
        jobs=(
            JobTemplate(name="lint", tool="mock"),
            JobTemplate(name="audit", tool="mock", tolerant=True),
        ),
    )


class TestConsoleFormatter:
    """Tests for ConsoleFormatter attached to a run"""

    @pytest.mark.asyncio
    async def test_progress_and_report(self, capsys):
        orch = PipelineOrchestrator(
            pipelines=[make_pipeline()],
            tools={"mock": MockCheckTool(outcomes={"audit": False})},
        )
        formatter = ConsoleFormatter(level=OutputLevel.VERBOSE, use_colors=False)
        formatter.attach(orch)

        reports = await orch.handle_event(Event(EventKind.PUSH, ref="main"))
        formatter.render(reports[0])
        out = capsys.readouterr().out

        assert "lint PASSED" in out
        assert "audit FAILED (tolerated)" in out
        assert "PIPELINE CI" in out
        assert "Status: PASS" in out

    @pytest.mark.asyncio
    async def test_quiet_hides_progress(self, capsys):
        orch = PipelineOrchestrator(
            pipelines=[make_pipeline()],
            tools={"mock": MockCheckTool()},
        )
        ConsoleFormatter(level=OutputLevel.QUIET, use_colors=False).attach(orch)

        await orch.handle_event(Event(EventKind.PUSH, ref="main"))

        assert "lint" not in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
