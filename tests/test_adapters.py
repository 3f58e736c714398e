"""
Tests for check tool adapters
"""

import asyncio
import sys

import pytest

from ci_orchestrator.adapters import CommandCheckTool, MockCheckTool, parse_api_diff
from ci_orchestrator.exceptions import ExternalToolUnavailable
from ci_orchestrator.main import ApiDiff, JobTemplate
from ci_orchestrator.matrix import expand

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")


def command_instance(command, **kwargs):
    return expand(JobTemplate(name="job", command=command, **kwargs))[0]


class TestParseApiDiff:
    """Tests for parse_api_diff"""

    def test_single_line(self):
        assert parse_api_diff("checking...\napi-diff: additive\n") == ApiDiff.ADDITIVE

    def test_last_line_wins(self):
        output = "api-diff: no-change\nmore analysis\napi-diff: breaking\n"
        assert parse_api_diff(output) == ApiDiff.BREAKING

    def test_absent(self):
        assert parse_api_diff("all good\n") is None

    def test_unknown_classification_ignored(self):
        assert parse_api_diff("api-diff: maybe\n") is None


class TestCommandCheckTool:
    """Tests for CommandCheckTool"""

    @pytest.fixture
    def tool(self, tmp_path):
        return CommandCheckTool(workspace_path=tmp_path)

    @pytest.mark.asyncio
    async def test_exit_zero_passes(self, tool):
        result = await tool.run(command_instance("echo hello"))

        assert result.passed
        assert "hello" in result.log
        assert result.metadata["returncode"] == 0

    @pytest.mark.asyncio
    async def test_nonzero_exit_fails(self, tool):
        result = await tool.run(command_instance("echo broken >&2; exit 3"))

        assert not result.passed
        assert "broken" in result.log
        assert result.metadata["returncode"] == 3

    @pytest.mark.asyncio
    async def test_command_not_found(self, tool):
        """Exit status 127 means the tool is not installed"""
        with pytest.raises(ExternalToolUnavailable):
            await tool.run(command_instance("definitely-not-a-real-tool-xyz --check"))

    @pytest.mark.asyncio
    async def test_empty_command(self, tool):
        with pytest.raises(ExternalToolUnavailable):
            await tool.run(command_instance("   "))

    @pytest.mark.asyncio
    async def test_missing_working_directory(self, tool):
        with pytest.raises(ExternalToolUnavailable):
            await tool.run(command_instance("true", working_directory="sdk"))

    @pytest.mark.asyncio
    async def test_working_directory(self, tool, tmp_path):
        (tmp_path / "sdk").mkdir()
        result = await tool.run(command_instance("pwd", working_directory="sdk"))

        assert result.log.strip().endswith("sdk")

    @pytest.mark.asyncio
    async def test_matrix_values_rendered_and_exported(self, tool):
        instance = command_instance(
            'echo "arg=${{ matrix.rust_version }} env=$MATRIX_RUST_VERSION"',
            axes=(("rust_version", ("1.74.0",)),),
        )
        result = await tool.run(instance)

        assert "arg=1.74.0 env=1.74.0" in result.log

    @pytest.mark.asyncio
    async def test_template_env(self, tool):
        result = await tool.run(command_instance('echo "$RUST_BACKTRACE"', env={"RUST_BACKTRACE": "1"}))
        assert result.log.strip() == "1"

    @pytest.mark.asyncio
    async def test_reports_api_diff(self, tool):
        result = await tool.run(command_instance("echo 'api-diff: breaking'"))

        assert result.passed
        assert result.api_diff == ApiDiff.BREAKING

    @pytest.mark.asyncio
    async def test_cancel_kills_child(self, tool, tmp_path):
        """A cancelled job does not leave its process running"""
        marker = tmp_path / "finished"
        task = asyncio.create_task(tool.run(command_instance(f"sleep 2 && touch {marker}")))
        await asyncio.sleep(0.2)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.sleep(2.5)
        assert not marker.exists()


class TestMockCheckTool:
    """Tests for MockCheckTool"""

    @pytest.mark.asyncio
    async def test_pattern_outcomes(self):
        tool = MockCheckTool(outcomes={"lint*": False}, default=True)
        instances = expand(JobTemplate(name="lint", axes=(("x", (1, 2)),)))

        results = [await tool.run(i) for i in instances]

        assert [r.passed for r in results] == [False, False]
        assert tool.calls == ["lint (1)", "lint (2)"]

    @pytest.mark.asyncio
    async def test_health_check(self):
        health = await MockCheckTool().health_check()
        assert health["status"] == "healthy"
        assert health["tool"] == "mock"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
