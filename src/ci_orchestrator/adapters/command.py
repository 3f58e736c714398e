"""
Shell Command Check Tool

Runs a job's rendered command in a subprocess. The axis assignment is
exported to the child as MATRIX_<AXIS> environment variables.
"""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional

from ..exceptions import ExternalToolUnavailable
from ..main import ApiDiff, JobInstance
from .base import BaseCheckTool, CheckResult

logger = logging.getLogger(__name__)

# Exit status used by POSIX shells for "command not found"
COMMAND_NOT_FOUND = 127

_API_DIFF_RE = re.compile(r"^api[-_]diff:\s*(no-change|additive|breaking)\s*$", re.MULTILINE)


def parse_api_diff(output: str) -> Optional[ApiDiff]:
    """Last `api-diff: <classification>` line printed by the tool"""
    matches = _API_DIFF_RE.findall(output)
    if not matches:
        return None
    return ApiDiff(matches[-1])


class CommandCheckTool(BaseCheckTool):
    """
    Check tool backed by a shell command.

    Exit status 0 is a pass. Status 127 means the command could not be
    found and is reported as ExternalToolUnavailable.
    """

    name = "command"

    def __init__(self, workspace_path: Optional[Path] = None, shell: str = "/bin/sh"):
        self.workspace_path = Path(workspace_path or ".")
        self.shell = shell

    def _environment(self, instance: JobInstance) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(instance.template.env)
        for axis, value in instance.axis_assignment.items():
            key = "MATRIX_" + re.sub(r"[^A-Za-z0-9]", "_", axis).upper()
            env[key] = str(value)
        return env

    def _cwd(self, instance: JobInstance) -> Path:
        if instance.template.working_directory:
            return self.workspace_path / instance.template.working_directory
        return self.workspace_path

    async def run(self, instance: JobInstance) -> CheckResult:
        command = instance.command
        if not command.strip():
            raise ExternalToolUnavailable(f"Job {instance.name} has no command")

        cwd = self._cwd(instance)
        if not cwd.is_dir():
            raise ExternalToolUnavailable(f"Working directory does not exist: {cwd}")

        logger.debug(f"[{instance.name}] $ {command}")

        try:
            proc = await asyncio.create_subprocess_exec(
                self.shell, "-c", command,
                cwd=str(cwd),
                env=self._environment(instance),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ExternalToolUnavailable(f"Cannot start {self.shell}: {e}") from e

        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            # Timed out or superseded; do not leave the child running
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        output = stdout.decode("utf-8", errors="replace")

        if proc.returncode == COMMAND_NOT_FOUND:
            raise ExternalToolUnavailable(f"Command not found: {command}\n{output}")

        return CheckResult(
            passed=proc.returncode == 0,
            log=output,
            api_diff=parse_api_diff(output),
            metadata={"returncode": proc.returncode, "command": command},
        )
