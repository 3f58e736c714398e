"""
Mock Check Tool for Testing

Scripted outcomes keyed by job instance name, for exercising the
orchestrator without running real tools.
"""

import asyncio
import fnmatch
import logging
from typing import Any, Dict, List, Optional

from ..exceptions import ExternalToolUnavailable
from ..main import ApiDiff, JobInstance
from .base import BaseCheckTool, CheckResult

logger = logging.getLogger(__name__)


class MockCheckTool(BaseCheckTool):
    """
    Mock check tool.

    `outcomes` maps fnmatch patterns over instance names to pass (True) or
    fail (False); the first matching pattern wins, otherwise `default`.
    Patterns listed in `unavailable` raise ExternalToolUnavailable and
    patterns in `delays` sleep for the given seconds first.
    """

    name = "mock"

    def __init__(
        self,
        outcomes: Optional[Dict[str, bool]] = None,
        default: bool = True,
        api_diff: Optional[ApiDiff] = None,
        delays: Optional[Dict[str, float]] = None,
        unavailable: Optional[List[str]] = None,
    ):
        self.outcomes = outcomes or {}
        self.default = default
        self.api_diff = api_diff
        self.delays = delays or {}
        self.unavailable = unavailable or []
        self.calls: List[str] = []

    def _lookup(self, table: Dict[str, Any], name: str) -> Optional[Any]:
        for pattern, value in table.items():
            if fnmatch.fnmatch(name, pattern):
                return value
        return None

    async def run(self, instance: JobInstance) -> CheckResult:
        self.calls.append(instance.name)

        delay = self._lookup(self.delays, instance.name)
        if delay:
            await asyncio.sleep(delay)

        if any(fnmatch.fnmatch(instance.name, p) for p in self.unavailable):
            raise ExternalToolUnavailable(f"Mock tool unavailable for {instance.name}")

        passed = self._lookup(self.outcomes, instance.name)
        if passed is None:
            passed = self.default

        return CheckResult(
            passed=passed,
            log=f"mock {'pass' if passed else 'fail'}: {instance.command or instance.name}",
            api_diff=self.api_diff,
            metadata={"is_mock": True},
        )

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "tool": "mock", "default": self.default}
