"""
Base Check Tool Interface

All check tool adapters (test runners, linters, formatters, audits,
API compatibility checkers) implement this interface.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..main import ApiDiff, JobInstance

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Result of one check tool invocation"""
    passed: bool
    log: str = ""
    api_diff: Optional[ApiDiff] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "log": self.log,
            "api_diff": self.api_diff.value if self.api_diff else None,
            "metadata": self.metadata,
        }


class BaseCheckTool(ABC):
    """
    Base class for check tool adapters.

    run() receives the job instance with its resolved axis assignment and
    returns pass/fail plus log. Adapters raise ExternalToolUnavailable when
    the tool cannot be invoked at all and may raise JobExecutionFailure to
    fail the check with a message; any other exception is also recorded by
    the runner as a failed check.
    """

    name: str = "base"

    async def initialize(self) -> None:
        """Prepare the tool (install, warm caches, etc.)"""
        pass

    @abstractmethod
    async def run(self, instance: JobInstance) -> CheckResult:
        """Run the check for one job instance"""
        pass

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "tool": self.name}

    async def shutdown(self) -> None:
        logger.debug(f"Check tool {self.name} shut down")
