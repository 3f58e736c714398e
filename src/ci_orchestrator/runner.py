"""
Verification Job Runner

Executes a single job instance against the check tool bound to its
template. Every failure mode ends up as data on the instance: a failing
check, a missed deadline and an unavailable tool all record
outcome=failed with the cause in the log. Only cancellation propagates.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from .adapters.base import BaseCheckTool
from .exceptions import ExternalToolUnavailable, JobExecutionFailure
from .main import FailureKind, JobInstance, JobOutcome

logger = logging.getLogger(__name__)


class JobRunner:
    """Runs job instances, one at a time per call, against registered tools"""

    def __init__(
        self,
        tools: Dict[str, BaseCheckTool],
        default_timeout_ms: int = 3600000,
    ):
        self._tools = tools
        self.default_timeout_ms = default_timeout_ms

    def timeout_seconds(self, instance: JobInstance) -> float:
        timeout_ms = instance.template.timeout_ms or self.default_timeout_ms
        return timeout_ms / 1000

    async def run(self, instance: JobInstance) -> JobInstance:
        instance.started_at = datetime.now()
        tool: Optional[BaseCheckTool] = self._tools.get(instance.template.tool)

        try:
            if tool is None:
                raise ExternalToolUnavailable(
                    f"No check tool registered as '{instance.template.tool}'"
                )

            result = await asyncio.wait_for(
                tool.run(instance),
                timeout=self.timeout_seconds(instance),
            )
            instance.log = result.log
            instance.api_diff = result.api_diff
            if result.passed:
                instance.outcome = JobOutcome.PASSED
            else:
                instance.outcome = JobOutcome.FAILED
                instance.failure_kind = FailureKind.CHECK_FAILED

        except asyncio.TimeoutError:
            instance.outcome = JobOutcome.FAILED
            instance.failure_kind = FailureKind.TIMED_OUT
            instance.log = f"Job exceeded its deadline of {self.timeout_seconds(instance):g}s"
            logger.warning(f"[{instance.name}] timed out")

        except ExternalToolUnavailable as e:
            instance.outcome = JobOutcome.FAILED
            instance.failure_kind = FailureKind.TOOL_UNAVAILABLE
            instance.log = str(e)
            logger.warning(f"[{instance.name}] check tool unavailable: {e}")

        except JobExecutionFailure as e:
            instance.outcome = JobOutcome.FAILED
            instance.failure_kind = FailureKind.CHECK_FAILED
            instance.log = str(e)
            logger.warning(f"[{instance.name}] check failed: {e}")

        except asyncio.CancelledError:
            raise

        except Exception as e:
            logger.exception(f"[{instance.name}] check tool error")
            instance.outcome = JobOutcome.FAILED
            instance.failure_kind = FailureKind.CHECK_FAILED
            instance.log = f"Check tool error: {e}"

        finally:
            instance.finished_at = datetime.now()

        logger.info(
            f"[{instance.name}] {instance.outcome.value.upper()}"
            + (" (tolerant)" if instance.tolerant and instance.outcome == JobOutcome.FAILED else "")
        )
        return instance
