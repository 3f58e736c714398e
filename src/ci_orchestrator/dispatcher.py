"""
Trigger Dispatcher

Maps an incoming event to the pipelines whose triggers match it.
"""

import fnmatch
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from .exceptions import ConfigurationError
from .main import Event, EventKind

if TYPE_CHECKING:
    from .config import PipelineDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchFilter:
    """fnmatch patterns over branch names; None matches every branch"""
    branches: Optional[Tuple[str, ...]] = None

    def matches(self, branch: Optional[str]) -> bool:
        if self.branches is None:
            return True
        if branch is None:
            return False
        return any(fnmatch.fnmatch(branch, pattern) for pattern in self.branches)


@dataclass(frozen=True)
class TriggerSpec:
    """The events a pipeline runs on"""
    pull_request: Optional[BranchFilter] = None
    push: Optional[BranchFilter] = None
    schedule: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        for cron in self.schedule:
            if len(cron.split()) != 5:
                raise ConfigurationError(f"Invalid cron expression (need 5 fields): {cron!r}")

    def matches(self, event: Event) -> bool:
        if event.kind == EventKind.PULL_REQUEST:
            # Pull requests are filtered on the branch they target
            return self.pull_request is not None and self.pull_request.matches(
                event.base_branch
            )
        if event.kind == EventKind.PUSH:
            return self.push is not None and self.push.matches(event.branch)
        if event.kind == EventKind.SCHEDULE:
            if not self.schedule:
                return False
            return event.schedule is None or event.schedule in self.schedule
        return False


class TriggerDispatcher:
    """Selects the pipelines to execute for an event"""

    def __init__(self, pipelines: Sequence["PipelineDefinition"] = ()):
        self.pipelines = list(pipelines)

    def select(self, event: Event) -> List["PipelineDefinition"]:
        selected = [p for p in self.pipelines if p.triggers.matches(event)]
        logger.info(
            f"Event {event.kind.value} on {event.ref}: "
            f"{len(selected)} pipeline(s) selected {[p.name for p in selected]}"
        )
        return selected
