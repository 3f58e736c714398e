"""
Release Gate

Compares the version bump computed from commit markers with the API
change detected by the API compatibility checker, and blocks the release
when the bump is too small.

The gate is a pure comparison. A blocked release is a policy violation
reported back to the author with the marker that unblocks it; it is not
retried and it is not a system fault.
"""

import logging
from typing import Dict, Optional

from .main import ApiDiff, BumpLevel, ReleaseGateResult, ReleasePolicy, VersionDecision
from .versioning import SemanticVersion

logger = logging.getLogger(__name__)


REQUIRED_MINIMUM_BUMP: Dict[ApiDiff, BumpLevel] = {
    ApiDiff.NO_CHANGE: BumpLevel.PATCH,
    ApiDiff.ADDITIVE: BumpLevel.MINOR,
    ApiDiff.BREAKING: BumpLevel.MAJOR,
}


def required_minimum_bump(
    api_diff: ApiDiff,
    previous_version: SemanticVersion,
    policy: ReleasePolicy,
) -> BumpLevel:
    """Smallest bump that is consistent with the API change"""
    required = REQUIRED_MINIMUM_BUMP[api_diff]
    if (
        api_diff == ApiDiff.BREAKING
        and policy.allow_minor_breaking_pre_stable
        and not previous_version.is_stable
    ):
        required = BumpLevel.MINOR
    return required


class ReleaseGate:
    """
    Gate between the version arbiter and publication.

    Usage:
        gate = ReleaseGate(policy)
        result = gate.evaluate(decision, ApiDiff.ADDITIVE)
        if not result.passed:
            print(result.reason)
    """

    def __init__(self, policy: Optional[ReleasePolicy] = None):
        self.policy = policy or ReleasePolicy()

    def marker_for(self, level: BumpLevel) -> Optional[str]:
        """Commit marker that produces the given bump"""
        return {
            BumpLevel.MAJOR: self.policy.markers.major,
            BumpLevel.MINOR: self.policy.markers.minor,
        }.get(level)

    def evaluate(self, decision: VersionDecision, api_diff: ApiDiff) -> ReleaseGateResult:
        previous = SemanticVersion.parse(decision.previous_version)
        required = required_minimum_bump(api_diff, previous, self.policy)

        if decision.bump_level < required:
            marker = self.marker_for(required)
            result = ReleaseGateResult(
                passed=False,
                required_minimum_bump=required,
                bump_level=decision.bump_level,
                api_diff=api_diff,
                required_marker=marker,
                reason=(
                    f"API change '{api_diff.value}' requires at least a {required.name} bump "
                    f"but the commits only imply {decision.bump_level.name}. "
                    f"Add {marker} to a commit message (or the pull request title) to unblock."
                ),
            )
            logger.warning(f"Release gate BLOCKED - {result.reason}")
            return result

        result = ReleaseGateResult(
            passed=True,
            required_minimum_bump=required,
            bump_level=decision.bump_level,
            api_diff=api_diff,
            reason=(
                f"{decision.bump_level.name} bump to {decision.computed_version} satisfies "
                f"API change '{api_diff.value}' (requires {required.name})"
            ),
        )
        logger.info(f"Release gate passed - {result.reason}")
        return result

    def unavailable(self, reason: str, decision: Optional[VersionDecision] = None) -> ReleaseGateResult:
        """Fail closed when the release cannot be checked"""
        result = ReleaseGateResult(
            passed=False,
            required_minimum_bump=None,
            bump_level=decision.bump_level if decision else None,
            reason=reason,
        )
        logger.warning(f"Release gate BLOCKED - {result.reason}")
        return result
