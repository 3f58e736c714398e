"""
Version Arbiter

Classifies the commits since the last release tag into a semantic version
bump, computes the next version and builds the changelog.

Bump classification is a fold over the commit sequence using
BumpLevel.join, so the result never drops below the most significant
marker seen and does not depend on commit order.
"""

import functools
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .exceptions import ConfigurationError
from .main import BumpLevel, CommitRecord, MarkerSet, ReleasePolicy, VersionDecision

logger = logging.getLogger(__name__)

_SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


@dataclass(frozen=True, order=True)
class SemanticVersion:
    """A MAJOR.MINOR.PATCH triple"""
    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str, prefix: str = "v") -> "SemanticVersion":
        """Parse '1.2.3' or '<prefix>1.2.3'. Raises ValueError otherwise."""
        value = text.strip()
        if prefix and value.startswith(prefix):
            value = value[len(prefix):]
        match = _SEMVER_RE.match(value)
        if not match:
            raise ValueError(f"Not a semantic version: {text!r}")
        return cls(*(int(part) for part in match.groups()))

    def bump(self, level: BumpLevel) -> "SemanticVersion":
        if level == BumpLevel.MAJOR:
            return SemanticVersion(self.major + 1, 0, 0)
        if level == BumpLevel.MINOR:
            return SemanticVersion(self.major, self.minor + 1, 0)
        return SemanticVersion(self.major, self.minor, self.patch + 1)

    @property
    def is_stable(self) -> bool:
        return self.major >= 1

    def tag(self, prefix: str = "v") -> str:
        return f"{prefix}{self}"

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def classify_message(message: str, markers: MarkerSet = MarkerSet()) -> BumpLevel:
    """Bump level implied by a single commit message"""
    if markers.major in message:
        return BumpLevel.MAJOR
    if markers.minor in message:
        return BumpLevel.MINOR
    return BumpLevel.PATCH


def fold_bump_level(
    commits: Iterable[CommitRecord],
    markers: MarkerSet = MarkerSet(),
) -> BumpLevel:
    """Join the per-commit classifications, starting from PATCH"""
    return functools.reduce(
        lambda level, commit: level.join(classify_message(commit.message, markers)),
        commits,
        BumpLevel.PATCH,
    )


def build_changelog(
    commits: Iterable[CommitRecord],
    markers: MarkerSet = MarkerSet(),
) -> List[str]:
    """One bullet per commit not marked ignored, oldest first"""
    return [
        f"* {commit.subject}"
        for commit in commits
        if markers.ignore not in commit.message
    ]


class VersionArbiter:
    """
    Computes the VersionDecision for a commit range.

    Pure: the same previous tag and commits always give the same decision.
    When there is no previous tag the policy's floor version stands in for
    the previous version and the bump is applied to it.
    """

    def __init__(self, policy: Optional[ReleasePolicy] = None):
        self.policy = policy or ReleasePolicy()

    def previous_version(self, previous_tag: Optional[str]) -> SemanticVersion:
        if previous_tag is None:
            source = self.policy.floor_version
        else:
            source = previous_tag
        try:
            return SemanticVersion.parse(str(source), self.policy.tag_prefix)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    def decide(
        self,
        commits: Sequence[CommitRecord],
        previous_tag: Optional[str] = None,
    ) -> VersionDecision:
        markers = self.policy.markers
        previous = self.previous_version(previous_tag)
        level = fold_bump_level(commits, markers)
        computed = previous.bump(level)

        decision = VersionDecision(
            previous_version=str(previous),
            bump_level=level,
            computed_version=str(computed),
            changelog=tuple(build_changelog(commits, markers)),
            previous_tag=previous_tag,
            bootstrapped=previous_tag is None,
            commit_count=len(commits),
        )

        logger.info(
            f"Version decision: {decision.previous_version} -> {decision.computed_version} "
            f"({level.name}, {len(commits)} commit(s))"
        )
        return decision


_MANIFEST_VERSION_RE = re.compile(r'^version = "[^"]*"$', re.MULTILINE)


def write_manifest_version(path: Union[str, Path], version: str) -> bool:
    """
    Rewrite the first `version = "..."` line of a manifest.

    Returns False when the manifest already carries the version.
    """
    manifest = Path(path)
    content = manifest.read_text()
    if not _MANIFEST_VERSION_RE.search(content):
        raise ConfigurationError(f"No version line found in {manifest}")

    updated = _MANIFEST_VERSION_RE.sub(f'version = "{version}"', content, count=1)
    if updated == content:
        return False

    manifest.write_text(updated)
    logger.info(f"Set version {version} in {manifest}")
    return True
