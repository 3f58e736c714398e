"""
Commit History Providers

Supply the previous release tag and the commits since it to the version
arbiter. GitHistory shells out to git; StaticHistory serves fixed data.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .exceptions import ExternalToolUnavailable
from .main import CommitRecord
from .versioning import SemanticVersion

logger = logging.getLogger(__name__)

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


def parse_git_log(output: str) -> List[CommitRecord]:
    """Parse `git log --format=%H%x1f%ct%x1f%B%x1e` output"""
    commits = []
    for record in output.split(_RECORD_SEP):
        record = record.strip("\n")
        if not record:
            continue
        sha, timestamp, message = record.split(_FIELD_SEP, 2)
        commits.append(
            CommitRecord(
                sha=sha,
                message=message.strip(),
                timestamp=datetime.fromtimestamp(int(timestamp), tz=timezone.utc),
            )
        )
    return commits


def latest_release_tag(tags: Iterable[str], prefix: str = "v") -> Optional[str]:
    """
    First tag in `tags` that names a release version.

    Pre-release and other non-release tags (v1.3.0-rc.1, nightly) are
    skipped so they never become the previous release.
    """
    for tag in tags:
        if not tag.startswith(prefix):
            continue
        try:
            SemanticVersion.parse(tag, prefix)
        except ValueError:
            logger.debug(f"Skipping non-release tag {tag}")
            continue
        return tag
    return None


class GitHistory:
    """Reads tags and commit ranges from a local git checkout"""

    def __init__(
        self,
        repo_path: Optional[Path] = None,
        tag_prefix: str = "v",
        git_executable: str = "git",
    ):
        self.repo_path = Path(repo_path or ".")
        self.tag_prefix = tag_prefix
        self.git_executable = git_executable

    async def _git(self, *args: str) -> Tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.git_executable, *args,
                cwd=str(self.repo_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalToolUnavailable(f"Cannot run {self.git_executable}: {e}") from e

        stdout, stderr = await proc.communicate()
        return (
            proc.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def previous_tag(self, ref: str = "HEAD") -> Optional[str]:
        """Highest release tag reachable from ref, or None"""
        code, out, err = await self._git(
            "tag", "--list", f"{self.tag_prefix}*",
            "--merged", ref,
            "--sort=-v:refname",
        )
        if code != 0:
            logger.info(f"Cannot list tags reachable from {ref}: {err.strip()}")
            return None

        tag = latest_release_tag(out.split(), self.tag_prefix)
        if tag is None:
            logger.info(f"No previous release tag reachable from {ref}")
        return tag

    async def commits_since(self, tag: Optional[str], ref: str = "HEAD") -> List[CommitRecord]:
        """Commits in (tag, ref], oldest first"""
        revision = f"{tag}..{ref}" if tag else ref
        code, out, err = await self._git(
            "log", "--reverse",
            f"--format=%H{_FIELD_SEP}%ct{_FIELD_SEP}%B{_RECORD_SEP}",
            revision,
        )
        if code != 0:
            raise ExternalToolUnavailable(f"git log {revision} failed: {err.strip()}")
        return parse_git_log(out)


class StaticHistory:
    """
    History provider over an in-memory commit list.

    `tag` or `tags` (newest first) are candidates for the previous release;
    they go through the same release-tag filter as GitHistory.
    """

    def __init__(
        self,
        commits: Sequence[CommitRecord] = (),
        tag: Optional[str] = None,
        tags: Sequence[str] = (),
        tag_prefix: str = "v",
    ):
        self.commits = list(commits)
        self.tags = ([tag] if tag else []) + list(tags)
        self.tag_prefix = tag_prefix

    async def previous_tag(self, ref: str = "HEAD") -> Optional[str]:
        return latest_release_tag(self.tags, self.tag_prefix)

    async def commits_since(self, tag: Optional[str], ref: str = "HEAD") -> List[CommitRecord]:
        return list(self.commits)
