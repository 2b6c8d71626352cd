"""
Repository lifecycle around a filtering run.

Creates the target repository, clones or validates the source repository,
prepares the branch that removes the extracted paths from the source, and
performs best-effort housekeeping afterwards.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import NotARepositoryError, VCSCommandError
from .client import GitCommandClient, RepositoryClient

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """What a best-effort cleanup pass removed and what it could not."""

    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class RepositoryLifecycleManager:
    """Sets up and tears down the repositories of an extraction job."""

    def __init__(self, client: Optional[RepositoryClient] = None):
        """Initialize the lifecycle manager.

        Args:
            client: Version control client (defaults to GitCommandClient())
        """
        self.client = client or GitCommandClient()

    def initialize_target(self, repo_dir: Path, initial_branch: str = "master") -> None:
        """Create an empty target repository, replacing anything at repo_dir.

        This is destructive: an existing directory is deleted first.
        """
        repo_dir = Path(repo_dir)
        if repo_dir.exists():
            logger.warning(f"Removing existing target directory {repo_dir}")
            shutil.rmtree(repo_dir)

        logger.info(f"Initializing target repository {repo_dir}")
        self.client.init(repo_dir, initial_branch)

    def materialize_source(
        self, repo_dir: Path, url: str, origin_name: str = "upstream"
    ) -> None:
        """Clone the source repository, or validate an existing clone.

        Raises:
            NotARepositoryError: If repo_dir exists but is not a repository
            VCSCommandError: If cloning fails
        """
        repo_dir = Path(repo_dir)
        if repo_dir.exists():
            if not self.client.is_repository(repo_dir):
                raise NotARepositoryError(f"Not a git repository: {repo_dir}")
            logger.info(f"Reusing existing source clone {repo_dir}")
            return

        logger.info(f"Cloning {url} into {repo_dir}")
        self.client.clone(url, repo_dir, origin_name)

    def prepare_branch(
        self,
        repo_dir: Path,
        source_branch: str,
        new_branch: str,
        paths: Sequence[str],
        remote: str = "upstream",
        upstream_branch: str = "master",
        message: Optional[str] = None,
    ) -> Optional[str]:
        """Create new_branch on the source with the extracted paths removed.

        Checks out source_branch, rebases it onto <remote>/<upstream_branch>,
        recreates new_branch from there and commits the removal of paths. The
        branch is meant to be merged upstream once the extraction lands; it is
        never read by the history filter.

        Args:
            repo_dir: Source repository working tree
            source_branch: Branch to start from
            new_branch: Branch to (re)create
            paths: Extraction paths to remove
            remote: Remote to synchronize with
            upstream_branch: Branch of the remote to rebase onto
            message: Commit message for the removal commit

        Returns:
            Id of the removal commit, or None if none of the paths existed

        Raises:
            VCSCommandError: If any git step fails
        """
        repo_dir = Path(repo_dir)
        logger.info(f"Preparing branch {new_branch} in {repo_dir}")

        self.client.checkout(repo_dir, source_branch)
        self.client.fetch(repo_dir, remote)
        self.client.rebase(repo_dir, f"{remote}/{upstream_branch}")

        if new_branch in self.client.list_branches(repo_dir):
            logger.info(f"Deleting existing branch {new_branch}")
            self.client.delete_branch(repo_dir, new_branch)

        self.client.checkout(repo_dir, new_branch, create=True)
        self.client.remove_paths(repo_dir, paths)

        if not self.client.has_staged_changes(repo_dir):
            logger.warning(
                f"None of {', '.join(paths)} exist on {new_branch}; no removal commit made"
            )
            return None

        return self.client.commit(repo_dir, message or f"Extract {new_branch}")

    def checkout_target(self, repo_dir: Path, branch: str) -> None:
        """Make the target's HEAD and working tree follow branch."""
        self.client.checkout_branch_head(Path(repo_dir), branch)

    def remove_upstream_remote(
        self, repo_dir: Path, remote: str = "upstream"
    ) -> CleanupReport:
        """Remove the upstream remote if present. Never raises."""
        report = CleanupReport()
        repo_dir = Path(repo_dir)
        try:
            if remote not in self.client.list_remotes(repo_dir):
                return report
            self.client.remove_remote(repo_dir, remote)
            report.removed.append(remote)
        except VCSCommandError as e:
            logger.warning(f"Could not remove remote {remote} from {repo_dir}: {e}")
            report.failed.append(remote)
        return report

    def remove_all_tags(self, repo_dir: Path) -> CleanupReport:
        """Delete every tag, continuing past tags that fail. Never raises."""
        report = CleanupReport()
        repo_dir = Path(repo_dir)
        try:
            tags = self.client.list_tags(repo_dir)
        except VCSCommandError as e:
            logger.warning(f"Could not list tags in {repo_dir}: {e}")
            report.failed.append("*")
            return report

        for tag in tags:
            try:
                logger.info(f"Removing tag {tag}")
                self.client.delete_tag(repo_dir, tag)
                report.removed.append(tag)
            except VCSCommandError as e:
                logger.warning(f"Could not remove tag {tag}: {e}")
                report.failed.append(tag)
        return report
