"""
Extraction Orchestrator.

Sequences one extraction job: initialize the target, materialize the source,
prepare the removal branch, filter the history into the target, check it out
and clean up. The first failing stage aborts the rest of the job.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .errors import ConfigInvalidError, ExtractionError
from .history.engine import FilterResult, HistoryFilterEngine, ProgressCallback
from .history.models import PathSet
from .repository.client import GitCommandClient
from .repository.lifecycle import CleanupReport, RepositoryLifecycleManager
from .utils.exception_logger import ExceptionLogger

logger = logging.getLogger(__name__)


class ExtractionStage(str, Enum):
    """Stages of an extraction job, in execution order.

    CLEANUP strips the upstream remote and all tags from the target. The
    target is recreated by INITIALIZE_TARGET and the filter never writes tags,
    so on a normal run both passes find nothing; they only matter for a
    target someone fetched into or reused outside this tool.
    """

    INITIALIZE_TARGET = "initialize_target"
    MATERIALIZE_SOURCE = "materialize_source"
    PREPARE_BRANCH = "prepare_branch"
    FILTER_HISTORY = "filter_history"
    CHECKOUT_TARGET = "checkout_target"
    CLEANUP = "cleanup"
    DONE = "done"


@dataclass(frozen=True)
class ExtractionJob:
    """Everything one extraction needs, fixed for the job's lifetime."""

    name: str
    source_url: str
    source_dir: Path
    upstream_name: str
    paths: Tuple[str, ...]
    target_dir: Path
    upstream_remote: str = "upstream"
    upstream_branch: str = "master"
    source_branch: str = "master"
    cleanup: bool = True
    git_timeout: Optional[float] = 600
    fetch_retries: int = 2

    @property
    def extract_branch(self) -> str:
        """Branch on the source that removes the extracted paths."""
        return f"extract_{self.name}"

    @property
    def removal_message(self) -> str:
        return f"Extract {self.name}"

    @property
    def path_set(self) -> PathSet:
        return PathSet.of(self.paths)


@dataclass
class JobReport:
    """Outcome of one job."""

    job: ExtractionJob
    stage: ExtractionStage = ExtractionStage.INITIALIZE_TARGET
    succeeded: bool = False
    error: Optional[ExtractionError] = None
    filter_result: Optional[FilterResult] = None
    removal_commit: Optional[str] = None
    cleanup_reports: List[CleanupReport] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def tip(self) -> Optional[str]:
        return self.filter_result.tip if self.filter_result else None


LifecycleFactory = Callable[[ExtractionJob], RepositoryLifecycleManager]


def default_lifecycle(job: ExtractionJob) -> RepositoryLifecycleManager:
    return RepositoryLifecycleManager(
        GitCommandClient(timeout=job.git_timeout, fetch_retries=job.fetch_retries)
    )


class ExtractionOrchestrator:
    """Runs extraction jobs stage by stage."""

    def __init__(
        self,
        lifecycle_factory: Optional[LifecycleFactory] = None,
        prepare_branch: bool = True,
        cleanup: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """Initialize the orchestrator.

        Args:
            lifecycle_factory: Builds the lifecycle manager for a job
            prepare_branch: Whether to create the removal branch on the source
            cleanup: Whether to run post-run cleanup (jobs can also opt out)
            progress_callback: Passed through to the history filter engine
        """
        self.lifecycle_factory = lifecycle_factory or default_lifecycle
        self.prepare_branch = prepare_branch
        self.cleanup = cleanup
        self.progress_callback = progress_callback

    def run(self, job: ExtractionJob) -> JobReport:
        """Run one job; errors are captured in the report, never raised."""
        report = JobReport(job=job)
        started = time.time()
        logger.info(f"Starting extraction {job.name} of {', '.join(job.paths)}")

        try:
            self._run_stages(job, report)
            report.stage = ExtractionStage.DONE
            report.succeeded = True
        except ExtractionError as e:
            self._record_failure(report, e)
        except OSError as e:
            # filesystem trouble (e.g. removing the old target) fails the job too
            wrapped = ExtractionError(str(e))
            wrapped.__cause__ = e
            self._record_failure(report, wrapped)
        finally:
            report.elapsed_seconds = time.time() - started

        return report

    def _record_failure(self, report: JobReport, error: ExtractionError) -> None:
        error.stage = error.stage or report.stage.value
        report.error = error
        logger.error(
            f"Extraction {report.job.name} failed during {error.stage}: {error}"
        )
        exception_logger = ExceptionLogger.get_instance()
        if exception_logger:
            exception_logger.log_exception(
                error, context={"job": report.job.name, "stage": error.stage}
            )

    def _run_stages(self, job: ExtractionJob, report: JobReport) -> None:
        lifecycle = self.lifecycle_factory(job)

        report.stage = ExtractionStage.INITIALIZE_TARGET
        lifecycle.initialize_target(job.target_dir, job.source_branch)

        report.stage = ExtractionStage.MATERIALIZE_SOURCE
        lifecycle.materialize_source(job.source_dir, job.source_url, job.upstream_remote)

        if self.prepare_branch:
            report.stage = ExtractionStage.PREPARE_BRANCH
            report.removal_commit = lifecycle.prepare_branch(
                job.source_dir,
                source_branch=job.source_branch,
                new_branch=job.extract_branch,
                paths=job.paths,
                remote=job.upstream_remote,
                upstream_branch=job.upstream_branch,
                message=job.removal_message,
            )

        report.stage = ExtractionStage.FILTER_HISTORY
        engine = HistoryFilterEngine.for_repositories(
            job.source_dir, job.target_dir, progress_callback=self.progress_callback
        )
        report.filter_result = engine.run(
            source_ref=job.source_branch,
            path_set=job.path_set,
            provenance_label=job.upstream_name,
            target_branch=job.source_branch,
        )

        if report.filter_result.tip is not None:
            report.stage = ExtractionStage.CHECKOUT_TARGET
            lifecycle.checkout_target(job.target_dir, report.filter_result.branch)

        if self.cleanup and job.cleanup:
            report.stage = ExtractionStage.CLEANUP
            report.cleanup_reports.append(
                lifecycle.remove_upstream_remote(job.target_dir, job.upstream_remote)
            )
            report.cleanup_reports.append(lifecycle.remove_all_tags(job.target_dir))

    def run_all(
        self, jobs: Sequence[ExtractionJob], max_workers: int = 1
    ) -> List[JobReport]:
        """Run independent jobs, sequentially or on a thread pool.

        Raises:
            ConfigInvalidError: If concurrent jobs would share a source clone
                                or a target directory
        """
        if max_workers > 1:
            check_jobs_independent(jobs)
            with ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="extract"
            ) as executor:
                return list(executor.map(self.run, jobs))
        return [self.run(job) for job in jobs]


def check_jobs_independent(jobs: Sequence[ExtractionJob]) -> None:
    """Reject concurrent jobs that would mutate the same checkout.

    Raises:
        ConfigInvalidError: If two jobs share a source or target directory
    """
    seen = {}
    for job in jobs:
        for role, directory in (("source", job.source_dir), ("target", job.target_dir)):
            other = seen.get(directory)
            if other is not None:
                raise ConfigInvalidError(
                    f"Jobs {other} and {job.name} both use {directory}; "
                    f"concurrent jobs need their own {role} clone"
                )
            seen[directory] = job.name
