"""Command line interface for Code Extractor."""

import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigManager
from .errors import ExtractionError
from .history.engine import HistoryFilterEngine
from .history.models import PathSet
from .orchestrator import ExtractionJob, ExtractionOrchestrator, JobReport
from .repository.client import GitCommandClient
from .repository.lifecycle import RepositoryLifecycleManager
from .utils.exception_logger import ExceptionLogger

console = Console()


def _load_jobs(config_paths: Tuple[str, ...]) -> List[ExtractionJob]:
    paths = config_paths or (str(ConfigManager.DEFAULT_CONFIG_PATH),)
    return [ConfigManager(Path(path)).load_job() for path in paths]


def _fail(error: ExtractionError, verbose: bool) -> None:
    stage = f" during {error.stage}" if error.stage else ""
    console.print(f"❌ {error.kind}{stage}: {error}", style="red")
    if verbose and error.__cause__ is not None:
        console.print(f"   caused by: {error.__cause__!r}", style="dim")
    sys.exit(1)


def _progress_printer(verbose: bool):
    if not verbose:
        return None

    def report(processed: int, kept: int) -> None:
        if processed % 500 == 0:
            console.print(f"   … {processed} commits processed, {kept} kept", style="dim")

    return report


def _display_reports(reports: List[JobReport]) -> None:
    table = Table(title="Extraction results")
    table.add_column("Job", style="cyan")
    table.add_column("Status")
    table.add_column("Branch")
    table.add_column("Tip")
    table.add_column("Kept / Seen", justify="right")

    for report in reports:
        result = report.filter_result
        if report.succeeded:
            status = "[green]ok[/green]"
        else:
            status = f"[red]{report.error.kind if report.error else 'failed'}[/red]"
        table.add_row(
            report.job.name,
            status,
            result.branch if result else "-",
            (result.tip or "(empty)") if result else "-",
            f"{result.commits_kept} / {result.commits_seen}" if result else "-",
        )

    console.print(table)

    for report in reports:
        if report.error is not None:
            console.print(
                f"❌ {report.job.name}: {report.error.kind} during "
                f"{report.error.stage}: {report.error}",
                style="red",
            )
        for cleanup in report.cleanup_reports:
            for item in cleanup.failed:
                console.print(
                    f"⚠️  {report.job.name}: cleanup could not remove {item}",
                    style="yellow",
                )
        if report.succeeded and report.tip is None:
            console.print(
                f"ℹ️  {report.job.name}: no commit touched the extracted paths; "
                "target branch is empty",
                style="yellow",
            )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__, prog_name="code-extractor")
@click.pass_context
def cli(ctx, verbose: bool):
    """Extract paths of a monorepo, with their history, into a new repository.

    \b
    CONFIGURATION (extractions.yml):
      name: my-lib                        # target repository name
      upstream: git@host:org/mono.git     # clone URL of the monorepo
      upstream_name: org/mono             # used in provenance trailers
      upstream_branch: master             # optional
      extractions:
        - lib/my_lib
        - spec/my_lib

    \b
    EXAMPLES:
      code-extractor extract
      code-extractor extract -c a.yml -c b.yml --jobs 2
      code-extractor prepare -c extractions.yml
      code-extractor filter --source mono --target lib --ref master \\
          --path lib/my_lib --label org/mono

    Every rewritten commit message ends with
    "(transferred from <upstream_name>@<original commit id>)".
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    exception_logger = ExceptionLogger.initialize(Path.cwd())
    exception_logger.install_thread_exception_hook()

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )


@cli.command()
@click.option(
    "--config",
    "-c",
    "config_paths",
    multiple=True,
    type=click.Path(),
    help="Extraction config file (repeatable, default: extractions.yml)",
)
@click.option("--jobs", "-j", default=1, show_default=True, help="Jobs to run in parallel")
@click.option(
    "--skip-prepare",
    is_flag=True,
    help="Do not create the removal branch on the source repository",
)
@click.option("--no-cleanup", is_flag=True, help="Keep remotes and tags in the target")
@click.pass_context
def extract(
    ctx, config_paths: Tuple[str, ...], jobs: int, skip_prepare: bool, no_cleanup: bool
):
    """Run the full extraction for each configured job."""
    verbose = ctx.obj["verbose"]
    try:
        loaded = _load_jobs(config_paths)
        if verbose:
            for job in loaded:
                console.print(f"🔍 {job}", style="dim")

        orchestrator = ExtractionOrchestrator(
            prepare_branch=not skip_prepare,
            cleanup=not no_cleanup,
            progress_callback=_progress_printer(verbose),
        )
        reports = orchestrator.run_all(loaded, max_workers=jobs)
    except ExtractionError as e:
        _fail(e, verbose)
        return

    _display_reports(reports)
    if not all(report.succeeded for report in reports):
        sys.exit(1)

    for report in reports:
        tip = report.tip or "(empty)"
        console.print(
            f"✅ {report.job.name}: {report.job.target_dir} "
            f"{report.filter_result.branch if report.filter_result else ''} → {tip}",
            style="green",
        )


@cli.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    default=str(ConfigManager.DEFAULT_CONFIG_PATH),
    show_default=True,
    type=click.Path(),
    help="Extraction config file",
)
@click.pass_context
def prepare(ctx, config_path: str):
    """Create the branch that removes the extracted paths from the source.

    Clones the source if needed, rebases the source branch onto the
    upstream and commits the removal on extract_<name>, ready to be pushed
    as a change against the monorepo.
    """
    verbose = ctx.obj["verbose"]
    try:
        job = ConfigManager(Path(config_path)).load_job()
        lifecycle = RepositoryLifecycleManager(
            GitCommandClient(timeout=job.git_timeout, fetch_retries=job.fetch_retries)
        )
        lifecycle.materialize_source(job.source_dir, job.source_url, job.upstream_remote)
        commit = lifecycle.prepare_branch(
            job.source_dir,
            source_branch=job.source_branch,
            new_branch=job.extract_branch,
            paths=job.paths,
            remote=job.upstream_remote,
            upstream_branch=job.upstream_branch,
            message=job.removal_message,
        )
    except ExtractionError as e:
        _fail(e, verbose)
        return

    if commit:
        console.print(
            f"✅ {job.extract_branch} in {job.source_dir} → {commit}", style="green"
        )
    else:
        console.print(
            f"⚠️  {job.extract_branch} created without a removal commit "
            "(none of the paths exist)",
            style="yellow",
        )


@cli.command(name="filter")
@click.option(
    "--source",
    "source_dir",
    required=True,
    type=click.Path(exists=True, file_okay=False),
    help="Source repository",
)
@click.option(
    "--target",
    "target_dir",
    required=True,
    type=click.Path(exists=True, file_okay=False),
    help="Existing target repository",
)
@click.option("--ref", "source_ref", default="master", show_default=True, help="Source ref to filter")
@click.option("--path", "paths", multiple=True, required=True, help="Path to keep (repeatable)")
@click.option("--label", required=True, help="Upstream name used in provenance trailers")
@click.option("--branch", default=None, help="Target branch (default: same as --ref)")
@click.pass_context
def filter_history(
    ctx,
    source_dir: str,
    target_dir: str,
    source_ref: str,
    paths: Tuple[str, ...],
    label: str,
    branch: Optional[str],
):
    """Filter the history of a local repository into another one."""
    verbose = ctx.obj["verbose"]
    try:
        path_set = PathSet.of(paths)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--path")

    try:
        engine = HistoryFilterEngine.for_repositories(
            Path(source_dir),
            Path(target_dir),
            progress_callback=_progress_printer(verbose),
        )
        result = engine.run(source_ref, path_set, label, target_branch=branch)
        # a freshly initialized target gets HEAD on the filtered branch
        if result.tip is not None and engine.target.head_is_unborn:
            engine.target.set_head(result.branch)
    except ExtractionError as e:
        _fail(e, verbose)
        return

    console.print(
        f"Kept {result.commits_kept} of {result.commits_seen} commits "
        f"({result.commits_dropped} dropped)"
    )
    if result.tip is None:
        console.print(
            f"ℹ️  No commit touches {', '.join(path_set)}; {result.branch} is empty",
            style="yellow",
        )
    else:
        console.print(f"✅ {result.branch} → {result.tip}", style="green")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
