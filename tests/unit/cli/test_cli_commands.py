"""Tests for the code-extractor command line interface."""

import pytest
from click.testing import CliRunner

from code_extractor import __version__
from code_extractor.cli import cli

CONFIG_TEMPLATE = """\
name: my_lib
upstream: {upstream}
upstream_name: org/monorepo
extractions:
  - lib/my_lib
"""


@pytest.fixture
def cli_runner():
    """Create CLI runner for testing."""
    return CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run every command from an empty working directory."""
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


@pytest.fixture
def monorepo(make_repo):
    repo = make_repo("monorepo")
    repo.commit("Add lib", {"lib/my_lib/a.rb": "a\n", "app/main.rb": "m\n"})
    repo.commit("Touch app", {"app/main.rb": "m2\n"})
    return repo


def write_config(workdir, monorepo, name="extractions.yml"):
    config_path = workdir / name
    config_path.write_text(CONFIG_TEMPLATE.format(upstream=monorepo.path))
    return config_path


class TestGroup:
    def test_version(self, cli_runner, workdir):
        result = cli_runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_describes_configuration(self, cli_runner, workdir):
        result = cli_runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "extractions.yml" in result.output
        assert "transferred from" in result.output


class TestExtractCommand:
    def test_missing_config_fails(self, cli_runner, workdir):
        result = cli_runner.invoke(cli, ["extract"])

        assert result.exit_code == 1
        assert "ConfigInvalidError" in result.output

    def test_config_missing_keys_fails(self, cli_runner, workdir):
        (workdir / "extractions.yml").write_text("name: my_lib\n")

        result = cli_runner.invoke(cli, ["extract"])

        assert result.exit_code == 1
        assert "upstream_name" in result.output
        assert "key(s) missing" in result.output

    def test_extracts_with_default_config(self, cli_runner, workdir, monorepo, open_repo):
        write_config(workdir, monorepo)

        result = cli_runner.invoke(cli, ["extract"])

        assert result.exit_code == 0, result.output
        assert "my_lib" in result.output
        target = open_repo(workdir / "my_lib")
        assert target.files() == ["lib/my_lib/a.rb"]
        assert len(target.log()) == 1
        assert (workdir / "monorepo_source").is_dir()

    def test_failed_job_exits_non_zero(self, cli_runner, workdir, tmp_path):
        (workdir / "extractions.yml").write_text(
            CONFIG_TEMPLATE.format(upstream=tmp_path / "missing")
        )

        result = cli_runner.invoke(cli, ["extract", "--skip-prepare"])

        assert result.exit_code == 1
        assert "VCSCommandError" in result.output
        assert "materialize_source" in result.output

    def test_parallel_jobs_sharing_a_target_are_rejected(
        self, cli_runner, workdir, monorepo
    ):
        write_config(workdir, monorepo, "a.yml")
        write_config(workdir, monorepo, "b.yml")

        result = cli_runner.invoke(cli, ["extract", "-c", "a.yml", "-c", "b.yml", "-j", "2"])

        assert result.exit_code == 1
        assert "ConfigInvalidError" in result.output


class TestPrepareCommand:
    def test_creates_removal_branch(self, cli_runner, workdir, monorepo, open_repo):
        write_config(workdir, monorepo)

        result = cli_runner.invoke(cli, ["prepare"])

        assert result.exit_code == 0, result.output
        source = open_repo(workdir / "monorepo_source")
        assert source.files("extract_my_lib") == ["app/main.rb"]
        assert "extract_my_lib" in result.output


class TestFilterCommand:
    def test_filters_local_repository(self, cli_runner, workdir, monorepo, make_repo):
        target = make_repo("target")

        result = cli_runner.invoke(
            cli,
            [
                "filter",
                "--source",
                str(monorepo.path),
                "--target",
                str(target.path),
                "--path",
                "lib/my_lib",
                "--label",
                "org/monorepo",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Kept 1 of 2 commits" in result.output
        tip = target.head("master")
        assert target.message(tip).endswith(
            f"(transferred from org/monorepo@{monorepo.log()[0]})"
        )

    def test_named_branch_becomes_head_of_fresh_target(
        self, cli_runner, workdir, monorepo, make_repo
    ):
        target = make_repo("target")

        result = cli_runner.invoke(
            cli,
            [
                "filter",
                "--source",
                str(monorepo.path),
                "--target",
                str(target.path),
                "--path",
                "lib",
                "--label",
                "org/monorepo",
                "--branch",
                "main",
            ],
        )

        assert result.exit_code == 0, result.output
        assert target.git("symbolic-ref", "HEAD") == "refs/heads/main"
        assert target.branches() == ["main"]

    def test_empty_result_is_reported(self, cli_runner, workdir, monorepo, make_repo):
        target = make_repo("target")

        result = cli_runner.invoke(
            cli,
            [
                "filter",
                "--source",
                str(monorepo.path),
                "--target",
                str(target.path),
                "--path",
                "nothing",
                "--label",
                "org/monorepo",
            ],
        )

        assert result.exit_code == 0
        assert "is empty" in result.output
        assert target.branches() == []

    def test_invalid_path_is_a_usage_error(self, cli_runner, workdir, monorepo, make_repo):
        target = make_repo("target")

        result = cli_runner.invoke(
            cli,
            [
                "filter",
                "--source",
                str(monorepo.path),
                "--target",
                str(target.path),
                "--path",
                "../escape",
                "--label",
                "org/monorepo",
            ],
        )

        assert result.exit_code == 2

    def test_unknown_ref_fails(self, cli_runner, workdir, monorepo, make_repo):
        target = make_repo("target")

        result = cli_runner.invoke(
            cli,
            [
                "filter",
                "--source",
                str(monorepo.path),
                "--target",
                str(target.path),
                "--ref",
                "nope",
                "--path",
                "lib",
                "--label",
                "org/monorepo",
            ],
        )

        assert result.exit_code == 1
        assert "RefNotFoundError" in result.output
