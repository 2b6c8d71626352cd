"""Unit tests for ConfigManager and ExtractionConfig."""

from pathlib import Path

import pytest

from code_extractor.config import ConfigManager, ExtractionConfig
from code_extractor.errors import ConfigInvalidError

VALID_YAML = """\
name: my_lib
upstream: git@example.com:org/monorepo.git
upstream_name: org/monorepo
extractions:
  - lib/my_lib
  - spec/my_lib
"""


def write_config(tmp_path: Path, content: str, name: str = "extractions.yml") -> Path:
    config_path = tmp_path / name
    config_path.write_text(content)
    return config_path


class TestConfigManagerLoad:
    """Tests for reading configuration files."""

    def test_loads_required_keys(self, tmp_path):
        config = ConfigManager(write_config(tmp_path, VALID_YAML)).load()

        assert config.name == "my_lib"
        assert config.upstream == "git@example.com:org/monorepo.git"
        assert config.upstream_name == "org/monorepo"
        assert config.extractions == ["lib/my_lib", "spec/my_lib"]

    def test_defaults(self, tmp_path):
        config = ConfigManager(write_config(tmp_path, VALID_YAML)).load()

        assert config.upstream_branch == "master"
        assert config.effective_source_branch == "master"
        assert config.upstream_remote == "upstream"
        assert config.git_timeout == 600
        assert config.fetch_retries == 2
        assert config.cleanup is True

    def test_ruby_symbol_keys_are_accepted(self, tmp_path):
        content = """\
:name: my_lib
:upstream: git@example.com:org/monorepo.git
:upstream_name: org/monorepo
:extractions:
  - lib/my_lib
"""
        config = ConfigManager(write_config(tmp_path, content)).load()

        assert config.name == "my_lib"
        assert config.extractions == ["lib/my_lib"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigInvalidError, match="not found"):
            ConfigManager(tmp_path / "nope.yml").load()

    def test_malformed_yaml(self, tmp_path):
        config_path = write_config(tmp_path, "name: [unclosed\n")

        with pytest.raises(ConfigInvalidError, match="Failed to load"):
            ConfigManager(config_path).load()

    def test_non_mapping_document(self, tmp_path):
        config_path = write_config(tmp_path, "- just\n- a list\n")

        with pytest.raises(ConfigInvalidError, match="mapping"):
            ConfigManager(config_path).load()

    def test_missing_keys_are_named(self, tmp_path):
        config_path = write_config(tmp_path, "upstream_name: org/monorepo\nextractions: [a]\n")

        with pytest.raises(ConfigInvalidError) as exc_info:
            ConfigManager(config_path).load()

        assert exc_info.value.missing_keys == ["name", "upstream"]
        assert str(exc_info.value) == "name, upstream key(s) missing"

    def test_empty_extractions_count_as_missing(self, tmp_path):
        content = VALID_YAML.split("extractions:")[0] + "extractions: []\n"

        with pytest.raises(ConfigInvalidError) as exc_info:
            ConfigManager(write_config(tmp_path, content)).load()

        assert exc_info.value.missing_keys == ["extractions"]

    def test_invalid_values_are_reported(self, tmp_path):
        content = VALID_YAML + "fetch_retries: -1\n"

        with pytest.raises(ConfigInvalidError, match="fetch_retries"):
            ConfigManager(write_config(tmp_path, content)).load()


class TestExtractionConfig:
    def test_extraction_paths_are_normalized_and_deduplicated(self):
        config = ExtractionConfig(
            name="x",
            upstream="u",
            upstream_name="org/mono",
            extractions=["./lib/x/", "lib/x", "spec//x"],
        )

        assert config.extractions == ["lib/x", "spec/x"]

    def test_path_escaping_repository_is_rejected(self):
        with pytest.raises(ConfigInvalidError):
            ConfigManager.from_dict(
                {
                    "name": "x",
                    "upstream": "u",
                    "upstream_name": "org/mono",
                    "extractions": ["../secrets"],
                }
            )

    def test_source_branch_defaults_to_upstream_branch(self):
        config = ConfigManager.from_dict(
            {
                "name": "x",
                "upstream": "u",
                "upstream_name": "org/mono",
                "extractions": ["lib"],
                "upstream_branch": "main",
            }
        )

        assert config.effective_source_branch == "main"


class TestJobConstruction:
    def test_default_directories_resolve_next_to_config(self, tmp_path):
        job = ConfigManager(write_config(tmp_path, VALID_YAML)).load_job()

        assert job.source_dir == (tmp_path / "monorepo_source").resolve()
        assert job.target_dir == (tmp_path / "my_lib").resolve()
        assert job.paths == ("lib/my_lib", "spec/my_lib")
        assert job.extract_branch == "extract_my_lib"
        assert job.removal_message == "Extract my_lib"

    def test_explicit_directories(self, tmp_path):
        content = VALID_YAML + "source_dir: ../clones/mono\ntarget_dir: /srv/out/lib\n"
        config_dir = tmp_path / "conf"
        config_dir.mkdir()

        job = ConfigManager(write_config(config_dir, content)).load_job()

        assert job.source_dir == (tmp_path / "clones" / "mono").resolve()
        assert job.target_dir == Path("/srv/out/lib").resolve()

    def test_job_carries_git_settings(self, tmp_path):
        content = VALID_YAML + (
            "upstream_branch: main\n"
            "source_branch: develop\n"
            "upstream_remote: mono\n"
            "git_timeout: 30\n"
            "fetch_retries: 0\n"
            "cleanup: false\n"
        )

        job = ConfigManager(write_config(tmp_path, content)).load_job()

        assert job.upstream_branch == "main"
        assert job.source_branch == "develop"
        assert job.upstream_remote == "mono"
        assert job.git_timeout == 30
        assert job.fetch_retries == 0
        assert job.cleanup is False
