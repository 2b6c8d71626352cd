"""Configuration management for Code Extractor."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigInvalidError
from .history.models import normalize_path
from .orchestrator import ExtractionJob

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("name", "upstream", "upstream_name", "extractions")


class ExtractionConfig(BaseModel):
    """Settings of one extraction job."""

    name: str = Field(description="Name of the extracted project and target repository")
    upstream: str = Field(description="Clone URL of the source monorepo")
    upstream_name: str = Field(
        description="Display name of the source (e.g. 'org/monorepo'), used in provenance trailers"
    )
    extractions: List[str] = Field(
        description="Paths (files or directories) to extract with their history"
    )
    upstream_branch: str = Field(
        default="master", description="Branch of the upstream remote to rebase onto"
    )
    source_branch: Optional[str] = Field(
        default=None,
        description="Local branch whose history is filtered (defaults to upstream_branch)",
    )
    upstream_remote: str = Field(
        default="upstream", description="Remote name used for the source clone"
    )
    source_dir: Optional[Path] = Field(
        default=None,
        description="Source clone directory (defaults to <upstream_name tail>_source)",
    )
    target_dir: Optional[Path] = Field(
        default=None, description="Target repository directory (defaults to name)"
    )
    git_timeout: Optional[float] = Field(
        default=600, description="Timeout in seconds for each git invocation"
    )
    fetch_retries: int = Field(
        default=2, ge=0, description="Retries for fetch on failure or timeout"
    )
    cleanup: bool = Field(
        default=True, description="Remove the upstream remote and tags from the target"
    )

    @field_validator("name", "upstream", "upstream_name", "upstream_branch")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("extractions")
    @classmethod
    def normalize_extractions(cls, v: List[str]) -> List[str]:
        """Normalize paths and drop duplicates, keeping the given order."""
        if not v:
            raise ValueError("at least one extraction path is required")
        normalized: List[str] = []
        for path in v:
            path = normalize_path(str(path))
            if path not in normalized:
                normalized.append(path)
        return normalized

    @property
    def effective_source_branch(self) -> str:
        return self.source_branch or self.upstream_branch

    def to_job(self, base_dir: Path = Path(".")) -> ExtractionJob:
        """Build the immutable job, resolving directories against base_dir."""
        base_dir = Path(base_dir)
        source_dir = self.source_dir or Path(
            f"{self.upstream_name.rstrip('/').split('/')[-1]}_source"
        )
        target_dir = self.target_dir or Path(self.name)

        return ExtractionJob(
            name=self.name,
            source_url=self.upstream,
            source_dir=(base_dir / source_dir).resolve(),
            upstream_name=self.upstream_name,
            upstream_remote=self.upstream_remote,
            upstream_branch=self.upstream_branch,
            source_branch=self.effective_source_branch,
            paths=tuple(self.extractions),
            target_dir=(base_dir / target_dir).resolve(),
            cleanup=self.cleanup,
            git_timeout=self.git_timeout,
            fetch_retries=self.fetch_retries,
        )


def _normalize_keys(data: Dict[Any, Any]) -> Dict[str, Any]:
    # Ruby-style symbol keys (":name:") are accepted for existing config files
    return {str(key).lstrip(":"): value for key, value in data.items()}


class ConfigManager:
    """Loads and validates extraction configuration files."""

    DEFAULT_CONFIG_PATH = Path("extractions.yml")

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path or self.DEFAULT_CONFIG_PATH)
        self._config: Optional[ExtractionConfig] = None

    def load(self) -> ExtractionConfig:
        """Load and validate the configuration file.

        Raises:
            ConfigInvalidError: If the file is missing, unreadable, or lacks
                                required settings
        """
        if not self.config_path.exists():
            raise ConfigInvalidError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigInvalidError(
                f"Failed to load config from {self.config_path}: {e}"
            ) from e

        if not isinstance(data, dict):
            raise ConfigInvalidError(
                f"Config {self.config_path} must be a mapping of settings"
            )

        self._config = self.from_dict(data)
        return self._config

    def load_job(self) -> ExtractionJob:
        """Load the configuration and build its job.

        Relative directories resolve against the config file's directory.
        """
        config = self._config or self.load()
        return config.to_job(self.config_path.resolve().parent)

    @staticmethod
    def from_dict(data: Dict[Any, Any]) -> ExtractionConfig:
        """Validate a raw settings mapping.

        Raises:
            ConfigInvalidError: If required settings are missing or invalid
        """
        data = _normalize_keys(data)

        missing = [key for key in REQUIRED_KEYS if not data.get(key)]
        if missing:
            raise ConfigInvalidError(
                f"{', '.join(missing)} key(s) missing", missing_keys=missing
            )

        try:
            return ExtractionConfig(**data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigInvalidError(f"Invalid configuration: {problems}") from e
