"""Exception hierarchy for extraction runs.

Every failure that aborts a job derives from ExtractionError so the
orchestrator can stamp the stage it happened in and report it uniformly.
"""

from typing import List, Optional


class ExtractionError(Exception):
    """Base exception for extraction failures."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage

    @property
    def kind(self) -> str:
        """Short name of the error kind shown to users."""
        return type(self).__name__


class ConfigInvalidError(ExtractionError):
    """Exception raised when the configuration is missing or malformed."""

    def __init__(self, message: str, missing_keys: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_keys = missing_keys or []


class NotARepositoryError(ExtractionError):
    """Exception raised when a directory is not a usable git repository."""

    pass


class RefNotFoundError(ExtractionError):
    """Exception raised when a ref does not resolve to a commit."""

    pass


class CorruptRepositoryError(ExtractionError):
    """Exception raised when the object graph is unreadable or cyclic."""

    pass


class VCSCommandError(ExtractionError):
    """Exception raised when a git invocation returns non-success."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr
        self.is_retryable = False


class GitTimeoutError(VCSCommandError):
    """Exception raised when a git invocation exceeds its timeout."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(message, command=command)
        self.timeout = timeout
        self.is_retryable = True
