"""Repository setup and version control client."""

from .client import GitCommandClient, RepositoryClient
from .lifecycle import CleanupReport, RepositoryLifecycleManager

__all__ = [
    "CleanupReport",
    "GitCommandClient",
    "RepositoryClient",
    "RepositoryLifecycleManager",
]
