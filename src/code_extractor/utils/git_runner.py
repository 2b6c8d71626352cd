"""
Git subprocess runner.

Every git invocation of an extraction goes through run_git_command, which
marks the working directory as a safe.directory so clones owned by another
user (sudo, containers, shared build hosts) do not fail with git's
"dubious ownership" error.

run_git_command_with_retry adds bounded retries for network-bound commands
such as fetch, and records each failed attempt in the exception log.
"""

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

SAFE_DIRECTORY_KEY = "safe.directory"


def get_git_environment(project_dir: Path) -> Dict[str, str]:
    """
    Build the environment for a git command run in project_dir.

    Adds safe.directory=<project_dir> as config entry 0 and shifts any
    GIT_CONFIG_KEY_n/GIT_CONFIG_VALUE_n entries already present by one.

    Args:
        project_dir: Directory git will run in

    Returns:
        Copy of os.environ with the extra config entries
    """
    env = os.environ.copy()
    count = 1

    for key, value in os.environ.items():
        if not key.startswith("GIT_CONFIG_KEY_"):
            continue
        index = key[len("GIT_CONFIG_KEY_") :]
        if not index.isdigit():
            continue
        shifted = int(index) + 1
        env[f"GIT_CONFIG_KEY_{shifted}"] = value
        original_value = os.environ.get(f"GIT_CONFIG_VALUE_{index}")
        if original_value is not None:
            env[f"GIT_CONFIG_VALUE_{shifted}"] = original_value
        count = max(count, shifted + 1)

    env["GIT_CONFIG_KEY_0"] = SAFE_DIRECTORY_KEY
    env["GIT_CONFIG_VALUE_0"] = str(Path(project_dir).resolve())
    env["GIT_CONFIG_COUNT"] = str(count)
    return env


def run_git_command(
    cmd: List[str],
    cwd: Path,
    check: bool = True,
    capture_output: bool = True,
    text: bool = True,
    timeout: Optional[float] = None,
    **kwargs,
) -> subprocess.CompletedProcess:
    """
    Run a git command in cwd.

    Args:
        cmd: Full command, starting with "git"
        cwd: Working directory for the command
        check: Raise CalledProcessError on a non-zero exit
        capture_output: Capture stdout and stderr
        text: Decode output as text
        timeout: Seconds before the command is killed (None = no limit)
        **kwargs: Passed on to subprocess.run; an "env" mapping is merged
                  into the git environment

    Returns:
        The CompletedProcess of the command

    Raises:
        ValueError: If cmd is not a git command
        subprocess.CalledProcessError: If check is set and git fails
        subprocess.TimeoutExpired: If the timeout is exceeded
    """
    if not cmd or cmd[0] != "git":
        raise ValueError("Command must start with 'git'")

    env = get_git_environment(cwd)
    env.update(kwargs.pop("env", None) or {})

    return subprocess.run(
        cmd,
        cwd=cwd,
        check=check,
        capture_output=capture_output,
        text=text,
        timeout=timeout,
        env=env,
        **kwargs,
    )


def run_git_command_with_retry(
    cmd: List[str],
    cwd: Path,
    check: bool = True,
    capture_output: bool = True,
    text: bool = True,
    timeout: Optional[float] = None,
    max_retries: int = 1,
    retry_delay: float = 1.0,
    retry_on_timeout: bool = False,
    **kwargs,
) -> subprocess.CompletedProcess:
    """
    Run a git command, retrying failed attempts.

    A non-zero exit is retried up to max_retries times. A timeout is only
    retried when retry_on_timeout is set; commands that change the working
    tree (rebase, commit) must not be re-run after being killed half way.

    Args:
        cmd: Full command, starting with "git"
        cwd: Working directory for the command
        check: Raise CalledProcessError on a non-zero exit
        capture_output: Capture stdout and stderr
        text: Decode output as text
        timeout: Seconds each attempt may take
        max_retries: Attempts after the first one
        retry_delay: Seconds to wait between attempts
        retry_on_timeout: Whether a timed out attempt is retried
        **kwargs: Passed on to run_git_command

    Returns:
        The CompletedProcess of the successful attempt

    Raises:
        subprocess.CalledProcessError: If the last attempt fails
        subprocess.TimeoutExpired: If an attempt times out and is not retried
    """
    max_attempts = max(max_retries, 0) + 1
    attempt = 0

    while True:
        attempt += 1
        try:
            return run_git_command(
                cmd,
                cwd=cwd,
                check=check,
                capture_output=capture_output,
                text=text,
                timeout=timeout,
                **kwargs,
            )
        except subprocess.CalledProcessError as e:
            _log_attempt(
                f"Git command failed (attempt {attempt}/{max_attempts})",
                cmd,
                cwd,
                attempt,
                max_attempts,
                returncode=e.returncode,
                stdout=e.stdout or "",
                stderr=e.stderr or "",
            )
            if attempt == max_attempts:
                raise
        except subprocess.TimeoutExpired:
            _log_attempt(
                f"Git command timeout after {timeout}s",
                cmd,
                cwd,
                attempt,
                max_attempts,
                timeout=timeout,
            )
            if not retry_on_timeout or attempt == max_attempts:
                raise

        logger.info(f"Retrying {' '.join(cmd)} in {retry_delay}s")
        time.sleep(retry_delay)


def _log_attempt(
    summary: str,
    cmd: List[str],
    cwd: Path,
    attempt: int,
    max_attempts: int,
    **details,
) -> None:
    """Record one failed attempt in the exception log, if one is set up."""
    from .exception_logger import ExceptionLogger

    command = " ".join(cmd)
    logger.warning(f"{summary}: {command}")

    exception_logger = ExceptionLogger.get_instance()
    if exception_logger is None:
        return

    context = {
        "git_command": command,
        "cwd": str(cwd),
        "attempt": f"{attempt}/{max_attempts}",
    }
    context.update(details)
    exception_logger.log_exception(Exception(f"{summary}: {command}"), context=context)


def get_toplevel(project_dir: Path) -> Optional[Path]:
    """
    Return the top-level directory of the work tree containing project_dir.

    Args:
        project_dir: Directory to check

    Returns:
        Resolved top-level path, or None if project_dir is not inside a
        git work tree
    """
    try:
        result = run_git_command(
            ["git", "rev-parse", "--show-toplevel"], cwd=project_dir
        )
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return None
    return Path(result.stdout.strip()).resolve()
