"""Per-run failure log for code-extractor.

Every failed git invocation and every failed extraction job is appended, as a
JSON entry, to `<work_dir>/.code-extractor/error_<timestamp>_<pid>.log`.
Entries for extraction errors carry the stage they failed in and, for git
failures, the command, its exit code and stderr.
"""

import json
import os
import threading
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import ExtractionError, GitTimeoutError, VCSCommandError

LOG_DIR_NAME = ".code-extractor"
ENTRY_SEPARATOR = "\n---\n"

_write_lock = threading.Lock()


def _error_details(exception: BaseException) -> Dict[str, Any]:
    details: Dict[str, Any] = {}
    if isinstance(exception, ExtractionError):
        details["kind"] = exception.kind
        details["stage"] = exception.stage
    if isinstance(exception, VCSCommandError):
        details["git_command"] = " ".join(exception.command)
        details["returncode"] = exception.returncode
        details["stderr"] = exception.stderr
    if isinstance(exception, GitTimeoutError):
        details["timeout"] = exception.timeout
    return details


class ExceptionLogger:
    """Process-wide failure log.

    Created once per process with initialize(); code that wants to record a
    failure asks get_instance() and does nothing when no log was set up.
    """

    _instance: Optional["ExceptionLogger"] = None

    def __init__(self, log_file_path: Path):
        self.log_file_path = log_file_path

    @classmethod
    def initialize(cls, work_dir: Path) -> "ExceptionLogger":
        """Create the log file under work_dir, or return the existing logger.

        Tests reset cls._instance = None to get a fresh log.
        """
        if cls._instance is not None:
            return cls._instance

        log_dir = Path(work_dir) / LOG_DIR_NAME
        log_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file_path = log_dir / f"error_{stamp}_{os.getpid()}.log"
        log_file_path.touch()

        cls._instance = cls(log_file_path)
        return cls._instance

    @classmethod
    def get_instance(cls) -> Optional["ExceptionLogger"]:
        return cls._instance

    def log_exception(
        self,
        exception: BaseException,
        thread_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append one entry describing exception.

        Args:
            exception: The failure to record
            thread_name: Thread it happened on (defaults to the current one)
            context: Extra fields, e.g. the job name or the git attempt
        """
        if exception.__traceback__ is not None:
            stack = "".join(
                traceback.format_exception(
                    type(exception), exception, exception.__traceback__
                )
            )
        else:
            stack = "".join(traceback.format_stack()[:-1])

        entry = {
            "timestamp": datetime.now().isoformat(),
            "thread": thread_name or threading.current_thread().name,
            "exception_type": type(exception).__name__,
            "exception_message": str(exception),
            "error": _error_details(exception),
            "stack_trace": stack,
            "context": context or {},
        }

        # jobs on a thread pool share the file
        with _write_lock:
            with open(self.log_file_path, "a") as f:
                f.write(json.dumps(entry, indent=2, default=str))
                f.write(ENTRY_SEPARATOR)

    def install_thread_exception_hook(self) -> None:
        """Record exceptions that escape extraction worker threads."""

        def record_thread_exception(args):
            self.log_exception(
                args.exc_value,
                thread_name=args.thread.name if args.thread else None,
                context={"uncaught": True, "exc_type": args.exc_type.__name__},
            )

        threading.excepthook = record_thread_exception
