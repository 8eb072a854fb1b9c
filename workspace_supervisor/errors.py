"""
Exception hierarchy of the workspace supervisor.

Setup failures abort an orchestration run. Stage failures are caught at the
stage boundary and become an ExecutionResult. Reporting and resource failures
never leave the component that raised them.
"""
from typing import Optional, Sequence

from workspace_supervisor.models import ExecutionResult, ExecutionStatus


class WorkspaceSupervisorError(Exception):
    """Base class for all errors raised by this package."""


#* --- Setup ---
class SetupFailure(WorkspaceSupervisorError):
    """The run cannot start: session, window or launcher problem."""


class SessionNotFoundError(SetupFailure):
    pass


class WindowCreationError(SetupFailure):
    pass


class SessionCommandError(WorkspaceSupervisorError):
    """A multiplexer command exited non-zero or could not be executed."""

    def __init__(self, command: Sequence[str], returncode: Optional[int], stderr: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"'{' '.join(self.command)}' failed with exit code {returncode}{detail}")


#* --- Stages ---
class StageFailure(WorkspaceSupervisorError):
    status = ExecutionStatus.FAILED

    def __init__(self, message: str, exit_code: Optional[int] = 1) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(status=self.status, exit_code=self.exit_code, error_detail=self.message)


class ParseFailure(StageFailure):
    """The exit-code file did not hold an integer."""


class TimeoutFailure(StageFailure):
    status = ExecutionStatus.TIMED_OUT


class ScriptFailure(StageFailure):
    """The script exited non-zero."""


#* --- Best-effort collaborators ---
class ReportingFailure(WorkspaceSupervisorError):
    """The control plane was unreachable or rejected the report."""


class ResourceFailure(WorkspaceSupervisorError):
    """The editor server cannot be provided (no executable, spawn error, socket timeout)."""
