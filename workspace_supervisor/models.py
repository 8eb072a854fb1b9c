"""
Data model shared by the script orchestrator and its launcher.
"""
import time
import secrets
import string
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def new_run_id() -> str:
    """
    Returns a fresh run identifier: epoch milliseconds and eight random
    characters, both base36, joined by an underscore.
    """
    random_part = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(8))
    return f"{_to_base36(int(time.time() * 1000))}_{random_part}"


class TaskKind(str, Enum):
    MAINTENANCE = "maintenance"
    DEV = "dev"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ExecutionStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    TIMED_OUT = "timedOut"


class OrchestratorState(str, Enum):
    IDLE = "Idle"
    WAITING_FOR_SESSION = "WaitingForSession"
    MAINTENANCE_RUNNING = "MaintenanceRunning"
    MAINTENANCE_SKIPPED = "MaintenanceSkipped"
    DEV_STARTING = "DevStarting"
    DEV_SKIPPED = "DevSkipped"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass(frozen=True)
class ScriptTask:
    """One materialized script and the run-scoped files it reports through."""

    kind: TaskKind
    source_text: str
    script_path: Path
    exit_code_path: Path
    error_log_path: Path
    window_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "source_text": self.source_text,
            "script_path": str(self.script_path),
            "exit_code_path": str(self.exit_code_path),
            "error_log_path": str(self.error_log_path),
            "window_name": self.window_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScriptTask":
        return cls(
            kind=TaskKind(data["kind"]),
            source_text=data["source_text"],
            script_path=Path(data["script_path"]),
            exit_code_path=Path(data["exit_code_path"]),
            error_log_path=Path(data["error_log_path"]),
            window_name=data["window_name"],
        )


@dataclass(frozen=True)
class ScriptPlan:
    """The tasks of one orchestration run. A missing task is treated as already succeeded."""

    run_id: str
    maintenance: Optional[ScriptTask] = None
    dev: Optional[ScriptTask] = None

    @property
    def is_empty(self) -> bool:
        return self.maintenance is None and self.dev is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "maintenance": self.maintenance.to_dict() if self.maintenance else None,
            "dev": self.dev.to_dict() if self.dev else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScriptPlan":
        maintenance = data.get("maintenance")
        dev = data.get("dev")
        return cls(
            run_id=data["run_id"],
            maintenance=ScriptTask.from_dict(maintenance) if maintenance else None,
            dev=ScriptTask.from_dict(dev) if dev else None,
        )


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of one stage. For a dev script that is still running,
    `exit_code` is None and `status` is OK.
    """

    status: ExecutionStatus
    exit_code: Optional[int] = None
    error_detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ExecutionStatus.OK


@dataclass(frozen=True)
class ErrorReport:
    maintenance_error: Optional[str] = None
    dev_error: Optional[str] = None

    @property
    def has_errors(self) -> bool:
        return bool(self.maintenance_error or self.dev_error)

    def to_payload(self) -> Dict[str, str]:
        """JSON body for the control plane; unset fields are omitted."""
        payload = {}
        if self.maintenance_error:
            payload["maintenanceError"] = self.maintenance_error
        if self.dev_error:
            payload["devError"] = self.dev_error
        return payload


@dataclass
class OrchestrationOutcome:
    run_id: Optional[str]
    maintenance: Optional[ExecutionResult] = None
    dev: Optional[ExecutionResult] = None
    report: Optional[ErrorReport] = None
    fatal_error: Optional[str] = None
    states: List[OrchestratorState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        if self.fatal_error:
            return False
        return not (self.report and self.report.has_errors)

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1
