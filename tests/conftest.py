import re
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from workspace_supervisor.errors import SessionCommandError, SessionNotFoundError
from workspace_supervisor.models import ErrorReport
from workspace_supervisor.scripts.materializer import ScriptMaterializer
from workspace_supervisor.scripts.orchestrator import OrchestratorTimings

_EXIT_CODE_TARGET = re.compile(r"mv \S+ ([^\s;']+)")
_LOG_TARGET = re.compile(r"tee ([^\s;']+)")


class FakeSession:
    """
    Stands in for the tmux session. `outcomes` maps a window name to the
    (exit code text, log text) the script "writes" when its command is sent;
    a window without an outcome behaves like a script that keeps running.
    Windows get tmux-style ids ('@1', '@2', ...) and are addressed by id.
    """

    def __init__(self, outcomes: Optional[Dict[str, Tuple[str, str]]] = None, exists: bool = True,
                 failing_windows: Tuple[str, ...] = (), vanishing_windows: Tuple[str, ...] = ()) -> None:
        self.outcomes = outcomes or {}
        self.exists = exists
        self.failing_windows = failing_windows
        self.vanishing_windows = vanishing_windows
        self.windows: List[str] = []
        self.window_ids: Dict[str, str] = {}
        self.calls: List[Tuple[str, str]] = []
        self.sent: Dict[str, str] = {}
        self.targets: List[str] = []

    def wait_for_session(self, attempts: int, interval: float) -> None:
        self.calls.append(("wait_for_session", ""))
        if not self.exists:
            raise SessionNotFoundError("Session 'workspace' does not exist")

    def new_window(self, window_name: str) -> str:
        self.calls.append(("new_window", window_name))
        if window_name in self.failing_windows:
            raise SessionCommandError(["tmux", "new-window", "-n", window_name], 1, "no space for new window")
        self.windows.append(window_name)
        window_id = f"@{len(self.window_ids) + 1}"
        self.window_ids[window_id] = window_name
        return window_id

    def send_keys(self, window: str, command: str) -> None:
        window_name = self.window_ids[window]
        self.calls.append(("send_keys", window_name))
        self.targets.append(window)
        self.sent[window_name] = command
        outcome = self.outcomes.get(window_name)
        if outcome is None:
            return
        exit_code_text, log_text = outcome
        Path(_LOG_TARGET.search(command).group(1)).write_text(log_text)
        Path(_EXIT_CODE_TARGET.search(command).group(1)).write_text(exit_code_text + "\n")

    def has_window(self, window: str) -> bool:
        window_name = self.window_ids.get(window)
        return window_name is not None and window_name not in self.vanishing_windows


class FakeReporter:
    def __init__(self) -> None:
        self.reports: List[ErrorReport] = []

    def report(self, report: ErrorReport) -> bool:
        self.reports.append(report)
        return True


@pytest.fixture
def fast_timings() -> OrchestratorTimings:
    return OrchestratorTimings(
        session_wait_attempts=1,
        session_wait_interval=0,
        maintenance_start_delay=0,
        maintenance_poll_interval=0.01,
        maintenance_timeout=0.2,
        dev_settle_delay=0,
        dev_early_exit_delay=0,
    )


@pytest.fixture
def runtime_dir(tmp_path: Path) -> Path:
    return tmp_path / "runtime"


@pytest.fixture
def materializer(runtime_dir: Path, tmp_path: Path) -> ScriptMaterializer:
    return ScriptMaterializer(runtime_dir=runtime_dir, workspace_root=tmp_path / "workspace", shell="zsh")


@pytest.fixture
def fake_reporter() -> FakeReporter:
    return FakeReporter()


@pytest.fixture
def short_socket_dir():
    """Unix socket paths are length-limited, so keep them out of the deep pytest tmp tree."""
    directory = Path(tempfile.mkdtemp(prefix="wsup"))
    yield directory
    shutil.rmtree(directory, ignore_errors=True)
