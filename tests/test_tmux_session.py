import os
import shutil
import subprocess

import pytest

from conftest import FakeReporter
from workspace_supervisor.models import ExecutionStatus
from workspace_supervisor.scripts.materializer import ScriptMaterializer
from workspace_supervisor.scripts.orchestrator import OrchestratorTimings, ScriptOrchestrator
from workspace_supervisor.session import TmuxSession

pytestmark = pytest.mark.skipif(
    shutil.which("tmux") is None or shutil.which("bash") is None,
    reason="needs tmux and bash",
)


@pytest.fixture
def tmux_session(tmp_path):
    name = f"wsup-{os.getpid()}-{tmp_path.name}"
    subprocess.run(["tmux", "new-session", "-d", "-s", name, "-x", "200", "-y", "50"], check=True)
    yield name
    subprocess.run(["tmux", "kill-session", "-t", name], check=False, capture_output=True)


@pytest.fixture
def real_timings() -> OrchestratorTimings:
    return OrchestratorTimings(
        session_wait_attempts=5,
        session_wait_interval=0.2,
        maintenance_start_delay=0,
        maintenance_poll_interval=0.1,
        maintenance_timeout=20,
        dev_settle_delay=0.5,
        dev_early_exit_delay=0.5,
    )


def _run(tmux_session, tmp_path, timings, run_dir, maintenance, dev):
    materializer = ScriptMaterializer(runtime_dir=tmp_path / run_dir, workspace_root=tmp_path, shell="bash")
    orchestrator = ScriptOrchestrator(session=TmuxSession(name=tmux_session), reporter=FakeReporter(),
                                      materializer=materializer, timings=timings)
    return orchestrator.orchestrate(maintenance, dev)


def test_second_run_in_the_same_session(tmux_session, tmp_path, real_timings):
    for run_dir in ("first", "second"):
        outcome = _run(tmux_session, tmp_path, real_timings, run_dir, "echo setup", "sleep 9999")

        assert outcome.fatal_error is None
        assert outcome.maintenance.status is ExecutionStatus.OK
        assert outcome.maintenance.exit_code == 0
        assert outcome.dev.ok and outcome.dev.exit_code is None
        assert outcome.exit_code == 0

    names = [name for _, name in TmuxSession(name=tmux_session).list_windows()]
    assert names.count("maintenance") == 2
    assert names.count("dev") == 2


def test_exit_status_does_not_depend_on_the_window_shell(tmux_session, tmp_path, real_timings):
    subprocess.run(["tmux", "set-option", "-t", tmux_session, "default-shell", "/bin/sh"], check=True)

    outcome = _run(tmux_session, tmp_path, real_timings, "clean", "echo setup", None)
    assert outcome.maintenance.status is ExecutionStatus.OK

    outcome = _run(tmux_session, tmp_path, real_timings, "failing", "echo before-failure; exit 3", None)
    assert outcome.maintenance.status is ExecutionStatus.FAILED
    assert outcome.maintenance.exit_code == 3
    assert "before-failure" in outcome.maintenance.error_detail
