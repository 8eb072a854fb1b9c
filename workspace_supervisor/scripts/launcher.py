import os
import sys
import json
import time
import logging
import subprocess
from pathlib import Path
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from workspace_supervisor.config import effective_settings as config
from workspace_supervisor.errors import SetupFailure
from workspace_supervisor.models import ScriptPlan
from workspace_supervisor.scripts.materializer import ScriptMaterializer, has_script

log = logging.getLogger(__name__)

ENTRY_MODULE = "workspace_supervisor.script_entry.orchestrator"


@dataclass(frozen=True)
class LaunchedRun:
    run_id: str
    pid: int
    manifest_path: Path
    log_path: Path


def manifest_path_for(runtime_dir: Path, run_id: str) -> Path:
    return runtime_dir / f"orchestrator_{run_id}.json"


def write_manifest(plan: ScriptPlan, manifest_path: Path, reporter: Optional[Dict[str, str]] = None) -> None:
    """
    Atomically writes the run manifest read by the detached orchestrator.
    The manifest holds the task-run token, so it is readable by the owner only.

    :param plan: The materialized plan.
    :param manifest_path: Destination of the JSON manifest.
    :param reporter: Optional control-plane settings ('url', 'token') for the run.
    """
    data: Dict[str, Any] = {"plan": plan.to_dict(), "reporter": reporter or {}}
    temp_path = manifest_path.with_suffix(".tmp")
    try:
        with temp_path.open("w") as f:
            json.dump(data, f, indent=4)
        os.chmod(temp_path, 0o600)
        temp_path.replace(manifest_path)
    finally:
        temp_path.unlink(missing_ok=True)


def read_manifest(manifest_path: Path) -> Dict[str, Any]:
    with manifest_path.open("r") as f:
        data = json.load(f)
    if not isinstance(data, dict) or "plan" not in data:
        raise ValueError(f"Malformed orchestrator manifest '{manifest_path}'")
    return data


def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for a detached subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.DETACHED_PROCESS | subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}


def launch_orchestrator(maintenance_script: Optional[str], dev_script: Optional[str],
                        materializer: Optional[ScriptMaterializer] = None,
                        control_plane_url: Optional[str] = None, task_run_token: Optional[str] = None,
                        python_executable: Optional[str] = None) -> Optional[LaunchedRun]:
    """
    Materializes the scripts and starts the orchestrator as a detached background
    process so the caller never waits for the scripts themselves.

    :return: The launched run, or None when there was nothing to run.
    :raises SetupFailure: If the orchestrator process exits right after starting.
    """
    if not has_script(maintenance_script) and not has_script(dev_script):
        log.info("No maintenance or dev scripts provided; skipping orchestrator launch.")
        return None

    materializer = materializer or ScriptMaterializer()
    plan = materializer.materialize(maintenance_script, dev_script)
    runtime_dir = materializer.runtime_dir
    manifest_path = manifest_path_for(runtime_dir, plan.run_id)
    log_path = runtime_dir / f"orchestrator_{plan.run_id}.log"

    reporter = {
        "url": config.CONTROL_PLANE_URL if control_plane_url is None else control_plane_url,
        "token": config.TASK_RUN_TOKEN if task_run_token is None else task_run_token,
    }
    write_manifest(plan, manifest_path, reporter)

    args: List[str] = [python_executable or sys.executable, "-m", ENTRY_MODULE, str(manifest_path)]
    log.info(f"Starting orchestrator for run {plan.run_id}...")
    try:
        with open(log_path, "ab") as log_file:
            process = subprocess.Popen(
                args, stdout=log_file, stderr=subprocess.STDOUT, stdin=subprocess.DEVNULL,
                cwd=str(config.BASE_DIR), close_fds=True, **_get_popen_creation_flags()
            )
    except OSError as e:
        raise SetupFailure(f"Failed to start orchestrator: {e}") from e

    time.sleep(config.ORCHESTRATOR_START_CHECK_DELAY)
    returncode = process.poll()
    if returncode not in (None, 0):
        raise SetupFailure(
            f"Orchestrator process exited immediately with code {returncode}; see '{log_path}'"
        )

    log.info(f"Orchestrator started successfully in background (PID: {process.pid})")
    return LaunchedRun(run_id=plan.run_id, pid=process.pid, manifest_path=manifest_path, log_path=log_path)
