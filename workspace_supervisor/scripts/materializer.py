import os
import shlex
import logging
from pathlib import Path
from typing import Optional

from workspace_supervisor.config import effective_settings as config
from workspace_supervisor.models import ScriptPlan, ScriptTask, TaskKind, new_run_id

log = logging.getLogger(__name__)

MAINTENANCE_TEMPLATE = """#!/bin/{shell}
set -eux
cd {workspace_root}

echo "=== Maintenance Script Started at $(date) ==="
{body}
echo "=== Maintenance Script Completed at $(date) ==="
"""

DEV_TEMPLATE = """#!/bin/{shell}
set -ux
cd {workspace_root}

echo "=== Dev Script Started at $(date) ==="
{body}
"""


def has_script(source_text: Optional[str]) -> bool:
    """Absent or whitespace-only script text means there is no task."""
    return bool(source_text and source_text.strip())


def pipestatus_expression(shell: str) -> Optional[str]:
    """
    Shell expression for the exit status of the first command of the last pipeline,
    or None for shells without a pipestatus array.
    """
    name = Path(shell).name
    if name == "zsh":
        return "${pipestatus[1]}"
    if name == "bash":
        return "${PIPESTATUS[0]}"
    return None


def partial_exit_code_path(task: ScriptTask) -> Path:
    """The exit status is written here first and renamed into place once complete."""
    return task.exit_code_path.with_name(f"{task.exit_code_path.name}.partial")


def build_run_command(task: ScriptTask, shell: str, keep_shell: bool) -> str:
    """
    Builds the line typed into a task's window: run the script with combined
    output teed to the error log, then write the script's exit status to the
    exit-code file. With `keep_shell`, the window's shell is replaced by a
    fresh interactive one afterwards.

    The pipeline is handed to `shell -c`, so its syntax does not depend on
    whichever interactive shell the window happens to run.

    :param task: The materialized task.
    :param shell: Shell used to run the script (zsh, bash, ...).
    :param keep_shell: True for maintenance, False for the long-running dev script.
    """
    script = shlex.quote(str(task.script_path))
    error_log = shlex.quote(str(task.error_log_path))
    partial = shlex.quote(str(partial_exit_code_path(task)))
    exit_code = shlex.quote(str(task.exit_code_path))

    pipestatus = pipestatus_expression(shell)
    if pipestatus is not None:
        pipeline = f"{shell} {script} 2>&1 | tee {error_log}; echo {pipestatus} > {partial} && mv {partial} {exit_code}"
    else:
        pipeline = f"{{ {shell} {script} 2>&1; echo $? > {partial}; }} | tee {error_log}; mv {partial} {exit_code}"

    command = f"{shell} -c {shlex.quote(pipeline)}"
    if keep_shell:
        command += f"; exec {shell}"
    return command


class ScriptMaterializer:
    """
    Turns raw maintenance/dev script text into executable files with
    run-scoped paths under the shared runtime directory.
    """

    def __init__(self, runtime_dir: Optional[Path] = None, workspace_root: Optional[Path] = None,
                 shell: Optional[str] = None) -> None:
        self.runtime_dir = Path(runtime_dir or config.RUNTIME_DIR)
        self.workspace_root = Path(workspace_root or config.WORKSPACE_ROOT)
        self.shell = shell or config.SCRIPT_SHELL

    def paths_for(self, kind: TaskKind, run_id: str) -> ScriptTask:
        """Returns the task descriptor for `kind` in run `run_id`, without touching the disk."""
        stem = f"{kind.value}_{run_id}"
        window_name = config.MAINTENANCE_WINDOW_NAME if kind is TaskKind.MAINTENANCE else config.DEV_WINDOW_NAME
        return ScriptTask(
            kind=kind,
            source_text="",
            script_path=self.runtime_dir / f"{stem}.sh",
            exit_code_path=self.runtime_dir / f"{stem}.exit-code",
            error_log_path=self.runtime_dir / f"{stem}.log",
            window_name=window_name,
        )

    def wrap(self, kind: TaskKind, source_text: str) -> str:
        template = MAINTENANCE_TEMPLATE if kind is TaskKind.MAINTENANCE else DEV_TEMPLATE
        return template.format(
            shell=Path(self.shell).name,
            workspace_root=shlex.quote(str(self.workspace_root)),
            body=source_text,
        )

    def _write_task(self, kind: TaskKind, source_text: str, run_id: str) -> ScriptTask:
        slot = self.paths_for(kind, run_id)
        task = ScriptTask(
            kind=kind,
            source_text=source_text,
            script_path=slot.script_path,
            exit_code_path=slot.exit_code_path,
            error_log_path=slot.error_log_path,
            window_name=slot.window_name,
        )
        task.script_path.write_text(self.wrap(kind, source_text), encoding="utf-8")
        os.chmod(task.script_path, 0o755)
        task.exit_code_path.unlink(missing_ok=True)
        partial_exit_code_path(task).unlink(missing_ok=True)
        log.debug(f"Wrote {kind.value} script to '{task.script_path}'.")
        return task

    def materialize(self, maintenance_script: Optional[str], dev_script: Optional[str],
                    run_id: Optional[str] = None) -> ScriptPlan:
        """
        Writes the scripts that exist and returns the run's plan.
        Nothing is written, not even the runtime directory, when both texts are blank.

        :param maintenance_script: User-supplied maintenance script text.
        :param dev_script: User-supplied dev script text.
        :param run_id: Optional run identifier; a new one is generated by default.
        :return: The ScriptPlan holding a task for each non-blank script.
        """
        run_id = run_id or new_run_id()
        if not has_script(maintenance_script) and not has_script(dev_script):
            return ScriptPlan(run_id=run_id)

        self.runtime_dir.mkdir(parents=True, exist_ok=True)
        maintenance = (
            self._write_task(TaskKind.MAINTENANCE, maintenance_script, run_id)
            if has_script(maintenance_script) else None
        )
        dev = self._write_task(TaskKind.DEV, dev_script, run_id) if has_script(dev_script) else None
        return ScriptPlan(run_id=run_id, maintenance=maintenance, dev=dev)
