import time
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from workspace_supervisor.config import effective_settings as config
from workspace_supervisor.completion import CompletionSignal, WaitOutcome
from workspace_supervisor.errors import (
    ParseFailure, ScriptFailure, SessionCommandError, SetupFailure, StageFailure,
    TimeoutFailure, WindowCreationError,
)
from workspace_supervisor.models import (
    ErrorReport, ExecutionResult, ExecutionStatus, OrchestrationOutcome,
    OrchestratorState, ScriptPlan, ScriptTask, TaskKind,
)
from workspace_supervisor.scripts.materializer import ScriptMaterializer, build_run_command, has_script
from workspace_supervisor.scripts.reporting import ControlPlaneReporter
from workspace_supervisor.session import TmuxSession

log = logging.getLogger(__name__)


@dataclass
class OrchestratorTimings:
    """Poll intervals, delays and ceilings of one orchestration run, in seconds."""

    session_wait_attempts: int = 20
    session_wait_interval: float = 0.5
    maintenance_start_delay: float = 2.0
    maintenance_poll_interval: float = 1.0
    maintenance_timeout: float = 600.0
    dev_settle_delay: float = 2.0
    dev_early_exit_delay: float = 5.0
    log_tail_lines: int = 100
    timeout_exit_code: int = 124

    @classmethod
    def from_settings(cls, settings=config) -> "OrchestratorTimings":
        return cls(
            session_wait_attempts=settings.SESSION_WAIT_ATTEMPTS,
            session_wait_interval=settings.SESSION_WAIT_INTERVAL,
            maintenance_start_delay=settings.MAINTENANCE_START_DELAY,
            maintenance_poll_interval=settings.MAINTENANCE_POLL_INTERVAL,
            maintenance_timeout=settings.MAINTENANCE_TIMEOUT,
            dev_settle_delay=settings.DEV_SETTLE_DELAY,
            dev_early_exit_delay=settings.DEV_EARLY_EXIT_DELAY,
            log_tail_lines=settings.LOG_TAIL_LINES,
            timeout_exit_code=settings.TIMEOUT_EXIT_CODE,
        )


def describe_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"


def read_log_tail(task: ScriptTask, max_lines: int) -> str:
    """
    Returns the last `max_lines` lines of the task's error log.
    A missing or unreadable log yields an empty string.
    """
    try:
        if not task.error_log_path.exists():
            return ""
        content = task.error_log_path.read_text(encoding="utf-8", errors="replace").strip()
    except OSError as e:
        log.error(f"[{task.kind.label.upper()}] Failed to read error log '{task.error_log_path}': {e}")
        return ""
    if not content:
        return ""
    return "\n".join(content.split("\n")[-max_lines:])


class ScriptOrchestrator:
    """
    Runs the maintenance script to completion and then starts the dev script,
    each in its own window of the multiplexed session.

    Progress is observed only through the exit-code files the scripts write.
    The dev stage is always attempted, whatever the maintenance outcome.
    Errors of either stage are posted to the control plane once per run.
    """

    def __init__(self, session: Optional[TmuxSession] = None, reporter: Optional[ControlPlaneReporter] = None,
                 materializer: Optional[ScriptMaterializer] = None, timings: Optional[OrchestratorTimings] = None,
                 signal: Optional[CompletionSignal] = None, shell: Optional[str] = None) -> None:
        self.session = session or TmuxSession()
        self.reporter = reporter or ControlPlaneReporter()
        self.materializer = materializer or ScriptMaterializer()
        self.timings = timings or OrchestratorTimings.from_settings()
        self.signal = signal or CompletionSignal()
        self.shell = shell or self.materializer.shell
        self.state = OrchestratorState.IDLE
        self._outcome: Optional[OrchestrationOutcome] = None
        self._windows: Dict[TaskKind, str] = {}

    def _transition(self, state: OrchestratorState) -> None:
        self.state = state
        if self._outcome is not None:
            self._outcome.states.append(state)
        log.debug(f"[ORCHESTRATOR] State -> {state.value}")

    #* --- Entry points ---
    def orchestrate(self, maintenance_script: Optional[str], dev_script: Optional[str],
                    run_id: Optional[str] = None) -> OrchestrationOutcome:
        """
        Materializes the given scripts and runs them.
        Returns a successful outcome straight away, without touching the disk,
        the session or the network, when both texts are blank.
        """
        if not has_script(maintenance_script) and not has_script(dev_script):
            log.info("[ORCHESTRATOR] No maintenance or dev scripts provided; skipping start.")
            return OrchestrationOutcome(run_id=None, states=[OrchestratorState.IDLE, OrchestratorState.COMPLETED])

        plan = self.materializer.materialize(maintenance_script, dev_script, run_id=run_id)
        return self.run_plan(plan)

    def run_plan(self, plan: ScriptPlan) -> OrchestrationOutcome:
        """
        Runs an already materialized plan to completion.

        :param plan: The tasks of this run.
        :return: The run's outcome; `outcome.exit_code` is 0 only if no stage produced an error.
        """
        outcome = OrchestrationOutcome(run_id=plan.run_id)
        self._outcome = outcome
        self._windows = {}
        self._transition(OrchestratorState.IDLE)

        if plan.is_empty:
            self._transition(OrchestratorState.COMPLETED)
            return outcome

        log.info(f"[ORCHESTRATOR] Starting run {plan.run_id}...")
        try:
            self._prepare_session(plan)
        except SetupFailure as e:
            log.error(f"[ORCHESTRATOR] Fatal error: {e}")
            outcome.fatal_error = str(e)
            self._transition(OrchestratorState.FAILED)
            return outcome

        outcome.maintenance = self._run_maintenance(plan.maintenance)
        if outcome.maintenance.ok:
            log.info("[ORCHESTRATOR] Maintenance completed successfully")
        else:
            log.error(f"[ORCHESTRATOR] Maintenance completed with error: {outcome.maintenance.error_detail}")

        outcome.dev = self._start_dev(plan.dev)
        if outcome.dev.ok:
            log.info("[ORCHESTRATOR] Dev script started successfully")
        else:
            log.error(f"[ORCHESTRATOR] Dev script failed: {outcome.dev.error_detail}")

        outcome.report = ErrorReport(
            maintenance_error=None if outcome.maintenance.ok else outcome.maintenance.error_detail,
            dev_error=None if outcome.dev.ok else outcome.dev.error_detail,
        )
        if outcome.report.has_errors:
            self.reporter.report(outcome.report)

        self._transition(OrchestratorState.COMPLETED if outcome.succeeded else OrchestratorState.FAILED)
        log.info(f"[ORCHESTRATOR] Run {plan.run_id} finished with exit code {outcome.exit_code}.")
        return outcome

    #* --- Session setup ---
    def _prepare_session(self, plan: ScriptPlan) -> None:
        """
        Waits for the session and creates every needed window before any script starts.

        :raises SetupFailure: If the session never appears or a window cannot be created.
        """
        self._transition(OrchestratorState.WAITING_FOR_SESSION)
        self.session.wait_for_session(self.timings.session_wait_attempts, self.timings.session_wait_interval)

        for task in (plan.maintenance, plan.dev):
            if task is None:
                continue
            log.info(f"[ORCHESTRATOR] Creating {task.window_name} window...")
            try:
                self._windows[task.kind] = self.session.new_window(task.window_name)
            except SessionCommandError as e:
                raise WindowCreationError(f"Failed to create {task.window_name} window: {e}") from e
            log.info(f"[ORCHESTRATOR] {task.window_name} window created ({self._windows[task.kind]})")

    #* --- Stage helpers ---
    def _consume_exit_code(self, task: ScriptTask) -> int:
        """Reads, deletes and parses the task's exit-code file."""
        raw = task.exit_code_path.read_text(encoding="utf-8", errors="replace").strip()
        task.exit_code_path.unlink(missing_ok=True)
        try:
            return int(raw)
        except ValueError:
            log.error(f"[{task.kind.label.upper()}] Invalid exit code value: {raw!r}")
            raise ParseFailure(f"{task.kind.label} script exit code missing or invalid")

    def _script_failure(self, task: ScriptTask, exit_code: int) -> ScriptFailure:
        message = f"{task.kind.label} script failed with exit code {exit_code}"
        tail = read_log_tail(task, self.timings.log_tail_lines)
        if tail:
            message = f"{message}\n{tail}"
        return ScriptFailure(message, exit_code=exit_code)

    def _execution_failed(self, task: ScriptTask, error: Exception) -> ExecutionResult:
        log.error(f"[{task.kind.label.upper()}] Error: {error}")
        return ExecutionResult(
            status=ExecutionStatus.FAILED,
            exit_code=1,
            error_detail=f"{task.kind.label} script execution failed: {error}",
        )

    #* --- Stages ---
    def _run_maintenance(self, task: Optional[ScriptTask]) -> ExecutionResult:
        if task is None:
            self._transition(OrchestratorState.MAINTENANCE_SKIPPED)
            log.info("[MAINTENANCE] No maintenance script to run")
            return ExecutionResult(status=ExecutionStatus.OK, exit_code=0)

        self._transition(OrchestratorState.MAINTENANCE_RUNNING)
        timings = self.timings
        try:
            log.info("[MAINTENANCE] Starting maintenance script...")
            self.session.send_keys(self._windows[task.kind], build_run_command(task, self.shell, keep_shell=True))
            time.sleep(timings.maintenance_start_delay)

            log.info("[MAINTENANCE] Waiting for script to complete...")
            waited = self.signal.wait(task.exit_code_path, timings.maintenance_poll_interval, timings.maintenance_timeout)
            if waited is WaitOutcome.TIMED_OUT:
                raise TimeoutFailure(
                    f"Maintenance script timed out after {describe_duration(timings.maintenance_timeout)}",
                    exit_code=timings.timeout_exit_code,
                )

            exit_code = self._consume_exit_code(task)
            log.info(f"[MAINTENANCE] Script completed with exit code {exit_code}")
            if exit_code != 0:
                raise self._script_failure(task, exit_code)
            return ExecutionResult(status=ExecutionStatus.OK, exit_code=0)
        except StageFailure as e:
            log.error(f"[MAINTENANCE] {e.message.splitlines()[0]}")
            return e.to_result()
        except (SessionCommandError, OSError) as e:
            return self._execution_failed(task, e)

    def _start_dev(self, task: Optional[ScriptTask]) -> ExecutionResult:
        if task is None:
            self._transition(OrchestratorState.DEV_SKIPPED)
            log.info("[DEV] No dev script to run")
            return ExecutionResult(status=ExecutionStatus.OK, exit_code=0)

        self._transition(OrchestratorState.DEV_STARTING)
        timings = self.timings
        try:
            log.info("[DEV] Starting dev script...")
            self.session.send_keys(self._windows[task.kind], build_run_command(task, self.shell, keep_shell=False))
            time.sleep(timings.dev_settle_delay)

            if not self.session.has_window(self._windows[task.kind]):
                raise ScriptFailure("Dev window not found after starting script", exit_code=None)

            log.info("[DEV] Checking for early exit...")
            time.sleep(timings.dev_early_exit_delay)

            # One-shot check: the dev script is expected to keep running.
            if not self.signal.exists(task.exit_code_path):
                log.info("[DEV] Script started successfully")
                return ExecutionResult(status=ExecutionStatus.OK, exit_code=None)

            exit_code = self._consume_exit_code(task)
            if exit_code != 0:
                log.error(f"[DEV] Script exited early with code {exit_code}")
                raise self._script_failure(task, exit_code)

            log.info("[DEV] Script exited early with code 0")
            return ExecutionResult(status=ExecutionStatus.OK, exit_code=0)
        except StageFailure as e:
            log.error(f"[DEV] {e.message.splitlines()[0]}")
            return e.to_result()
        except (SessionCommandError, OSError) as e:
            return self._execution_failed(task, e)
