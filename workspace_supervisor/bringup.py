import logging
import threading
from typing import Callable, Optional

from workspace_supervisor.editor import EditorServerHandle, EditorServerSupervisor
from workspace_supervisor.errors import SetupFailure
from workspace_supervisor.scripts.launcher import LaunchedRun, launch_orchestrator

log = logging.getLogger(__name__)


class WorkspaceBringUp:
    """
    Starts the editor server and the script orchestrator for one workspace.

    The two are independent: the editor server comes up on a background
    thread while the orchestrator is launched as a detached process, and
    neither failure blocks or fails the other.
    """

    def __init__(self, editor: EditorServerSupervisor,
                 launcher: Callable[..., Optional[LaunchedRun]] = launch_orchestrator) -> None:
        self.editor = editor
        self.launcher = launcher
        self.editor_handle: Optional[EditorServerHandle] = None
        self.launched_run: Optional[LaunchedRun] = None
        self.launch_error: Optional[str] = None
        self._editor_thread: Optional[threading.Thread] = None

    def _ensure_editor(self) -> None:
        self.editor_handle = self.editor.ensure_running()
        if self.editor_handle is None:
            log.warning("Editor server unavailable; continuing bring-up without it.")

    def start(self, maintenance_script: Optional[str], dev_script: Optional[str]) -> Optional[LaunchedRun]:
        """
        Kicks off both subsystems and returns once the orchestrator is launched.

        :return: The launched orchestrator run, or None if there was nothing to run or the launch failed.
        """
        if self._editor_thread is None:
            self._editor_thread = threading.Thread(target=self._ensure_editor, daemon=True, name="EditorServerThread")
            self._editor_thread.start()

        try:
            self.launched_run = self.launcher(maintenance_script, dev_script)
        except SetupFailure as e:
            log.error(f"Failed to start orchestrator: {e}")
            self.launch_error = str(e)
            self.launched_run = None
        return self.launched_run

    def wait_for_editor(self, timeout: Optional[float] = None) -> Optional[EditorServerHandle]:
        """Joins the editor thread and returns its handle, or None if unavailable or still starting."""
        if self._editor_thread is not None:
            self._editor_thread.join(timeout)
        return self.editor_handle
