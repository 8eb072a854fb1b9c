import time
import logging
import subprocess
from typing import List, Optional, Tuple

from workspace_supervisor.config import effective_settings as config
from workspace_supervisor.errors import SessionCommandError, SessionNotFoundError

log = logging.getLogger(__name__)


class TmuxSession:
    """
    Client for the persistent multiplexed session that hosts the script windows.

    The session itself is created by the workspace image; this class only
    checks for it, adds windows to it and types commands into them.
    """

    def __init__(self, name: Optional[str] = None, executable: Optional[str] = None,
                 command_timeout: Optional[float] = None) -> None:
        self.name = name or config.SESSION_NAME
        self.executable = executable or config.TMUX_EXECUTABLE
        self.command_timeout = command_timeout or config.SESSION_COMMAND_TIMEOUT

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self.executable, *args]
        log.debug(f"Running session command: {cmd}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.command_timeout, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SessionCommandError(cmd, None, str(e)) from e
        if check and result.returncode != 0:
            raise SessionCommandError(cmd, result.returncode, result.stderr)
        return result

    def target(self, window: str) -> str:
        # Window ids are unique server-wide and need no session prefix.
        return window if window.startswith("@") else f"{self.name}:{window}"

    def has_session(self) -> bool:
        try:
            return self._run("has-session", "-t", self.name, check=False).returncode == 0
        except SessionCommandError as e:
            log.debug(f"Session check failed: {e}")
            return False

    def wait_for_session(self, attempts: int, interval: float) -> None:
        """
        Polls for the session with a fixed backoff.

        :raises SessionNotFoundError: If the session still does not exist after all attempts.
        """
        for attempt in range(attempts):
            if self.has_session():
                log.info(f"Session '{self.name}' found.")
                return
            log.debug(f"Session '{self.name}' not ready (attempt {attempt + 1}/{attempts}).")
            time.sleep(interval)

        if not self.has_session():
            raise SessionNotFoundError(f"Session '{self.name}' does not exist")

    def new_window(self, window_name: str) -> str:
        """
        Creates a detached window in the session.

        Window names repeat across runs in the same session, so callers address
        the window by the returned id (e.g. '@7'), which tmux never reuses.

        :return: The tmux window id.
        """
        result = self._run("new-window", "-t", f"{self.name}:", "-n", window_name, "-d", "-P", "-F", "#{window_id}")
        window_id = result.stdout.strip()
        if not window_id:
            raise SessionCommandError(["new-window", "-n", window_name], result.returncode, "no window id printed")
        return window_id

    def send_keys(self, window: str, command: str) -> None:
        """Types `command` into the window (id or name) and presses Enter."""
        self._run("send-keys", "-t", self.target(window), command, "C-m")

    def list_windows(self) -> List[Tuple[str, str]]:
        """Returns (window id, window name) pairs of the session."""
        result = self._run("list-windows", "-t", self.name, "-F", "#{window_id} #{window_name}")
        windows = []
        for line in result.stdout.splitlines():
            window_id, _, name = line.strip().partition(" ")
            if window_id:
                windows.append((window_id, name))
        return windows

    def has_window(self, window: str) -> bool:
        return any(window in (window_id, name) for window_id, name in self.list_windows())

