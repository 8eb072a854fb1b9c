import os
import sys
import time
import shutil
import socket
import psutil
import logging
import threading
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

from workspace_supervisor.config import effective_settings as config

log = logging.getLogger(__name__)

EDITOR_COMMAND = "code"
SOCKET_PREFIX = "workspace-editor-"


#* --- Platform ---
def supports_unix_sockets() -> bool:
    """True where the editor server can listen on a filesystem-addressable socket."""
    return sys.platform != "win32" and hasattr(socket, "AF_UNIX")


def create_socket_path(socket_dir: Optional[Path] = None) -> Path:
    """Returns a socket path unique per process id and timestamp."""
    directory = Path(socket_dir or config.EDITOR_SOCKET_DIR)
    return directory / f"{SOCKET_PREFIX}{os.getpid()}-{int(time.time() * 1000)}.sock"


def remove_socket(socket_path: Path) -> bool:
    """
    Removes a socket artifact. A missing file is not an error.

    :return: True if a file was removed.
    """
    try:
        socket_path.unlink()
        return True
    except FileNotFoundError:
        return False


def remove_stale_sockets(socket_dir: Optional[Path] = None) -> List[Path]:
    """
    Removes editor sockets left behind by processes that no longer exist.

    :param socket_dir: Directory holding the sockets; defaults to EDITOR_SOCKET_DIR.
    :return: The removed paths.
    """
    directory = Path(socket_dir or config.EDITOR_SOCKET_DIR)
    removed: List[Path] = []
    for path in directory.glob(f"{SOCKET_PREFIX}*.sock"):
        try:
            owner_pid = int(path.name[len(SOCKET_PREFIX):].split("-")[0])
        except ValueError:
            continue
        if owner_pid == os.getpid() or psutil.pid_exists(owner_pid):
            continue
        try:
            if remove_socket(path):
                removed.append(path)
        except OSError as e:
            log.debug(f"Failed to remove stale editor socket '{path}': {e}")
    return removed


#* --- Executable Lookup ---
def _first_line(output: str) -> Optional[str]:
    return next((line.strip() for line in output.splitlines() if line.strip()), None)


def lookup_configured() -> Optional[str]:
    return config.EDITOR_EXECUTABLE.strip() or None


def lookup_on_path() -> Optional[str]:
    names = ["code.cmd", "code.exe", EDITOR_COMMAND] if sys.platform == "win32" else [EDITOR_COMMAND]
    for name in names:
        found = shutil.which(name)
        if found:
            return found
    return None


def lookup_login_shell() -> Optional[str]:
    """Asks the user's login shell, whose PATH may differ from ours."""
    shell = os.environ.get("SHELL")
    if not shell:
        return None
    try:
        result = subprocess.run([shell, "-lc", f"command -v {EDITOR_COMMAND}"],
                                capture_output=True, text=True, timeout=10, check=False)
    except (OSError, subprocess.TimeoutExpired) as e:
        log.debug(f"Editor CLI lookup through login shell '{shell}' failed: {e}")
        return None
    return _first_line(result.stdout) if result.returncode == 0 else None


DEFAULT_LOOKUPS: List[Callable[[], Optional[str]]] = [lookup_configured, lookup_on_path, lookup_login_shell]


def is_executable(path: str) -> bool:
    if sys.platform == "win32":
        return Path(path).exists()
    return os.access(path, os.X_OK)


#* --- Child Process Output ---
def _read_pipe(pipe, process_name: str, level: int) -> None:
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").rstrip("\r\n")
            if line:
                proc_logger.log(level, line)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()


def log_process_output(process: subprocess.Popen, name: str) -> None:
    """Starts background threads that log a process's stdout (DEBUG) and stderr (WARNING)."""
    if process.stdout:
        threading.Thread(target=_read_pipe, args=(process.stdout, f"{name}.stdout", logging.DEBUG),
                         daemon=True, name=f"{name}-stdout").start()
    if process.stderr:
        threading.Thread(target=_read_pipe, args=(process.stderr, f"{name}.stderr", logging.WARNING),
                         daemon=True, name=f"{name}-stderr").start()


#* --- Termination ---
def terminate_process_tree(pid: int, timeout: float) -> None:
    """
    Sends SIGTERM to a process and its descendants, then kills whatever is
    still alive after `timeout` seconds.
    """
    try:
        parent = psutil.Process(pid)
        procs = [parent] + parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return

    for proc in procs:
        try:
            log.debug(f"Sending SIGTERM to {proc.name()} (PID {proc.pid})")
            proc.terminate()
        except psutil.NoSuchProcess:
            continue

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            log.warning(f"Killing stubborn process {proc.name()} (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            continue
