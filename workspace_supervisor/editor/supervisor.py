import time
import httpx
import psutil
import logging
import threading
import subprocess
from pathlib import Path
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from workspace_supervisor.config import effective_settings as config
from workspace_supervisor.completion import CompletionSignal, WaitOutcome
from workspace_supervisor.errors import ResourceFailure
from workspace_supervisor.editor import process_utils

log = logging.getLogger(__name__)

PROCESS_NAME = "editor-server"


@dataclass
class EditorTimings:
    socket_timeout: float = 15
    socket_poll_interval: float = 0.1
    warmup_timeout: float = 10
    warmup_interval: float = 0.5
    base_url_wait_timeout: float = 15
    base_url_wait_interval: float = 0.2
    shutdown_timeout: float = 5

    @classmethod
    def from_settings(cls, settings=config) -> "EditorTimings":
        return cls(
            socket_timeout=settings.EDITOR_SOCKET_TIMEOUT,
            socket_poll_interval=settings.EDITOR_SOCKET_POLL_INTERVAL,
            warmup_timeout=settings.EDITOR_WARMUP_TIMEOUT,
            warmup_interval=settings.EDITOR_WARMUP_INTERVAL,
            base_url_wait_timeout=settings.EDITOR_BASE_URL_WAIT_TIMEOUT,
            base_url_wait_interval=settings.EDITOR_BASE_URL_WAIT_INTERVAL,
            shutdown_timeout=settings.GRACEFUL_SHUTDOWN_TIMEOUT,
        )


@dataclass(frozen=True)
class EditorServerHandle:
    socket_path: Path
    process: subprocess.Popen
    base_url: str
    executable: str


class EditorServerSupervisor:
    """
    Owns the editor server process bound to a local Unix socket.

    One instance is created per application and handed to whoever needs the
    editor URL. The cached base URL and socket path are cleared under a lock
    before any teardown step, so readers never get the URL of a server that
    is going away. Every failure degrades to "no editor server": callers get
    None, never an exception.

    ensure_running() is not serialized against itself; call it once.
    """

    def __init__(self, public_host: Optional[str] = None, socket_dir: Optional[Path] = None,
                 timings: Optional[EditorTimings] = None,
                 lookups: Optional[List[Callable[[], Optional[str]]]] = None,
                 signal: Optional[CompletionSignal] = None) -> None:
        self.public_host = public_host or config.EDITOR_PUBLIC_HOST
        self.socket_dir = Path(socket_dir or config.EDITOR_SOCKET_DIR)
        self.timings = timings or EditorTimings.from_settings()
        self.lookups = lookups if lookups is not None else process_utils.DEFAULT_LOOKUPS
        self.signal = signal or CompletionSignal()

        self._lock = threading.Lock()
        self._resolved_executable: Optional[str] = None
        self._child: Optional[Tuple[subprocess.Popen, Path]] = None
        self._handle: Optional[EditorServerHandle] = None
        self._base_url: Optional[str] = None
        self._socket_path: Optional[Path] = None

    #* --- Accessors ---
    def get_base_url(self) -> Optional[str]:
        with self._lock:
            return self._base_url

    def get_socket_path(self) -> Optional[Path]:
        with self._lock:
            return self._socket_path

    @property
    def is_running(self) -> bool:
        return self.get_base_url() is not None

    def wait_for_base_url(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Returns the base URL once the server is ready, or None after `timeout` seconds.
        For callers that start before ensure_running() has finished.
        """
        timeout = self.timings.base_url_wait_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while True:
            base_url = self.get_base_url()
            if base_url or time.monotonic() >= deadline:
                return base_url
            time.sleep(self.timings.base_url_wait_interval)

    #* --- Executable ---
    def resolve_executable(self) -> Optional[str]:
        """
        Runs the lookup strategies in order; the first non-empty result wins
        and is cached for the rest of the process lifetime.
        """
        if self._resolved_executable:
            return self._resolved_executable

        for lookup in self.lookups:
            candidate = lookup()
            if candidate:
                self._resolved_executable = candidate
                log.info(f"Resolved editor CLI executable via {lookup.__name__}: {candidate}")
                break
            log.debug(f"Editor CLI lookup {lookup.__name__} found nothing.")
        return self._resolved_executable

    def _get_executable(self) -> str:
        executable = self.resolve_executable()
        if not executable:
            raise ResourceFailure("Editor CLI executable unavailable")
        if not process_utils.is_executable(executable):
            raise ResourceFailure(f"Editor CLI at {executable} is not executable")
        return executable

    #* --- Lifecycle ---
    def _spawn(self, executable: str, socket_path: Path) -> subprocess.Popen:
        args = [
            executable, "serve-web",
            "--accept-server-license-terms",
            "--without-connection-token",
            "--socket-path", str(socket_path),
        ]
        log.info(f"Starting editor server using executable {executable} with socket {socket_path}...")
        try:
            process = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                       stdin=subprocess.DEVNULL, start_new_session=True)
        except OSError as e:
            raise ResourceFailure(f"Failed to spawn editor server: {e}") from e

        process_utils.log_process_output(process, PROCESS_NAME)
        with self._lock:
            self._child = (process, socket_path)
        threading.Thread(target=self._watch, args=(process, socket_path),
                         daemon=True, name="EditorServerWatchThread").start()
        return process

    def _watch(self, process: subprocess.Popen, socket_path: Path) -> None:
        """Waits for the child to exit, then drops the cached state that belongs to it."""
        returncode = process.wait()
        if returncode == 0:
            log.info("Editor server process exited with code 0.")
        elif returncode < 0:
            log.warning(f"Editor server process exited due to signal {-returncode}.")
        else:
            log.warning(f"Editor server process exited with code {returncode}.")

        with self._lock:
            owned = self._child is not None and self._child[0] is process
            if owned:
                if self._base_url:
                    log.info("Clearing cached editor server base URL")
                self._child = None
                self._handle = None
                self._base_url = None
                self._socket_path = None
        if owned and process_utils.remove_socket(socket_path):
            log.info(f"Removed editor server socket at {socket_path} after exit.")

    def _wait_for_socket(self, process: subprocess.Popen, socket_path: Path) -> None:
        outcome = self.signal.wait(socket_path, self.timings.socket_poll_interval, self.timings.socket_timeout,
                                   should_abort=lambda: process.poll() is not None)
        if outcome is WaitOutcome.ABORTED:
            raise ResourceFailure(f"Editor server exited with code {process.poll()} before its socket was ready")
        if outcome is WaitOutcome.TIMED_OUT:
            raise ResourceFailure(
                f"Editor server socket {socket_path} was not ready within {self.timings.socket_timeout}s"
            )

    def _cleanup_failed_launch(self, process: Optional[subprocess.Popen], socket_path: Path) -> None:
        with self._lock:
            self._child = None
            self._handle = None
            self._base_url = None
            self._socket_path = None
        if process is not None and process.poll() is None:
            try:
                process_utils.terminate_process_tree(process.pid, self.timings.shutdown_timeout)
            except psutil.Error as e:
                log.warning(f"Failed to terminate editor server after launch failure: {e}")
        try:
            process_utils.remove_socket(socket_path)
        except OSError as e:
            log.debug(f"Failed to remove editor server socket {socket_path}: {e}")

    def ensure_running(self) -> Optional[EditorServerHandle]:
        """
        Starts the editor server if it is not running and waits for its socket.

        :return: The running server's handle, or None if the server is unavailable.
        """
        log.info("Ensuring editor server availability...")
        with self._lock:
            if self._handle is not None:
                return self._handle

        if not process_utils.supports_unix_sockets():
            log.warning("Unix socket mode for the editor server is unavailable on this platform; skipping launch.")
            return None

        try:
            executable = self._get_executable()
        except ResourceFailure as e:
            log.warning(f"{e}; the editor server will not be launched.")
            return None

        for stale in process_utils.remove_stale_sockets(self.socket_dir):
            log.info(f"Removed stale editor server socket at {stale}")

        socket_path = process_utils.create_socket_path(self.socket_dir)
        process = None
        try:
            if process_utils.remove_socket(socket_path):
                log.info(f"Removed stale editor server socket at {socket_path}")
            process = self._spawn(executable, socket_path)
            self._wait_for_socket(process, socket_path)
        except (ResourceFailure, OSError) as e:
            log.error(f"Failed to launch editor server via unix socket: {e}")
            self._cleanup_failed_launch(process, socket_path)
            return None

        base_url = f"http://{self.public_host}"
        handle = EditorServerHandle(socket_path=socket_path, process=process, base_url=base_url, executable=executable)
        with self._lock:
            if self._child is None or self._child[0] is not process:
                log.error("Editor server exited right after its socket appeared.")
                return None
            self._handle = handle
            self._base_url = base_url
            self._socket_path = socket_path
        log.info(f"Editor server ready at {base_url} (pid {process.pid}).")

        self.warm_up(socket_path)
        return handle

    def warm_up(self, socket_path: Path) -> bool:
        """
        Polls the server over its socket until one HTTP request completes.
        Failing to warm up is only logged; the server may still serve traffic later.

        :return: True if a request completed within the warm-up window.
        """
        deadline = time.monotonic() + self.timings.warmup_timeout
        transport = httpx.HTTPTransport(uds=str(socket_path))
        with httpx.Client(transport=transport, timeout=self.timings.warmup_interval * 4) as client:
            while time.monotonic() < deadline:
                try:
                    response = client.get(f"http://{self.public_host}/")
                    log.info(f"Editor server warm-up succeeded (HTTP {response.status_code}).")
                    return True
                except httpx.HTTPError as e:
                    log.debug(f"Editor server warm-up attempt failed: {e}")
                    time.sleep(self.timings.warmup_interval)

        log.warning("Editor server did not respond during the warm-up window.")
        return False

    def stop(self) -> None:
        """
        Stops the editor server. Safe to call repeatedly and when nothing runs.
        Cached state is cleared first, then the socket is removed, then the
        process tree is terminated if it is still alive.
        """
        with self._lock:
            child = self._child
            self._child = None
            self._handle = None
            self._base_url = None
            self._socket_path = None

        if child is None:
            return
        process, socket_path = child

        try:
            process_utils.remove_socket(socket_path)
        except OSError as e:
            log.warning(f"Failed to remove editor server socket at {socket_path}: {e}")

        if process.poll() is not None:
            return

        log.info("Stopping editor server process...")
        try:
            process_utils.terminate_process_tree(process.pid, self.timings.shutdown_timeout)
        except psutil.Error as e:
            log.error(f"Failed to stop editor server process: {e}")
