import json
import os
import sys
import time
from pathlib import Path

import pytest

from workspace_supervisor.completion import CompletionSignal, WaitOutcome
from workspace_supervisor.editor import EditorServerSupervisor, EditorTimings, process_utils
from workspace_supervisor.editor import supervisor as supervisor_module

SILENT_SERVE_WEB = """#!{python}
import sys
import time
import socket

server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
server.bind(sys.argv[sys.argv.index("--socket-path") + 1])
server.listen(16)
time.sleep(60)
"""

FAKE_SERVE_WEB = """#!{python}
import json
import sys
import socketserver
from pathlib import Path
from http.server import BaseHTTPRequestHandler

Path(__file__).with_suffix(".args").write_text(json.dumps(sys.argv[1:]))


class Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Length", "2")
        self.end_headers()
        self.wfile.write(b"ok")

    def log_message(self, *args):
        pass


socket_path = sys.argv[sys.argv.index("--socket-path") + 1]
with socketserver.UnixStreamServer(socket_path, Handler) as server:
    server.serve_forever()
"""


def _write_executable(path: Path, text: str) -> Path:
    path.write_text(text)
    path.chmod(0o755)
    return path


@pytest.fixture
def timings() -> EditorTimings:
    return EditorTimings(
        socket_timeout=5,
        socket_poll_interval=0.05,
        warmup_timeout=5,
        warmup_interval=0.1,
        base_url_wait_timeout=0.2,
        base_url_wait_interval=0.05,
        shutdown_timeout=2,
    )


@pytest.fixture
def no_spawn(monkeypatch):
    def popen(*args, **kwargs):
        raise AssertionError("the editor server must not be spawned")
    monkeypatch.setattr(supervisor_module.subprocess, "Popen", popen)


def _supervisor(executable, socket_dir, timings) -> EditorServerSupervisor:
    return EditorServerSupervisor(public_host="workspace-editor.test", socket_dir=socket_dir, timings=timings,
                                  lookups=[lambda: str(executable) if executable else None])


def _wait_until(predicate, timeout: float = 5) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


@pytest.fixture
def fake_server(tmp_path) -> Path:
    return _write_executable(tmp_path / "code", FAKE_SERVE_WEB.format(python=sys.executable))


@pytest.fixture
def running_editor(fake_server, short_socket_dir, timings):
    editor = _supervisor(fake_server, short_socket_dir, timings)
    handle = editor.ensure_running()
    assert handle is not None
    yield editor, handle
    editor.stop()


#* --- Degraded paths ---
def test_unsupported_platform_skips_launch(monkeypatch, no_spawn, short_socket_dir, timings):
    monkeypatch.setattr(process_utils, "supports_unix_sockets", lambda: False)
    editor = _supervisor("/usr/bin/code", short_socket_dir, timings)

    assert editor.ensure_running() is None
    assert editor.get_base_url() is None
    assert editor.get_socket_path() is None


def test_missing_executable_skips_launch(no_spawn, short_socket_dir, timings):
    editor = _supervisor(None, short_socket_dir, timings)
    assert editor.ensure_running() is None
    assert not editor.is_running


def test_non_executable_file_skips_launch(no_spawn, tmp_path, short_socket_dir, timings):
    plain = tmp_path / "code"
    plain.write_text("not a program")
    plain.chmod(0o644)
    assert _supervisor(plain, short_socket_dir, timings).ensure_running() is None


def test_socket_timeout_terminates_the_child(monkeypatch, tmp_path, short_socket_dir, timings):
    sleeper = _write_executable(tmp_path / "code", "#!/bin/sh\nexec sleep 30\n")
    timings.socket_timeout = 0.3
    editor = _supervisor(sleeper, short_socket_dir, timings)

    spawned = []
    original_spawn = editor._spawn

    def spy(executable, socket_path):
        process = original_spawn(executable, socket_path)
        spawned.append((process, socket_path))
        return process
    monkeypatch.setattr(editor, "_spawn", spy)

    assert editor.ensure_running() is None
    process, socket_path = spawned[0]
    process.wait(timeout=5)
    assert not socket_path.exists()
    assert editor.get_base_url() is None


def test_child_exiting_early_aborts_the_wait(tmp_path, short_socket_dir, timings):
    failing = _write_executable(tmp_path / "code", "#!/bin/sh\nexit 3\n")
    editor = _supervisor(failing, short_socket_dir, timings)

    started = time.monotonic()
    assert editor.ensure_running() is None
    assert time.monotonic() - started < timings.socket_timeout
    assert list(short_socket_dir.glob("*.sock")) == []


#* --- Executable lookup ---
def test_resolve_executable_uses_first_hit_and_caches(timings, short_socket_dir):
    calls = []

    def configured():
        calls.append("configured")
        return None

    def on_path():
        calls.append("on_path")
        return "/opt/editor/bin/code"

    def login_shell():
        calls.append("login_shell")
        return "/other/code"

    editor = EditorServerSupervisor(socket_dir=short_socket_dir, timings=timings,
                                    lookups=[configured, on_path, login_shell])
    assert editor.resolve_executable() == "/opt/editor/bin/code"
    assert editor.resolve_executable() == "/opt/editor/bin/code"
    assert calls == ["configured", "on_path"]


def test_configured_lookup_reads_settings(monkeypatch):
    monkeypatch.setattr(process_utils.config, "EDITOR_EXECUTABLE", "  /custom/code ")
    assert process_utils.lookup_configured() == "/custom/code"
    monkeypatch.setattr(process_utils.config, "EDITOR_EXECUTABLE", "")
    assert process_utils.lookup_configured() is None


#* --- Running server ---
def test_ensure_running_serves_on_the_socket(running_editor, fake_server):
    editor, handle = running_editor

    assert handle.base_url == "http://workspace-editor.test"
    assert handle.socket_path.exists()
    assert editor.get_base_url() == handle.base_url
    assert editor.get_socket_path() == handle.socket_path
    assert editor.ensure_running() is handle
    assert editor.warm_up(handle.socket_path)

    args = json.loads(fake_server.with_suffix(".args").read_text())
    assert args == [
        "serve-web", "--accept-server-license-terms", "--without-connection-token",
        "--socket-path", str(handle.socket_path),
    ]


def test_stop_clears_state_and_is_idempotent(running_editor):
    editor, handle = running_editor

    editor.stop()
    assert editor.get_base_url() is None
    assert editor.get_socket_path() is None
    assert not handle.socket_path.exists()
    handle.process.wait(timeout=5)

    editor.stop()
    assert editor.get_base_url() is None


def test_crash_clears_cached_state(running_editor):
    editor, handle = running_editor

    handle.process.kill()
    assert _wait_until(lambda: editor.get_base_url() is None)
    assert _wait_until(lambda: not handle.socket_path.exists())
    assert editor.get_socket_path() is None


def test_wait_for_base_url(running_editor, short_socket_dir, timings):
    editor, handle = running_editor
    assert editor.wait_for_base_url(0.1) == handle.base_url

    idle = _supervisor(None, short_socket_dir, timings)
    assert idle.wait_for_base_url(0.1) is None


def test_stop_without_server_is_a_no_op(short_socket_dir, timings):
    editor = _supervisor(None, short_socket_dir, timings)
    editor.stop()
    editor.stop()
    assert editor.get_base_url() is None


#* --- Socket housekeeping ---
def test_remove_stale_sockets(short_socket_dir):
    prefix = process_utils.SOCKET_PREFIX
    dead = short_socket_dir / f"{prefix}999999999-1.sock"
    own = short_socket_dir / f"{prefix}{os.getpid()}-1.sock"
    alive = short_socket_dir / f"{prefix}{os.getppid()}-1.sock"
    unparsable = short_socket_dir / f"{prefix}abc.sock"
    for path in (dead, own, alive, unparsable):
        path.touch()

    assert process_utils.remove_stale_sockets(short_socket_dir) == [dead]
    assert not dead.exists()
    assert own.exists() and alive.exists() and unparsable.exists()


def test_create_socket_path_is_unique_per_process(short_socket_dir):
    path = process_utils.create_socket_path(short_socket_dir)
    assert path.parent == short_socket_dir
    assert path.name.startswith(f"{process_utils.SOCKET_PREFIX}{os.getpid()}-")
    assert path.suffix == ".sock"
    assert not process_utils.remove_socket(path)


class GiveUpAfterSocketAppears(CompletionSignal):
    """Waits for the socket like the real signal, then reports a timeout anyway."""

    def __init__(self) -> None:
        super().__init__()
        self.socket_seen = False

    def wait(self, artifact_path, interval, deadline, should_abort=None):
        self.socket_seen = super().wait(artifact_path, interval, deadline) is WaitOutcome.FOUND
        return WaitOutcome.TIMED_OUT


def test_failed_wait_removes_a_socket_that_did_appear(monkeypatch, fake_server, short_socket_dir, timings):
    signal = GiveUpAfterSocketAppears()
    editor = EditorServerSupervisor(public_host="workspace-editor.test", socket_dir=short_socket_dir,
                                    timings=timings, lookups=[lambda: str(fake_server)], signal=signal)

    spawned = []
    original_spawn = editor._spawn

    def spy(executable, socket_path):
        process = original_spawn(executable, socket_path)
        spawned.append((process, socket_path))
        return process
    monkeypatch.setattr(editor, "_spawn", spy)

    assert editor.ensure_running() is None
    assert signal.socket_seen
    process, socket_path = spawned[0]
    process.wait(timeout=5)
    assert not socket_path.exists()
    assert editor.get_socket_path() is None


def test_unresponsive_server_is_kept_after_failed_warm_up(tmp_path, short_socket_dir, timings):
    silent = _write_executable(tmp_path / "code", SILENT_SERVE_WEB.format(python=sys.executable))
    timings.warmup_timeout = 0.5
    editor = _supervisor(silent, short_socket_dir, timings)
    try:
        handle = editor.ensure_running()
        assert handle is not None
        assert editor.get_base_url() == handle.base_url
        assert handle.process.poll() is None
        assert not editor.warm_up(handle.socket_path)
    finally:
        editor.stop()
