"""
This module contains the configuration settings for the workspace supervisor.
It defines the runtime paths, the multiplexed session conventions, the timing
constants of the script orchestrator and the editor server, and the
control-plane callback used for error reports.
"""

import os
import pathlib
import tempfile
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't')


#* --- Core Paths ---
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent  # Project Root
WORKSPACE_ROOT = pathlib.Path(os.getenv("WORKSPACE_ROOT", "/root/workspace"))
RUNTIME_DIR = pathlib.Path(os.getenv("WORKSPACE_RUNTIME_DIR", "/var/tmp/workspace-scripts"))
OVERRIDES_JSON_PATH = pathlib.Path(
    os.getenv("WORKSPACE_OVERRIDES_PATH", str(RUNTIME_DIR / "overrides.json"))
)

#* --- Multiplexed Session ---
SESSION_NAME = os.getenv("WORKSPACE_SESSION_NAME", "workspace")
TMUX_EXECUTABLE = os.getenv("TMUX_EXECUTABLE", "tmux")
SCRIPT_SHELL = os.getenv("WORKSPACE_SCRIPT_SHELL", "zsh")
MAINTENANCE_WINDOW_NAME = "maintenance"
DEV_WINDOW_NAME = "dev"
SESSION_COMMAND_TIMEOUT = 10.0  # seconds per tmux invocation

#* --- Orchestrator Timings ---
SESSION_WAIT_ATTEMPTS = 20
SESSION_WAIT_INTERVAL = 0.5        # seconds
MAINTENANCE_START_DELAY = 2.0      # seconds after injection before polling
MAINTENANCE_POLL_INTERVAL = 1.0    # seconds
MAINTENANCE_TIMEOUT = 10 * 60.0    # seconds
DEV_SETTLE_DELAY = 2.0             # seconds before the window check
DEV_EARLY_EXIT_DELAY = 5.0         # seconds before the one-shot exit-code check
LOG_TAIL_LINES = 100
TIMEOUT_EXIT_CODE = 124
ORCHESTRATOR_START_CHECK_DELAY = 1.0  # seconds

#* --- Control Plane ---
CONTROL_PLANE_URL = os.getenv("CONTROL_PLANE_URL", "")
TASK_RUN_TOKEN = os.getenv("TASK_RUN_TOKEN", "")
ERROR_REPORT_PATH = "/http/api/task-runs/report-environment-error"
REPORT_TIMEOUT = 10.0  # seconds

#* --- Editor Server ---
EDITOR_EXECUTABLE = os.getenv("EDITOR_EXECUTABLE", "")
EDITOR_PUBLIC_HOST = os.getenv("EDITOR_PUBLIC_HOST", "").strip() or "workspace-editor.local"
EDITOR_SOCKET_DIR = pathlib.Path(tempfile.gettempdir())
EDITOR_SOCKET_TIMEOUT = 15.0        # seconds
EDITOR_SOCKET_POLL_INTERVAL = 0.1   # seconds
EDITOR_WARMUP_TIMEOUT = 10.0        # seconds
EDITOR_WARMUP_INTERVAL = 0.5        # seconds
EDITOR_BASE_URL_WAIT_TIMEOUT = 15.0  # seconds
EDITOR_BASE_URL_WAIT_INTERVAL = 0.2
GRACEFUL_SHUTDOWN_TIMEOUT = 5.0     # seconds before force-killing

#* --- Grafana Loki (optional log shipping) ---
LOKI_ENABLED = _env_flag("LOKI_ENABLED")
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")
LOG_BUFFER_FLUSH_INTERVAL = 10.0
LOG_BUFFER_BATCH_SIZE = 200

#* --- MODIFIABLE SETTINGS (Changeable via 'config set') ---
MODIFIABLE_SETTINGS = {
    # Orchestrator
    "SESSION_WAIT_ATTEMPTS", "SESSION_WAIT_INTERVAL",
    "MAINTENANCE_START_DELAY", "MAINTENANCE_POLL_INTERVAL", "MAINTENANCE_TIMEOUT",
    "DEV_SETTLE_DELAY", "DEV_EARLY_EXIT_DELAY", "LOG_TAIL_LINES",
    # Editor server
    "EDITOR_SOCKET_TIMEOUT", "EDITOR_WARMUP_TIMEOUT", "EDITOR_WARMUP_INTERVAL",
    "GRACEFUL_SHUTDOWN_TIMEOUT",
    # Logging
    "LOG_BUFFER_FLUSH_INTERVAL",
}
