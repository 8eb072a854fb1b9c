"""
This is a minimal entry point script for a detached orchestrator run.

It reads the run manifest written by the launcher, runs the maintenance and
dev stages, and exits with 0 when both stages are clean and 1 otherwise,
including fatal setup errors before either stage ran.
"""
import setproctitle
setproctitle.setproctitle("Workspace - Orchestrator")

import sys
import logging
from pathlib import Path

from workspace_supervisor.log.setup import setup_logging
from workspace_supervisor.models import ScriptPlan
from workspace_supervisor.scripts.launcher import read_manifest
from workspace_supervisor.scripts.orchestrator import ScriptOrchestrator
from workspace_supervisor.scripts.reporting import ControlPlaneReporter

log = logging.getLogger(__name__)


def _discard_manifest(manifest_path: Path) -> None:
    """The manifest carries the task-run token and is not needed once loaded."""
    try:
        manifest_path.unlink(missing_ok=True)
    except OSError as e:
        log.warning(f"[ORCHESTRATOR] Could not remove manifest '{manifest_path}': {e}")


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    setup_logging()
    if len(argv) != 1:
        log.error("Usage: python -m workspace_supervisor.script_entry.orchestrator <manifest.json>")
        return 1

    manifest_path = Path(argv[0])
    try:
        manifest = read_manifest(manifest_path)
        plan = ScriptPlan.from_dict(manifest["plan"])
    except (OSError, ValueError, KeyError) as e:
        log.critical(f"[ORCHESTRATOR] Fatal error: cannot load manifest '{manifest_path}': {e}")
        return 1
    finally:
        _discard_manifest(manifest_path)

    reporter_config = manifest.get("reporter") or {}
    log.info(f"[ORCHESTRATOR] Control plane URL: {reporter_config.get('url') or '(unset)'}")
    log.info(f"[ORCHESTRATOR] Task-run token present: {bool(reporter_config.get('token'))}")
    reporter = ControlPlaneReporter(base_url=reporter_config.get("url", ""), token=reporter_config.get("token", ""))

    outcome = ScriptOrchestrator(reporter=reporter).run_plan(plan)
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
