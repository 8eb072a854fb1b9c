import sys
import time
import logging
import argparse
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from workspace_supervisor.bringup import WorkspaceBringUp
from workspace_supervisor.config import effective_settings as config
from workspace_supervisor.editor import EditorServerSupervisor
from workspace_supervisor.errors import SetupFailure
from workspace_supervisor.log.setup import setup_logging
from workspace_supervisor.scripts import ScriptOrchestrator, launch_orchestrator

log = logging.getLogger("console")


#* --- Argument Helpers ---
def _script_parser(prog: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=f"workspace-supervisor {prog}")
    parser.add_argument("--maintenance", help="Maintenance script text.")
    parser.add_argument("--maintenance-file", type=Path, help="File holding the maintenance script.")
    parser.add_argument("--dev", help="Dev script text.")
    parser.add_argument("--dev-file", type=Path, help="File holding the dev script.")
    return parser


def _read_scripts(prog: str, args: List[str]) -> Tuple[Optional[str], Optional[str]]:
    options = _script_parser(prog).parse_args(args)
    maintenance = options.maintenance_file.read_text(encoding="utf-8") if options.maintenance_file else options.maintenance
    dev = options.dev_file.read_text(encoding="utf-8") if options.dev_file else options.dev
    return maintenance, dev


def _block_until_interrupted(editor: EditorServerSupervisor) -> None:
    print("Press Ctrl+C to stop the editor server.")
    try:
        while editor.is_running:
            time.sleep(1)
        log.warning("Editor server is no longer running.")
    except KeyboardInterrupt:
        log.info("Interrupted by user.")
    finally:
        editor.stop()


#* --- Commands ---
def run_scripts_command(args: List[str]) -> int:
    """Runs the maintenance and dev scripts in the foreground."""
    maintenance, dev = _read_scripts("run-scripts", args)
    outcome = ScriptOrchestrator().orchestrate(maintenance, dev)
    return outcome.exit_code


def launch_command(args: List[str]) -> int:
    """Starts a detached orchestrator run."""
    maintenance, dev = _read_scripts("launch", args)
    try:
        run = launch_orchestrator(maintenance, dev)
    except SetupFailure as e:
        log.error(f"Failed to start orchestrator: {e}")
        return 1
    if run is None:
        print("Nothing to run.")
    else:
        print(f"Run {run.run_id} started (PID {run.pid}). Log: {run.log_path}")
    return 0


def editor_command(args: List[str]) -> int:
    """Starts the editor server and keeps it running until interrupted."""
    editor = EditorServerSupervisor()
    handle = editor.ensure_running()
    if handle is None:
        print("Editor server is unavailable. Check the logs for details.")
        return 1
    print(f"Editor server at {handle.base_url} on socket {handle.socket_path}")
    _block_until_interrupted(editor)
    return 0


def bring_up_command(args: List[str]) -> int:
    """Starts the editor server and a detached orchestrator run side by side."""
    maintenance, dev = _read_scripts("bring-up", args)
    editor = EditorServerSupervisor()
    bring_up = WorkspaceBringUp(editor)
    run = bring_up.start(maintenance, dev)
    if run is not None:
        print(f"Run {run.run_id} started (PID {run.pid}). Log: {run.log_path}")

    handle = bring_up.wait_for_editor()
    if handle is None:
        print("Editor server is unavailable; the workspace runs without it.")
        return 1 if bring_up.launch_error else 0
    print(f"Editor server at {handle.base_url} on socket {handle.socket_path}")
    _block_until_interrupted(editor)
    return 1 if bring_up.launch_error else 0


def config_command(args: List[str]) -> int:
    """Shows or changes modifiable settings."""
    sub_command = args[0].lower() if args else "show"
    if sub_command == "show":
        print("\n--- Modifiable Settings ---")
        for key in sorted(config.MODIFIABLE_SETTINGS):
            print(f"  {key} = {getattr(config, key, 'N/A')}")
        print(f"(Overrides file: {config.OVERRIDES_JSON_PATH})\n")
        return 0
    if sub_command == "set":
        if len(args) < 3:
            print("Usage: config set <SETTING_NAME> <VALUE>")
            return 1
        return 0 if config.update_setting(args[1].upper(), " ".join(args[2:])) else 1

    print(f"Unknown config sub-command: '{sub_command}'. Use 'config show' or 'config set'.")
    return 1


def print_help(args: List[str] = None) -> int:
    print("\nAvailable commands:")
    print("  run-scripts [opts]     - Run maintenance then dev scripts in the foreground (exit 0/1).")
    print("  launch [opts]          - Start a detached orchestrator run.")
    print("  editor                 - Run the editor server until interrupted.")
    print("  bring-up [opts]        - Start the editor server and a detached run together.")
    print("  config show|set K V    - Show or change modifiable settings.")
    print("  help                   - Show this help message.")
    print("Script options: --maintenance TEXT | --maintenance-file PATH, --dev TEXT | --dev-file PATH")
    print("Add --verbose to any command for DEBUG console output.")
    print()
    return 0


COMMANDS: Dict[str, Callable[[List[str]], int]] = {
    "run-scripts": run_scripts_command,
    "launch": launch_command,
    "editor": editor_command,
    "bring-up": bring_up_command,
    "config": config_command,
    "help": print_help,
}


def execute_command(command: str, args: List[str]) -> int:
    """
    Executes a single console command.

    :param command: The command name (e.g., 'run-scripts').
    :param args: The remaining command-line arguments.
    :return: The process exit code.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    handler = COMMANDS.get(command)
    if handler is None:
        print(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return 1
    return handler(args)


def main(argv: List[str] = None) -> int:
    """The main entry point for the console application."""
    argv = list(sys.argv[1:] if argv is None else argv)
    verbose = "--verbose" in argv
    if verbose:
        argv.remove("--verbose")
    setup_logging(logging.DEBUG if verbose else logging.INFO)

    if not argv:
        return print_help()
    return execute_command(argv[0].lower(), argv[1:])


if __name__ == "__main__":
    sys.exit(main())
