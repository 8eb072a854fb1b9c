import sys
import logging

from workspace_supervisor.config import effective_settings as config
from workspace_supervisor.log.handler import LokiHandler

# Child-process output is logged through loggers named 'proc.<name>'.
SUBPROCESS_LOGGER_PREFIX = "proc."


class MainFormatter(logging.Formatter):
    """A custom formatter to handle regular logs and raw subprocess logs."""

    def __init__(self) -> None:
        super().__init__('%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s')

    def format(self, record: logging.LogRecord) -> str:
        if record.name.startswith(SUBPROCESS_LOGGER_PREFIX):
            process_name = record.name[len(SUBPROCESS_LOGGER_PREFIX):]
            return f"[{process_name}] {record.getMessage()}"
        return super().format(record)


def setup_logging(console_level: int = logging.INFO) -> None:
    """
    Configures the root logger for the application.
    This sets up handlers for the console and, when enabled, Loki, clearing
    any previously configured handlers to prevent duplication. Detached runs
    get their log file from the launcher, which redirects their stdout.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- Loki Handler (conditional) ---
    if config.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(url=config.LOKI_URL, org_id=config.LOKI_ORG_ID)
            loki_handler.setLevel(logging.INFO)
            loki_handler.setFormatter(MainFormatter())
            root_logger.addHandler(loki_handler)
            root_logger.info(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
