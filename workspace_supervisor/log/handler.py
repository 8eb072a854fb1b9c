import sys
import socket
import logging
import threading
import requests
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from workspace_supervisor.config import effective_settings as config


class LokiHandler(logging.Handler):
    """
    A logging handler that pushes records to a Grafana Loki instance in
    batches from a background thread. Delivery problems are written to
    stderr; they never propagate into the code that logged.
    """

    def __init__(self, url: str, org_id: Optional[str] = None, job: str = "workspace-supervisor"):
        """
        :param url: The base URL of the Loki instance.
        :param org_id: The tenant ID sent as 'X-Scope-OrgID'.
        :param job: Value of the 'job' stream label.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.job = job
        self.hostname = socket.gethostname()
        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL
        self.batch_size = config.LOG_BUFFER_BATCH_SIZE
        self.log_buffer: Deque[Dict[str, Any]] = deque()
        self.buffer_lock = threading.Lock()

        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True, name="LokiFlushThread")
        self.flush_thread.start()

    def _periodic_flush(self) -> None:
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        # Final flush on stop
        self.flush()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "stream": {
                    "job": self.job,
                    "level": record.levelname.lower(),
                    "hostname": self.hostname,
                    "logger": record.name,
                },
                "values": [[str(int(record.created * 1e9)), self.format(record)]],
            }
            with self.buffer_lock:
                self.log_buffer.append(entry)
                should_flush = len(self.log_buffer) >= self.batch_size
            if should_flush:
                self.flush()
        except Exception as e:
            print(f"ERROR: LokiHandler failed to process a log record: {e}", file=sys.stderr)

    def _drain(self) -> List[Dict[str, Any]]:
        with self.buffer_lock:
            entries = list(self.log_buffer)
            self.log_buffer.clear()
        return entries

    def flush(self) -> None:
        """Sends every buffered record to Loki in a single push."""
        entries = self._drain()
        if not entries:
            return

        headers = {'Content-Type': 'application/json'}
        if self.org_id:
            headers['X-Scope-OrgID'] = self.org_id
        try:
            response = requests.post(self.url, json={"streams": entries}, headers=headers, timeout=5)
            # 204 No Content is the success status for Loki push
            if response.status_code != 204:
                print(f"ERROR: Loki returned status {response.status_code}: {response.text}", file=sys.stderr)
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(entries)} logs to Loki: {e}", file=sys.stderr)

    def close(self) -> None:
        """Stops the flush thread after a final flush."""
        self.stop_event.set()
        if self.flush_thread.is_alive():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        super().close()
