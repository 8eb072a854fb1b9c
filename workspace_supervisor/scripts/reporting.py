import logging
import requests
from typing import Optional

from workspace_supervisor.config import effective_settings as config
from workspace_supervisor.errors import ReportingFailure
from workspace_supervisor.models import ErrorReport

log = logging.getLogger(__name__)


class ControlPlaneReporter:
    """
    Posts environment errors of a run to the control plane.

    Delivery is best-effort: a single attempt, no retries, and failures are
    only logged so that workspace bring-up never depends on the callback.
    """

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 path: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.base_url = (config.CONTROL_PLANE_URL if base_url is None else base_url).rstrip("/")
        self.token = config.TASK_RUN_TOKEN if token is None else token
        self.path = path or config.ERROR_REPORT_PATH
        self.timeout = timeout or config.REPORT_TIMEOUT

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.token)

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.path}"

    def _post(self, report: ErrorReport) -> str:
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            response = requests.post(self.url, json=report.to_payload(), headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ReportingFailure(f"Control plane unreachable at '{self.url}': {e}") from e

        log.info(f"Control plane response status: {response.status_code}")
        if not response.ok:
            raise ReportingFailure(
                f"Control plane rejected error report with status {response.status_code}: {response.text}"
            )
        return response.text

    def report(self, report: ErrorReport) -> bool:
        """
        Sends `report` if it carries at least one error.

        :param report: The combined maintenance/dev errors of a run.
        :return: True if the control plane accepted the report, False otherwise.
        """
        if not report.has_errors:
            log.info("No errors to report.")
            return False
        if not self.is_configured:
            log.info("Skipping control plane error reporting: missing URL or task-run token.")
            return False

        log.info("Reporting environment errors to the control plane...")
        try:
            body = self._post(report)
        except ReportingFailure as e:
            log.error(f"Failed to report errors to the control plane: {e}")
            return False
        log.info(f"Successfully reported errors to the control plane: {body}")
        return True
