import time
import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

log = logging.getLogger(__name__)


class WaitOutcome(str, Enum):
    FOUND = "found"
    TIMED_OUT = "timedOut"
    ABORTED = "aborted"


class CompletionSignal:
    """
    Waits for a filesystem artifact (regular file or socket) to appear.

    Children observed this way are not reachable as process handles, so
    presence of the artifact is the only completion signal. The check runs
    once before the first sleep and once more at the deadline.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep

    @staticmethod
    def exists(artifact_path: Union[str, Path]) -> bool:
        return Path(artifact_path).exists()

    def wait(self, artifact_path: Union[str, Path], interval: float, deadline: float,
             should_abort: Optional[Callable[[], bool]] = None) -> WaitOutcome:
        """
        Polls for `artifact_path` every `interval` seconds for at most `deadline` seconds.

        :param artifact_path: The file or socket to wait for.
        :param interval: Seconds between checks.
        :param deadline: Total seconds to wait before giving up.
        :param should_abort: Optional check run before each sleep; True ends the wait early.
        :return: FOUND, TIMED_OUT, or ABORTED when `should_abort` fired.
        """
        path = Path(artifact_path)
        end = self._clock() + deadline
        while True:
            if path.exists():
                return WaitOutcome.FOUND
            if should_abort is not None and should_abort():
                return WaitOutcome.ABORTED
            remaining = end - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(interval, remaining))

        log.debug(f"Gave up waiting for '{path}' after {deadline}s.")
        return WaitOutcome.TIMED_OUT
