"""Retry strategy used by the dispatcher around remote client calls.

The remote client is the only thing the dispatcher waits on, and a timeout
there is the only failure worth repeating: the request either reaches the
server on a later attempt or the run is cancelled. Every other failure is
classified by the dispatcher, not retried here.
"""
import threading
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Decides whether a timed out action is attempted again.

    Attributes:
        max_attempts: Upper bound on attempts per action. None means unbounded.
        backoff_seconds: Pause between attempts.
        log_limit: Consecutive timeouts that are logged; later ones are silent.
    """
    max_attempts: Optional[int] = None
    backoff_seconds: float = 0.0
    log_limit: int = 3

    def should_retry(self, attempt: int) -> bool:
        """Returns True if another attempt may follow attempt number `attempt`."""
        return self.max_attempts is None or attempt < self.max_attempts

    def should_log(self, consecutive_timeouts: int) -> bool:
        return consecutive_timeouts <= self.log_limit

    def wait(self, stop_event: threading.Event) -> bool:
        """Sleeps for the backoff, returning early (True) if the run is stopped."""
        if self.backoff_seconds <= 0:
            return stop_event.is_set()
        return stop_event.wait(self.backoff_seconds)


RETRY_FOREVER = RetryPolicy()
