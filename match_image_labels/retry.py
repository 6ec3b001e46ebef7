import logging
import time
from collections.abc import Callable
from typing import TypeVar

# Backoff configuration
INITIAL_BACKOFF = 1.0  # Initial backoff in seconds
MAX_BACKOFF = 60.0  # Maximum backoff in seconds
BACKOFF_FACTOR = 2.0  # Multiply by this after each failure

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Backoff:
    """Retry a call with exponential backoff.

    With ``retries=0`` the call is made exactly once and any error propagates.
    Timeouts are never retried: the call already used its whole deadline.
    """

    def __init__(self, retries: int = 0, *, sleep: Callable[[float], None] | None = None):
        self.retries = retries
        self._sleep = sleep or time.sleep
        self._current_backoff = INITIAL_BACKOFF

    def on_success(self) -> None:
        """Reset backoff on successful request."""
        self._current_backoff = INITIAL_BACKOFF

    def on_failure(self) -> float:
        """Wait out the current backoff, then increase it for the next failure."""
        backoff = self._current_backoff
        self._sleep(backoff)
        self._current_backoff = min(self._current_backoff * BACKOFF_FACTOR, MAX_BACKOFF)
        return backoff

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        attempt = 0
        while True:
            try:
                result = fn(*args, **kwargs)
            except TimeoutError:
                raise
            except Exception as e:
                if attempt >= self.retries:
                    raise
                attempt += 1
                logger.warning(
                    "Attempt %d of %d failed (%s), retrying in %.1fs",
                    attempt,
                    self.retries + 1,
                    e,
                    self._current_backoff,
                )
                self.on_failure()
                continue
            self.on_success()
            return result
