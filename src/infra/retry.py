"""
Bounded retry combinator for store calls.

- Retries only TransientDependencyError
- Exponential backoff: base_delay * 2^(attempt - 1)
  Example with 0.1s base: 0.1s -> 0.2s
- Optional per-attempt deadline: the call runs in a worker thread and an
  attempt that exceeds the deadline counts as a transient failure

On exhaustion a TransientDependencyError carrying the attempt count is
raised. Any other exception propagates on the first attempt.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.scheduler.errors import TransientDependencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 0.1


def run_with_deadline(fn: Callable[[], T], timeout: float, operation: str) -> T:
    """
    Run `fn` in a worker thread and wait at most `timeout` seconds.

    The worker thread is not interrupted on timeout; its result is
    discarded.

    Raises:
        TransientDependencyError: If the deadline is exceeded
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="deadline")
    try:
        future = executor.submit(fn)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            raise TransientDependencyError(
                operation, TimeoutError(f"exceeded {timeout:.1f}s deadline")
            ) from e
    finally:
        executor.shutdown(wait=False)


@dataclass
class RetryPolicy:
    """
    Reusable retry settings.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Backoff base in seconds
        timeout: Per-attempt deadline in seconds (None = no deadline)
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    timeout: Optional[float] = None

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return self.base_delay * (2 ** (attempt - 1))

    def call(
        self,
        fn: Callable[[], T],
        operation: str,
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """
        Call `fn` under this policy.

        Args:
            fn: Zero-argument callable
            operation: Name used in logs and errors
            sleep: Sleep function (overridable in tests)

        Returns:
            Result of `fn`

        Raises:
            TransientDependencyError: After the last failed attempt
        """
        if self.timeout is not None:
            timeout = self.timeout

            def attempt() -> T:
                return run_with_deadline(fn, timeout, operation)
        else:
            attempt = fn

        def log_before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            wait_ms = int(retry_state.next_action.sleep * 1000) if retry_state.next_action else 0
            logger.warning(
                f"[Retry] {operation} attempt {retry_state.attempt_number}/{self.max_attempts} "
                f"failed: {error}; retrying in {wait_ms}ms"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=self.base_delay),
            retry=retry_if_exception_type(TransientDependencyError),
            before_sleep=log_before_sleep,
            sleep=sleep,
            reraise=False,
        )

        try:
            return retrying(attempt)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            cause = getattr(last_error, "cause", None) or last_error
            raise TransientDependencyError(operation, cause, attempts=attempts) from last_error
