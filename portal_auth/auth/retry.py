"""Bounded retry loop shared by every sign-in attempt."""

import logging
import threading
from typing import Callable, Optional, TypeVar

from .errors import AuthFailure, Cancelled, FieldNotFound


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryShell:
    """Runs an attempt function until it succeeds, fails fatally, or the budget is spent.

    This is the only place that decides whether a failure is retried.
    ``FieldNotFound`` is retried once; the second one is fatal. Backoff waits
    on the cancel event so closing the owner interrupts it.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        field_not_found_retries: int = 1,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize retry shell.

        Args:
            max_attempts: Attempt budget (default: 3)
            backoff_seconds: Pause between attempts, 0 to skip (default: 2.0)
            field_not_found_retries: How many FieldNotFound failures may be retried (default: 1)
            cancel_event: Event that aborts the loop when set
        """
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.field_not_found_retries = field_not_found_retries
        self.cancel_event = cancel_event or threading.Event()

    def is_fatal(self, error: AuthFailure, field_misses: int) -> bool:
        if isinstance(error, FieldNotFound):
            return field_misses > self.field_not_found_retries
        return not error.retryable

    def run(
        self,
        attempt_fn: Callable[[int], T],
        on_failure: Optional[Callable[[int, AuthFailure, bool], None]] = None,
    ) -> T:
        """Call ``attempt_fn(attempt_number)`` until it returns.

        Args:
            attempt_fn: One full attempt; raises AuthFailure on failure
            on_failure: Called with (attempt, error, fatal) after each failed attempt

        Returns:
            Whatever attempt_fn returned

        Raises:
            AuthFailure: The fatal failure, or the last failure once the budget is spent,
                with ``attempts`` set
        """
        field_misses = 0
        last_error: Optional[AuthFailure] = None

        for attempt in range(1, self.max_attempts + 1):
            if self.cancel_event.is_set():
                raise self._stamp(Cancelled("Login cancelled"), attempt - 1)

            logger.info(f"Login attempt {attempt}/{self.max_attempts}")
            try:
                return attempt_fn(attempt)
            except AuthFailure as e:
                last_error = e
                if isinstance(e, FieldNotFound):
                    field_misses += 1
                fatal = self.is_fatal(e, field_misses)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed: {e.cause_name}: {e}"
                    f"{' (not retrying)' if fatal else ''}"
                )
                if on_failure:
                    on_failure(attempt, e, fatal)
                if fatal:
                    raise self._stamp(e, attempt)

            if attempt < self.max_attempts and self.backoff_seconds > 0:
                logger.debug(f"Backing off for {self.backoff_seconds} seconds")
                if self.cancel_event.wait(self.backoff_seconds):
                    raise self._stamp(Cancelled("Login cancelled during backoff"), attempt)

        logger.error(f"Login failed after {self.max_attempts} attempts: {last_error.cause_name}")
        raise self._stamp(last_error, self.max_attempts)

    @staticmethod
    def _stamp(error: AuthFailure, attempts: int) -> AuthFailure:
        error.attempts = attempts
        return error
