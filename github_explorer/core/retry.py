"""Retry policy for transient I/O failures."""

import logging
from typing import Any, Callable, Optional, Tuple, Type

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from github_explorer.core.config import Settings, settings

logger = logging.getLogger(__name__)


class TransientError(Exception):
    """An error that may succeed when the operation is attempted again."""


RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (TransientError, httpx.TransportError)


def is_retryable(error: BaseException) -> bool:
    """Return True if ``error`` is worth another attempt."""
    return isinstance(error, RETRYABLE_EXCEPTIONS)


def create_retrying(
    config: Optional[Settings] = None,
    description: str = "operation",
    sleep: Optional[Callable[[float], Any]] = None,
) -> AsyncRetrying:
    """
    Build the ``AsyncRetrying`` controller used for GitHub calls.

    Retries only errors accepted by ``is_retryable``, with exponential backoff
    capped at ``retry_max_delay_ms`` plus up to ``retry_jitter`` of the first
    delay as random jitter. The last error is re-raised once attempts run out.

    Args:
        config: Settings to read the retry knobs from
        description: Label used in log messages
        sleep: Optional replacement for the async sleep (tests)
    """
    config = config or settings
    initial = config.retry_initial_delay_ms / 1000
    max_attempts = config.retry_max_retries + 1  # +1 for initial attempt

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Attempt {retry_state.attempt_number} of {description} failed: {error}. "
            f"Retrying in {wait:.2f}s..."
        )

    def _after(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if (
            retry_state.attempt_number >= max_attempts
            and outcome is not None
            and outcome.failed
            and is_retryable(outcome.exception())
        ):
            logger.error(
                f"All {max_attempts} attempts of {description} failed. "
                f"Last error: {outcome.exception()}"
            )

    kwargs = {
        "retry": retry_if_exception(is_retryable),
        "stop": stop_after_attempt(max_attempts),
        "wait": wait_exponential_jitter(
            initial=initial,
            max=config.retry_max_delay_ms / 1000,
            exp_base=config.retry_backoff_factor,
            jitter=initial * config.retry_jitter,
        ),
        "before_sleep": _before_sleep,
        "after": _after,
        "reraise": True,
    }
    if sleep is not None:
        kwargs["sleep"] = sleep
    return AsyncRetrying(**kwargs)
