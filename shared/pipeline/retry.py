"""Retry budget and backoff for the pipeline stages."""

from dataclasses import dataclass

from shared.pipeline.errors import ClassifiedError


MAX_RETRIES = 2


def backoff_seconds(attempt: int) -> int:
    """Delay before retry ``attempt`` (1-based): 2, 4, ... seconds."""
    return 2 ** attempt


@dataclass(frozen=True)
class RetryDecision:
    """What a stage should do after a failure.

    Attributes:
        retry:        True if the job is re-enqueued.
        attempt:      The retry attempt number (1-based) when ``retry`` is True.
        delay_seconds: Backoff before the job becomes visible again.
    """

    retry: bool
    attempt: int = 0
    delay_seconds: int = 0


def decide_retry(error: ClassifiedError, retry_count: int) -> RetryDecision:
    """Decide between a delayed retry and terminal failure.

    Args:
        error (ClassifiedError): The classified failure.
        retry_count (int): Retries already spent on the current stage.

    Returns:
        RetryDecision: retry=False for non-retryable errors or an exhausted budget.
    """
    if not error.retryable or retry_count >= MAX_RETRIES:
        return RetryDecision(retry=False)
    attempt = retry_count + 1
    return RetryDecision(retry=True, attempt=attempt, delay_seconds=backoff_seconds(attempt))
