"""Retry policy for idempotent store calls."""

from __future__ import annotations

from loguru import logger
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from songmap.errors import StoreUnavailableError


def _log_retry(retry_state):
    exc = retry_state.outcome.exception()
    logger.warning(f"Store call failed (attempt {retry_state.attempt_number}), retrying: {exc}")


def build_retrying(attempts: int = 3, wait_min: float = 0.2, wait_max: float = 5.0) -> Retrying:
    """
    Build a tenacity ``Retrying`` that only retries store outages.

    Deletes and other non-idempotent calls must not go through it.
    """
    return Retrying(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=wait_min or 0, min=wait_min, max=wait_max),
        retry=retry_if_exception_type(StoreUnavailableError),
        before_sleep=_log_retry,
    )
