"""
Retry helper for LeadScan network calls.
"""

import time
import random
import logging
from typing import Callable, Optional, Tuple, Type, TypeVar

from .config import RetryConfig

T = TypeVar("T")


def pause_for(attempt: int, config: RetryConfig) -> float:
    """
    Seconds to wait after the given failed attempt (0-based).

    With the default exponential_base of 1 every pause equals
    base_delay_seconds; larger bases grow the pause up to max_delay_seconds.
    """
    pause = min(
        config.base_delay_seconds * config.exponential_base ** attempt,
        config.max_delay_seconds,
    )
    if config.jitter:
        # +/- 25%
        pause *= random.uniform(0.75, 1.25)
    return pause


def call_with_retries(
    func: Callable[[], T],
    config: RetryConfig,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    logger: Optional[logging.Logger] = None,
    label: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call func until it succeeds or config.max_retries extra attempts are used.

    Only exceptions in retry_on trigger another attempt; anything else
    propagates at once. When every attempt fails the last error is re-raised.
    """
    label = label or getattr(func, "__name__", "call")
    attempts = max(config.max_retries, 0) + 1

    for attempt in range(attempts):
        try:
            return func()
        except retry_on as e:
            if attempt == attempts - 1:
                if logger:
                    logger.error(f"{label}: giving up after {attempts} attempts ({type(e).__name__}: {e})")
                raise
            pause = pause_for(attempt, config)
            if logger:
                logger.warning(
                    f"{label}: attempt {attempt + 1}/{attempts} failed "
                    f"({type(e).__name__}: {e}), retrying in {pause:.1f}s"
                )
            sleep(pause)
