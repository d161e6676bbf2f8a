"""
Timing utilities.

Helper functions for time-related operations.
"""

import time
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar('T')


def now_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000.0


def format_uptime(seconds: float) -> str:
    """Render a duration as e.g. "1d 2h 30m 45s", skipping zero units above seconds."""
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    units = [(days, 'd'), (hours, 'h'), (minutes, 'm')]
    parts = [f'{value}{suffix}' for value, suffix in units if value]
    parts.append(f'{secs}s')
    return ' '.join(parts)


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Optional[Callable[[float], None]] = None
) -> T:
    """
    Retry function with exponential backoff.

    Args:
        func: Function to retry
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay in seconds
        backoff_factor: Backoff multiplier
        retry_on: Exception types that trigger a retry
        sleep: Sleep function (defaults to time.sleep)

    Returns:
        Function result

    Raises:
        Last exception if all attempts fail
    """
    sleep = sleep or time.sleep
    delay = initial_delay
    last_exception: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return func()
        except retry_on as e:
            last_exception = e
            if attempt < max_attempts - 1:
                sleep(delay)
                delay *= backoff_factor

    if last_exception:
        raise last_exception

    raise RuntimeError('Retry failed with no exception')
