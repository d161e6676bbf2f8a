"""
Retry budget module.

Bounds the recognition attempts of one capture-to-recognize cycle.
"""

from ..config import Config
from ..errors import RetryBudgetExhausted
from ..logging_config import get_logger

logger = get_logger(__name__)


class RetryBudget:
    """
    Attempt counter for a capture-to-recognize cycle.

    Every decided attempt counts, whatever its outcome, unless it is
    refunded because recording its result failed. A success resets the
    counter; once exhausted no further attempt is allowed until reset().
    """

    def __init__(self, config: Config):
        self.max_attempts = config.max_recognition_attempts
        self.attempts = 0

    @property
    def remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)

    def is_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def begin_attempt(self) -> int:
        """
        Count a new attempt.

        Returns:
            1-based attempt number

        Raises:
            RetryBudgetExhausted: If all attempts were already used
        """
        if self.is_exhausted():
            raise RetryBudgetExhausted(self.max_attempts)

        self.attempts += 1
        logger.debug(f'Recognition attempt {self.attempts}/{self.max_attempts}')
        return self.attempts

    def refund(self) -> None:
        """Give back the last attempt, e.g. when recording an accepted result failed."""
        if self.attempts > 0:
            self.attempts -= 1

    def record_success(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.attempts = 0
