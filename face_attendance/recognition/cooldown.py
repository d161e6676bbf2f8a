"""
Attendance cooldown module.

Prevents duplicate attendance records for the same presence event by
enforcing a minimum time between two accepted recognitions.
"""

import math
from dataclasses import dataclass
from typing import Optional

from ..config import Config
from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CooldownVerdict:
    granted: bool
    remaining_seconds: int = 0


class AttendanceCooldown:
    """
    Per-session cooldown gate.

    Checked before detection runs; only an accepted recognition starts
    a new cooldown window.
    """

    def __init__(self, config: Config):
        """
        Initialize cooldown gate.

        Args:
            config: Service configuration
        """
        self.cooldown_ms = config.recognition_cooldown_ms
        self.last_success_ms: Optional[float] = None

    def try_acquire(self, now_ms: float, cooldown_ms: Optional[float] = None) -> CooldownVerdict:
        """
        Check whether a capture may run now.

        Args:
            now_ms: Current time in milliseconds
            cooldown_ms: Override of the configured cooldown

        Returns:
            CooldownVerdict; remaining time is rounded up to whole seconds
        """
        cooldown = self.cooldown_ms if cooldown_ms is None else cooldown_ms

        if self.last_success_ms is None:
            return CooldownVerdict(granted=True)

        elapsed = now_ms - self.last_success_ms
        if elapsed >= cooldown:
            return CooldownVerdict(granted=True)

        remaining = math.ceil((cooldown - elapsed) / 1000)
        logger.debug(f'Cooldown active, {remaining}s remaining')
        return CooldownVerdict(granted=False, remaining_seconds=remaining)

    def record_success(self, now_ms: float) -> None:
        """Start a new cooldown window after an accepted recognition."""
        self.last_success_ms = now_ms

    def reset(self) -> None:
        """Forget the last success (session stop)."""
        self.last_success_ms = None
