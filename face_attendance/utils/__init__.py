"""
Utility modules package.
"""

from .timing import format_uptime, now_ms, retry_with_backoff

__all__ = [
    'format_uptime',
    'now_ms',
    'retry_with_backoff',
]
