"""
Logging configuration for Face Attendance.

Every record carries the id of the session it was emitted for. Code
running on behalf of a session wraps its work in bind_session(); the
filter falls back to the service-wide id outside such a block.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_session_id: ContextVar[Optional[str]] = ContextVar('face_attendance_session_id', default=None)

LOG_FORMAT = '%(asctime)s [%(levelname)s] [session=%(session_id)s] %(name)s: %(message)s'


def current_session_id() -> Optional[str]:
    return _session_id.get()


@contextmanager
def bind_session(session_id: str) -> Iterator[None]:
    """
    Attribute log records emitted inside the block to a session.

    Bindings nest; leaving a block restores the outer session id.

    Args:
        session_id: Attendance or enrollment session id
    """
    token = _session_id.set(session_id)
    try:
        yield
    finally:
        _session_id.reset(token)


class SessionContextFilter(logging.Filter):
    """Stamp records with the bound session id, or the default one."""

    def __init__(self, default_session_id: str = '-'):
        super().__init__()
        self.default_session_id = default_session_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = _session_id.get() or self.default_session_id
        return True


def setup_logging(default_session_id: str = '-', debug: bool = False) -> None:
    """
    Configure console logging for the service.

    Args:
        default_session_id: Id shown for records emitted outside any session
        debug: Enable debug level logging
    """
    level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    console_handler.addFilter(SessionContextFilter(default_session_id))

    root_logger.addHandler(console_handler)

    # werkzeug logs every request at INFO
    if not debug:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
