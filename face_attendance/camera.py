"""
Camera connection module.

Opens the session's video source (local webcam index or stream URL) and
guarantees the capture is released when the session lets go of it.
"""

import threading
import time
from typing import Callable, Optional, Union

import cv2
import numpy as np

from .config import Config
from .errors import ResourceError
from .logging_config import get_logger

logger = get_logger(__name__)


def _parse_source(camera_source: str) -> Union[int, str]:
    """Local index for digits, URL otherwise."""
    source = camera_source.strip()
    if source.isdigit():
        return int(source)
    return source


def _sanitize_url(url: str) -> str:
    """
    Remove password from URL for logging.

    Args:
        url: URL with potential password

    Returns:
        Sanitized URL
    """
    if '://' not in url:
        return url

    protocol, rest = url.split('://', 1)
    if '@' not in rest:
        return url

    creds, host = rest.rsplit('@', 1)
    username = creds.split(':', 1)[0]
    return f'{protocol}://{username}@{host}'


def connect_camera(
    config: Config,
    max_retries: int = 3,
    sleep: Callable[[float], None] = time.sleep
) -> cv2.VideoCapture:
    """
    Connect to camera with retry logic.

    Args:
        config: Service configuration
        max_retries: Maximum connection attempts
        sleep: Sleep function used between attempts

    Returns:
        Opened VideoCapture object

    Raises:
        ResourceError: If connection fails after max_retries
    """
    source = _parse_source(config.camera_source)
    label = f'index {source}' if isinstance(source, int) else _sanitize_url(source)

    for attempt in range(max_retries):
        logger.info(f'Connecting to camera {label} (attempt {attempt + 1}/{max_retries})...')

        video_capture = cv2.VideoCapture(source)
        if video_capture.isOpened():
            ret, frame = video_capture.read()
            if ret and frame is not None:
                logger.info(f'✅ Camera connected, frame size {frame.shape[1]}x{frame.shape[0]}')
                return video_capture
            logger.warning('Camera opened but failed to read frame')
        else:
            logger.warning('Failed to open camera')
        video_capture.release()

        if attempt < max_retries - 1:
            wait_time = 2 ** attempt
            logger.info(f'Retrying in {wait_time} seconds...')
            sleep(wait_time)

    raise ResourceError(f'Cannot connect to camera after {max_retries} attempts')


class CameraSource:
    """
    Exclusive owner of one video capture.

    Reads are serialized; release() is idempotent and makes later reads
    return None.
    """

    def __init__(self, capture):
        self._capture = capture
        self._lock = threading.Lock()

    @classmethod
    def open(cls, config: Config) -> 'CameraSource':
        return cls(connect_camera(config))

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._capture is None:
                return None
            ret, frame = self._capture.read()
        if not ret or frame is None:
            return None
        return frame

    def release(self) -> None:
        with self._lock:
            capture, self._capture = self._capture, None
        if capture is None:
            return
        try:
            capture.release()
            logger.info('Camera released')
        except Exception as e:
            logger.warning(f'Error releasing camera: {e}')
