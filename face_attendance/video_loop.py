"""
Detection loop module.

Samples frames at a fixed period while the camera is active and keeps
the latest frame with its quality-filtered detections for the session.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

import numpy as np

from .config import Config
from .logging_config import bind_session, get_logger
from .models import Detection
from .recognition.quality import compute_face_quality

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoopSnapshot:
    frame: Optional[np.ndarray] = None
    detections: Tuple[Detection, ...] = ()
    qualities: Tuple[float, ...] = ()
    tick: int = 0

    @property
    def average_quality(self) -> float:
        if not self.qualities:
            return 0.0
        return sum(self.qualities) / len(self.qualities)


class DetectionLoop:
    """
    Background detection loop.

    Each tick (read frame, detect, filter, publish) runs to completion
    on the loop thread before the next one is scheduled, so ticks never
    overlap.
    """

    def __init__(
        self,
        read_frame: Callable[[], Optional[np.ndarray]],
        detector: Any,
        config: Config,
        session_id: Optional[str] = None
    ):
        """
        Initialize detection loop.

        Args:
            read_frame: Returns the next camera frame or None
            detector: Object with detect(frame) -> list of Detection
            config: Service configuration
            session_id: Session the loop's log records are attributed to
        """
        self.read_frame = read_frame
        self.detector = detector
        self.config = config
        self.session_id = session_id
        self.interval = config.detection_interval_ms / 1000.0

        self._snapshot = LoopSnapshot()
        self._snapshot_lock = threading.Lock()
        self._stop_flag = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def latest(self) -> LoopSnapshot:
        with self._snapshot_lock:
            return self._snapshot

    def start(self) -> None:
        if self.is_running:
            logger.debug('Detection loop already running')
            return

        self._stop_flag.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f'DetectionLoop-{self.session_id}' if self.session_id else 'DetectionLoop'
        )
        self._thread.start()
        logger.info(f'🎬 Detection loop started ({1 / self.interval:.0f} Hz)')

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_flag.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        with self._snapshot_lock:
            self._snapshot = LoopSnapshot()
        logger.info('Detection loop stopped')

    def tick(self) -> LoopSnapshot:
        """
        Run one detection pass and publish the result.

        Returns:
            The published snapshot
        """
        frame = self.read_frame()
        if frame is None:
            return self.latest()

        detections: List[Detection] = list(self.detector.detect(frame))

        kept: List[Detection] = []
        qualities: List[float] = []
        for detection in detections:
            quality = compute_face_quality(detection, self.config)
            if quality >= self.config.detection_min_quality:
                kept.append(detection)
                qualities.append(quality)

        with self._snapshot_lock:
            snapshot = LoopSnapshot(
                frame=frame,
                detections=tuple(kept),
                qualities=tuple(qualities),
                tick=self._snapshot.tick + 1,
            )
            self._snapshot = snapshot
        return snapshot

    def _run(self) -> None:
        # context variables do not cross into new threads
        with bind_session(self.session_id or '-'):
            while not self._stop_flag.is_set():
                try:
                    self.tick()
                except Exception as e:
                    logger.error(f'Detection loop error: {e}')

                self._stop_flag.wait(self.interval)
