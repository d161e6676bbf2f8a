"""
Attendance and enrollment sessions.

A session object owns everything that lives for the duration of one
camera session: the camera, the detection loop, the cooldown and the
retry budget. The recognition core stays side-effect free; sessions
feed it frames and act on its decisions.
"""

import threading
import time
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import numpy as np

from . import __version__
from .camera import CameraSource
from .config import Config
from .errors import (
    CaptureInProgress,
    Conflict,
    CooldownActive,
    EngineFault,
    FaceAttendanceError,
    InvalidStateError,
    NoFaceDetected,
    ResourceError,
    ValidationError,
)
from .gallery import GalleryManager
from .logging_config import bind_session, get_logger
from .models import (
    AttemptOutcome,
    Detection,
    GalleryEntry,
    IdentityId,
    IdentityProfile,
    RecognitionAttempt,
    RecognitionCandidate,
)
from .recognition.cooldown import AttendanceCooldown
from .recognition.decision import ConfidencePolicy, IdealConfidence, decide
from .recognition.enrollment import EnrollmentPolicy, SubmissionResult
from .recognition.matching import FaceMatcher, Gallery
from .recognition.quality import compute_face_quality
from .recognition.retry import RetryBudget
from .utils.timing import format_uptime, now_ms
from .video_loop import DetectionLoop

logger = get_logger(__name__)


def _detect(detector: Any, frame: np.ndarray) -> List[Detection]:
    if frame is None:
        raise ResourceError('No frame available')
    try:
        return list(detector.detect(frame))
    except Exception as e:
        logger.error(f'Face detection failed: {e}', exc_info=True)
        raise EngineFault(f'Face detection failed: {e}') from e


def _log_activity(store: Any, level: str, message: str, data: Optional[Dict[str, Any]] = None) -> bool:
    """
    Write an activity log entry without failing the caller.

    Returns:
        True if the entry was stored
    """
    try:
        store.log_activity(level, message, data)
        return True
    except FaceAttendanceError as e:
        logger.warning(f'Could not write activity log entry "{message}": {e}')
        return False


class AttendanceSession:
    """
    One attendance kiosk session.

    Capture actions are serialized: a capture must resolve (accept,
    reject or error) before the next one may begin.
    """

    def __init__(
        self,
        config: Config,
        detector: Any,
        gallery: GalleryManager,
        attendance_store: Any,
        camera_factory: Optional[Callable[[Config], Any]] = None,
        clock: Callable[[], float] = now_ms,
        confidence_policy: Optional[ConfidencePolicy] = None,
        session_id: Optional[str] = None
    ):
        """
        Initialize attendance session.

        Args:
            config: Service configuration
            detector: Object with detect(frame) -> list of Detection
            gallery: Gallery manager shared with enrollment
            attendance_store: Store with record_attendance(...)
            camera_factory: Opens the camera (defaults to CameraSource.open)
            clock: Millisecond clock used by the cooldown
            confidence_policy: Per-attempt confidence policy
            session_id: Identifier used in logs
        """
        self.config = config
        self.detector = detector
        self.gallery = gallery
        self.attendance_store = attendance_store
        self.camera_factory = camera_factory or CameraSource.open
        self.clock = clock
        self.confidence_policy = confidence_policy or IdealConfidence()
        self.session_id = session_id or uuid.uuid4().hex[:8]

        self.matcher = FaceMatcher(config)
        self.cooldown = AttendanceCooldown(config)
        self.retry_budget = RetryBudget(config)

        self.camera: Optional[Any] = None
        self.loop: Optional[DetectionLoop] = None
        self.is_active = False
        self.is_paused = False
        self.started_at: Optional[float] = None

        self._capture_lock = threading.Lock()
        self._state_lock = threading.RLock()

    # Lifecycle

    def start(self, rebuild_gallery: bool = True) -> None:
        """
        Acquire the camera and start the detection loop.

        Raises:
            ResourceError: If the camera or gallery store is unavailable
        """
        with bind_session(self.session_id), self._state_lock:
            if self.is_active:
                return

            if rebuild_gallery:
                self.gallery.rebuild()

            self._open_camera()
            self.is_active = True
            self.is_paused = False
            self.started_at = time.time()

            logger.info(f'✅ Attendance session {self.session_id} started')
            _log_activity(self.attendance_store, 'info', f'Attendance session {self.session_id} started')

    def stop(self) -> None:
        """Stop the loop, release the camera and reset session state."""
        with bind_session(self.session_id), self._state_lock:
            was_active = self.is_active
            self._close_camera()
            self.is_active = False
            self.is_paused = False
            self.started_at = None
            self.cooldown.reset()
            self.retry_budget.reset()

            logger.info(f'Attendance session {self.session_id} stopped')
            if was_active:
                _log_activity(self.attendance_store, 'info', f'Attendance session {self.session_id} stopped')

    def pause(self) -> None:
        """Release the camera while the session is hidden; keep cooldown state."""
        with bind_session(self.session_id), self._state_lock:
            if not self.is_active or self.is_paused:
                return
            self._close_camera()
            self.is_paused = True
            logger.info(f'Attendance session {self.session_id} paused')

    def resume(self) -> None:
        with bind_session(self.session_id), self._state_lock:
            if not self.is_active or not self.is_paused:
                return
            self._open_camera()
            self.is_paused = False
            logger.info(f'Attendance session {self.session_id} resumed')

    def __enter__(self) -> 'AttendanceSession':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _open_camera(self) -> None:
        camera = self.camera_factory(self.config)
        loop = DetectionLoop(camera.read, self.detector, self.config, session_id=self.session_id)
        loop.start()
        self.camera, self.loop = camera, loop

    def _close_camera(self) -> None:
        if self.loop is not None:
            self.loop.stop()
            self.loop = None
        if self.camera is not None:
            self.camera.release()
            self.camera = None

    # Recognition

    def current_detections(self) -> Sequence[Detection]:
        """Detections published by the latest detection loop tick."""
        loop = self.loop
        if loop is None:
            return ()
        return loop.latest().detections

    def recognize(
        self,
        detections: Sequence[Detection],
        gallery: Optional[Gallery] = None
    ) -> List[RecognitionCandidate]:
        """
        Score and match each detection. No side effects.

        Args:
            detections: Faces found in one frame
            gallery: Gallery snapshot (defaults to the current one)

        Returns:
            One candidate per detection, in detection order
        """
        gallery = gallery if gallery is not None else self.gallery.current()
        return [
            RecognitionCandidate(
                match=self.matcher.match(detection.descriptor, gallery),
                quality=compute_face_quality(detection, self.config),
                detection_index=index,
            )
            for index, detection in enumerate(detections)
        ]

    def capture_attendance(self, frame: Optional[np.ndarray] = None) -> RecognitionAttempt:
        """
        Run one capture-to-decision pipeline and record attendance on accept.

        Args:
            frame: Frame to recognize; defaults to the latest camera frame

        Returns:
            RecognitionAttempt describing the outcome

        Raises:
            CaptureInProgress: If another capture is running
            CooldownActive: If a recognition was accepted too recently
            NoFaceDetected: If the frame contains no face
            RetryBudgetExhausted: If the retry cycle has no attempts left
            ValidationError: If a detection carries a malformed descriptor
            ResourceError: If no frame is available or the store fails
            EngineFault: If the detector or matcher fails unexpectedly
        """
        if not self._capture_lock.acquire(blocking=False):
            raise CaptureInProgress('A capture is already in progress')

        try:
            with bind_session(self.session_id):
                try:
                    return self._capture(frame)
                except (ValidationError, ResourceError, EngineFault) as e:
                    _log_activity(
                        self.attendance_store,
                        'error',
                        f'Attendance capture failed: {e}',
                        {'sessionId': self.session_id, 'error': type(e).__name__},
                    )
                    raise
        finally:
            self._capture_lock.release()

    def _capture(self, frame: Optional[np.ndarray]) -> RecognitionAttempt:
        started_ms = self.clock()

        verdict = self.cooldown.try_acquire(started_ms)
        if not verdict.granted:
            raise CooldownActive(verdict.remaining_seconds)

        detections = _detect(self.detector, frame if frame is not None else self.latest_frame())
        if not detections:
            raise NoFaceDetected('No faces detected. Please position yourself in front of the camera.')

        try:
            candidates = self.recognize(detections)
        except ValidationError:
            raise
        except Exception as e:
            logger.error(f'Face matching failed: {e}', exc_info=True)
            raise EngineFault(f'Face matching failed: {e}') from e

        attempt = self.retry_budget.begin_attempt()
        decision = decide(
            candidates,
            self.config.recognition_threshold,
            policy=self.confidence_policy,
            attempt=attempt,
        )
        quality = decision.quality if decision.accepted else max(c.quality for c in candidates)
        record_id = None

        if decision.accepted:
            try:
                record_id = self.attendance_store.record_attendance(
                    decision.identity_id,
                    decision.confidence,
                    {
                        'quality': decision.quality,
                        'detectionCount': len(detections),
                        'attempt': attempt,
                        'sessionId': self.session_id,
                    },
                )
            except Exception:
                # nothing was recorded, so the attempt does not count
                self.retry_budget.refund()
                raise
            self.cooldown.record_success(started_ms)
            self.retry_budget.record_success()
            outcome = AttemptOutcome.ACCEPTED
            remaining = self.retry_budget.remaining
            logger.info(
                f'✅ Identity {decision.identity_id} recognized '
                f'(confidence: {decision.confidence:.3f}, quality: {decision.quality:.2f})'
            )
        elif self.retry_budget.is_exhausted():
            outcome = AttemptOutcome.EXHAUSTED
            remaining = 0
            logger.warning(
                f'Recognition failed, maximum attempts '
                f'({self.retry_budget.max_attempts}) reached'
            )
            _log_activity(
                self.attendance_store,
                'warning',
                f'Recognition failed after {self.retry_budget.max_attempts} attempts',
                {'sessionId': self.session_id, 'reason': decision.reason},
            )
            self.retry_budget.reset()
        else:
            outcome = AttemptOutcome.REJECTED
            remaining = self.retry_budget.remaining
            logger.info(f'Recognition rejected ({decision.reason}), {remaining} attempt(s) remaining')

        return RecognitionAttempt(
            attempt_number=attempt,
            detection_count=len(detections),
            candidates=tuple(candidates),
            quality=quality,
            decision=decision,
            outcome=outcome,
            timestamp=time.time(),
            attempts_remaining=remaining,
            record_id=record_id,
        )

    def latest_frame(self) -> Optional[np.ndarray]:
        """Latest detection loop frame, or a direct camera read if the loop has none."""
        loop = self.loop
        if loop is not None:
            latest = loop.latest().frame
            if latest is not None:
                return latest

        camera = self.camera
        if camera is not None:
            return camera.read()
        return None

    # Diagnostics

    def system_info(self) -> Dict[str, Any]:
        loop = self.loop
        uptime = time.time() - self.started_at if self.started_at else 0.0
        cooldown = self.cooldown.try_acquire(self.clock())

        return {
            'sessionId': self.session_id,
            'version': __version__,
            'active': self.is_active,
            'paused': self.is_paused,
            'detectionRunning': loop is not None and loop.is_running,
            'currentFaces': len(self.current_detections()),
            'uptime': format_uptime(uptime),
            'gallery': {
                'identities': self.gallery.identity_count,
                'descriptors': self.gallery.descriptor_count,
            },
            'thresholds': {
                'recognition': self.config.recognition_threshold,
                'matchDistance': self.config.match_distance_threshold,
                'enrollmentQuality': self.config.enrollment_quality_threshold,
            },
            'cooldown': {
                'durationMs': self.config.recognition_cooldown_ms,
                'remainingSeconds': cooldown.remaining_seconds,
            },
            'attempts': {
                'used': self.retry_budget.attempts,
                'max': self.retry_budget.max_attempts,
            },
        }


class EnrollmentSession:
    """
    Collects enrollment samples for one identity and persists them.

    Frames are passed in by the caller; the camera belongs to whoever
    drives the enrollment. Operations do not queue: one that starts
    while another is running raises CaptureInProgress.

    An enrollment either targets an existing identity (begin) or creates
    a new one from a profile on completion (begin_with_profile).
    """

    def __init__(
        self,
        config: Config,
        detector: Any,
        gallery: GalleryManager,
        session_id: Optional[str] = None
    ):
        self.config = config
        self.detector = detector
        self.gallery = gallery
        self.session_id = session_id or f'enroll-{uuid.uuid4().hex[:8]}'
        self.policy = EnrollmentPolicy(config)
        self.identity_id: Optional[IdentityId] = None
        self.profile: Optional[IdentityProfile] = None
        self._lock = threading.Lock()

    @property
    def store(self) -> Any:
        return self.gallery.store

    @property
    def in_progress(self) -> bool:
        return self.identity_id is not None or self.profile is not None

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise CaptureInProgress('An enrollment operation is already in progress')
        try:
            with bind_session(self.session_id):
                yield
        finally:
            self._lock.release()

    def begin(self, identity_id: IdentityId) -> None:
        """Start collecting samples for an existing identity."""
        with self._exclusive():
            self.policy.begin()
            self.identity_id = identity_id
            self.profile = None
            logger.info(
                f'Enrollment started for identity {identity_id} '
                f'({self.policy.required_samples} samples required)'
            )

    def begin_with_profile(self, profile: IdentityProfile) -> None:
        """
        Start collecting samples for a new identity.

        The identity is created only when the enrollment completes.

        Raises:
            ValidationError: If the profile is malformed
            Conflict: If the email is already registered
        """
        profile = profile.normalized()
        with self._exclusive():
            if self.store.find_identity_by_email(profile.email) is not None:
                raise Conflict('Email already exists in the system')

            self.policy.begin()
            self.identity_id = None
            self.profile = profile
            logger.info(
                f'Enrollment started for new identity {profile.name} '
                f'({self.policy.required_samples} samples required)'
            )

    def capture_sample(self, frame: np.ndarray) -> SubmissionResult:
        """
        Detect faces in a frame and submit them as an enrollment sample.

        Raises:
            CaptureInProgress: If another enrollment operation is running
            InvalidStateError: If no enrollment is in progress
            EngineFault: If the detector fails
        """
        with self._exclusive():
            if not self.in_progress:
                raise InvalidStateError('No enrollment in progress')
            return self.policy.submit(_detect(self.detector, frame))

    def complete(self) -> GalleryEntry:
        """
        Finalize the enrollment, persist the samples and rebuild the gallery.

        A failed write leaves neither the new identity nor any of its
        descriptors behind, and cancels the enrollment.

        Returns:
            The identity's new gallery entry

        Raises:
            InsufficientSamples: If not enough samples were accepted
        """
        with self._exclusive():
            if not self.in_progress:
                raise InvalidStateError('No enrollment in progress')

            samples = self.policy.complete()
            identity_id = self.identity_id
            created = False

            try:
                if identity_id is None:
                    identity_id = self.store.add_identity(self.profile).id
                    created = True
                entry = self.gallery.enroll(identity_id, samples)
            except Exception as e:
                logger.error(f'Enrollment of {identity_id or self.profile.name} failed: {e}')
                if created:
                    self._remove_created_identity(identity_id)
                _log_activity(
                    self.store,
                    'error',
                    f'Enrollment failed: {e}',
                    {'identityId': identity_id, 'error': type(e).__name__},
                )
                self._reset()
                raise

            _log_activity(
                self.store,
                'info',
                f'Enrollment completed for identity {identity_id}',
                {'identityId': identity_id, 'samples': len(samples)},
            )
            self._reset()
            return entry

    def _remove_created_identity(self, identity_id: IdentityId) -> None:
        try:
            self.store.remove_identity(identity_id)
        except FaceAttendanceError as e:
            logger.error(f'❌ Could not remove identity {identity_id} after failed enrollment: {e}')

    def cancel(self) -> None:
        with self._exclusive():
            self._reset()

    def _reset(self) -> None:
        self.policy.cancel()
        self.identity_id = None
        self.profile = None

    def progress(self) -> Dict[str, Any]:
        return {
            'state': self.policy.state.value,
            'identityId': self.identity_id,
            'name': self.profile.name if self.profile else None,
            'email': self.profile.email if self.profile else None,
            'sampleCount': self.policy.sample_count,
            'required': self.policy.required_samples,
            'remaining': self.policy.remaining,
            'averageQuality': self.policy.average_quality,
            'ready': self.policy.is_ready,
        }
