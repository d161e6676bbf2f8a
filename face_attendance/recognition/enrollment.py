"""
Enrollment policy module.

Decides whether a captured sample is acceptable for enrollment and
collects accepted samples until the session can be completed.

States: IDLE -> COLLECTING -> COMPLETE, COLLECTING -> IDLE on cancel.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from ..config import Config
from ..errors import InsufficientSamples, InvalidStateError
from ..logging_config import get_logger
from ..models import Detection, EnrollmentSample, as_descriptor
from .quality import assess_enrollment_quality

logger = get_logger(__name__)

ISSUE_NO_FACE = 'no face detected'
ISSUE_MULTIPLE_FACES = 'multiple faces detected'
ISSUE_QUOTA_REACHED = 'sample quota reached'


class EnrollmentState(Enum):
    IDLE = 'idle'
    COLLECTING = 'collecting'
    COMPLETE = 'complete'


@dataclass(frozen=True)
class SubmissionResult:
    accepted: bool
    quality: float
    sample_count: int
    issues: List[str] = field(default_factory=list)


class EnrollmentPolicy:
    """
    Enrollment session state machine.

    Persisting the finalized samples is up to the caller.
    """

    def __init__(self, config: Config):
        """
        Initialize enrollment policy.

        Args:
            config: Service configuration
        """
        self.config = config
        self.required_samples = config.required_enrollment_samples
        self._state = EnrollmentState.IDLE
        self._samples: List[EnrollmentSample] = []

    @property
    def state(self) -> EnrollmentState:
        return self._state

    @property
    def samples(self) -> Tuple[EnrollmentSample, ...]:
        return tuple(self._samples)

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def remaining(self) -> int:
        return max(self.required_samples - len(self._samples), 0)

    @property
    def is_ready(self) -> bool:
        return (
            self._state is EnrollmentState.COLLECTING
            and len(self._samples) >= self.required_samples
        )

    @property
    def average_quality(self) -> float:
        if not self._samples:
            return 0.0
        return sum(s.quality for s in self._samples) / len(self._samples)

    def begin(self) -> None:
        """Start collecting samples for a new enrollment."""
        if self._state is EnrollmentState.COLLECTING:
            raise InvalidStateError('Enrollment already in progress')

        self._samples = []
        self._state = EnrollmentState.COLLECTING
        logger.debug('Enrollment started')

    def submit(
        self,
        detections: Sequence[Detection],
        timestamp: Optional[float] = None
    ) -> SubmissionResult:
        """
        Submit the detections of one captured frame as a sample.

        Args:
            detections: Faces detected in the captured frame
            timestamp: Capture time (defaults to now)

        Returns:
            SubmissionResult; rejected submissions leave the state unchanged

        Raises:
            InvalidStateError: If enrollment is not collecting
            ValidationError: If the descriptor is malformed
        """
        if self._state is not EnrollmentState.COLLECTING:
            raise InvalidStateError(f'Cannot submit samples while {self._state.value}')

        if len(self._samples) >= self.required_samples:
            return self._reject(0.0, [ISSUE_QUOTA_REACHED])

        if len(detections) == 0:
            return self._reject(0.0, [ISSUE_NO_FACE])

        if len(detections) > 1:
            return self._reject(0.0, [ISSUE_MULTIPLE_FACES])

        detection = detections[0]
        descriptor = as_descriptor(detection.descriptor, self.config.descriptor_length)

        assessment = assess_enrollment_quality(detection, self.config)
        if not assessment.is_valid:
            return self._reject(assessment.quality, assessment.issues)

        self._samples.append(EnrollmentSample(
            descriptor=descriptor,
            quality=assessment.quality,
            timestamp=time.time() if timestamp is None else timestamp,
        ))

        logger.info(
            f'Sample {len(self._samples)}/{self.required_samples} accepted '
            f'(quality: {assessment.quality:.2f})'
        )

        return SubmissionResult(
            accepted=True,
            quality=assessment.quality,
            sample_count=len(self._samples),
        )

    def complete(self) -> Tuple[EnrollmentSample, ...]:
        """
        Finalize the enrollment.

        Returns:
            Accepted samples in capture order

        Raises:
            InvalidStateError: If enrollment is not collecting
            InsufficientSamples: If fewer than the required samples were accepted
        """
        if self._state is not EnrollmentState.COLLECTING:
            raise InvalidStateError(f'Cannot complete enrollment while {self._state.value}')

        if len(self._samples) < self.required_samples:
            raise InsufficientSamples(self.required_samples - len(self._samples))

        self._state = EnrollmentState.COMPLETE
        return tuple(self._samples)

    def cancel(self) -> None:
        """Discard samples and return to idle."""
        if self._samples:
            logger.info(f'Enrollment cancelled, {len(self._samples)} sample(s) discarded')
        self._samples = []
        self._state = EnrollmentState.IDLE

    def _reject(self, quality: float, issues: List[str]) -> SubmissionResult:
        logger.info(f"Sample rejected: {', '.join(issues)}")
        return SubmissionResult(
            accepted=False,
            quality=quality,
            sample_count=len(self._samples),
            issues=list(issues),
        )
