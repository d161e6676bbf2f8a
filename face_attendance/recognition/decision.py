"""
Recognition decision module.

Turns the match results of one captured frame into a single
accept/reject attendance decision.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..models import Decision, RecognitionCandidate, clamp_unit

REASON_NO_CANDIDATES = 'no faces could be processed'
REASON_NOT_RECOGNIZED = 'face not recognized'


class ConfidencePolicy(ABC):
    """Adjusts candidate confidence per attempt before the threshold check."""

    @abstractmethod
    def adjust(self, confidence: float, attempt: int) -> float:
        """Return the confidence to compare against the recognition threshold."""


class IdealConfidence(ConfidencePolicy):
    """Production policy: confidence is used as computed."""

    def adjust(self, confidence: float, attempt: int) -> float:
        return confidence


class DemoDegradedConfidence(ConfidencePolicy):
    """
    Demo policy: every retry after the first costs `penalty` confidence.

    Only for simulated/demo sessions and tests.
    """

    def __init__(self, penalty: float = 0.1):
        self.penalty = penalty

    def adjust(self, confidence: float, attempt: int) -> float:
        return clamp_unit(confidence - self.penalty * max(attempt - 1, 0))


def decide(
    candidates: Sequence[RecognitionCandidate],
    recognition_threshold: float,
    policy: Optional[ConfidencePolicy] = None,
    attempt: int = 1
) -> Decision:
    """
    Decide whether the frame's candidates record attendance.

    A candidate is eligible when it matched an identity and its confidence
    is at least recognition_threshold. The most confident eligible
    candidate wins; ties go to the first in order.

    Args:
        candidates: One candidate per detected face
        recognition_threshold: Minimum confidence in [0, 1]
        policy: Confidence policy (defaults to IdealConfidence)
        attempt: 1-based attempt number within the retry cycle

    Returns:
        Accept decision for the winner, or a Reject decision
    """
    if not candidates:
        return Decision.reject(REASON_NO_CANDIDATES)

    policy = policy or IdealConfidence()

    best: Optional[RecognitionCandidate] = None
    best_confidence = -1.0

    for candidate in candidates:
        if not candidate.is_match:
            continue
        confidence = policy.adjust(candidate.confidence, attempt)
        if confidence < recognition_threshold:
            continue
        if confidence > best_confidence:
            best, best_confidence = candidate, confidence

    if best is None:
        return Decision.reject(REASON_NOT_RECOGNIZED)

    return Decision.accept(best.identity_id, best_confidence, best.quality)
