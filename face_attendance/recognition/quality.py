"""
Face quality assessment module.

Evaluates face quality based on:
- Size (box area relative to a reference area)
- Landmarks (presence as a proxy for pose/alignment)
- Expression (neutral or slightly positive faces match more reliably)
- Detector confidence
"""

import math
from dataclasses import dataclass, field
from typing import List

from ..config import Config
from ..logging_config import get_logger
from ..models import Detection, clamp_unit

logger = get_logger(__name__)

SIZE_WEIGHT = 0.3
LANDMARK_WEIGHT = 0.2
EXPRESSION_WEIGHT = 0.2
CONFIDENCE_WEIGHT = 0.3

LANDMARKS_PRESENT_QUALITY = 0.8
LANDMARKS_MISSING_QUALITY = 0.3
DEFAULT_EXPRESSION_QUALITY = 0.5
HAPPY_EXPRESSION_FACTOR = 0.8

FALLBACK_QUALITY = 0.5

ISSUE_LOW_CONFIDENCE = 'low detection confidence'
ISSUE_FACE_TOO_SMALL = 'face too small'
ISSUE_NO_LANDMARKS = 'landmarks not detected'
ISSUE_EXPRESSION = 'non-neutral expression requested'
ISSUE_LOW_QUALITY = 'overall quality too low'


@dataclass(frozen=True)
class QualityAssessment:
    is_valid: bool
    quality: float
    issues: List[str] = field(default_factory=list)


def _finite(value: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f'non-finite value {value}')
    return value


def compute_face_quality(detection: Detection, config: Config) -> float:
    """
    Compute a single quality score in [0, 1] for a detection.

    Weighted sum of size (0.3), landmark (0.2), expression (0.2) and
    detector confidence (0.3) signals, each normalized to [0, 1].

    Args:
        detection: Face detection from the external detector
        config: Service configuration

    Returns:
        Quality score, or 0.5 if the detection cannot be scored
    """
    try:
        box = detection.box
        face_area = _finite(box.width) * _finite(box.height)
        size_quality = clamp_unit(min(face_area / config.reference_face_area, 1.0))

        landmark_quality = (
            LANDMARKS_PRESENT_QUALITY if detection.has_landmarks else LANDMARKS_MISSING_QUALITY
        )

        expression_quality = DEFAULT_EXPRESSION_QUALITY
        expressions = detection.expressions
        if expressions:
            neutral = _finite(expressions.get('neutral') or 0.0)
            happy = _finite(expressions.get('happy') or 0.0)
            expression_quality = clamp_unit(max(neutral, happy * HAPPY_EXPRESSION_FACTOR))

        confidence_quality = clamp_unit(_finite(detection.score))

        overall = (
            size_quality * SIZE_WEIGHT
            + landmark_quality * LANDMARK_WEIGHT
            + expression_quality * EXPRESSION_WEIGHT
            + confidence_quality * CONFIDENCE_WEIGHT
        )
        return clamp_unit(overall)

    except Exception as e:
        logger.warning(f'Quality calculation failed, using default: {e}')
        return FALLBACK_QUALITY


def assess_enrollment_quality(detection: Detection, config: Config) -> QualityAssessment:
    """
    Check if a detection is good enough to become an enrollment sample.

    Criteria (only reported when overall quality is below threshold):
    - Detector score >= min_enrollment_detection_score
    - Box width and height >= min_enrollment_face_size
    - Landmarks present
    - Neutral expression score >= min_neutral_expression

    Args:
        detection: Face detection from the external detector
        config: Service configuration

    Returns:
        QualityAssessment with the score and any issues found
    """
    quality = compute_face_quality(detection, config)

    if quality >= config.enrollment_quality_threshold:
        return QualityAssessment(is_valid=True, quality=quality)

    issues: List[str] = []

    if detection.score is None or detection.score < config.min_enrollment_detection_score:
        issues.append(ISSUE_LOW_CONFIDENCE)

    box = detection.box
    min_size = config.min_enrollment_face_size
    if box is None or box.width < min_size or box.height < min_size:
        issues.append(ISSUE_FACE_TOO_SMALL)

    if not detection.has_landmarks:
        issues.append(ISSUE_NO_LANDMARKS)

    if detection.expressions:
        neutral = detection.expressions.get('neutral') or 0.0
        if neutral < config.min_neutral_expression:
            issues.append(ISSUE_EXPRESSION)

    if not issues:
        issues.append(ISSUE_LOW_QUALITY)

    return QualityAssessment(is_valid=False, quality=quality, issues=issues)
