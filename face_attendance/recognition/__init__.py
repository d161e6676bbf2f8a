"""
Recognition algorithms package.

Contains modules for:
- Face quality assessment
- Enrollment sample policy
- Descriptor matching
- Attendance decision
- Cooldown and retry budget
"""

from .quality import compute_face_quality, assess_enrollment_quality, QualityAssessment
from .enrollment import EnrollmentPolicy, EnrollmentState, SubmissionResult
from .matching import FaceMatcher, Gallery
from .decision import ConfidencePolicy, IdealConfidence, DemoDegradedConfidence, decide
from .cooldown import AttendanceCooldown, CooldownVerdict
from .retry import RetryBudget

__all__ = [
    'compute_face_quality',
    'assess_enrollment_quality',
    'QualityAssessment',
    'EnrollmentPolicy',
    'EnrollmentState',
    'SubmissionResult',
    'FaceMatcher',
    'Gallery',
    'ConfidencePolicy',
    'IdealConfidence',
    'DemoDegradedConfidence',
    'decide',
    'AttendanceCooldown',
    'CooldownVerdict',
    'RetryBudget',
]
