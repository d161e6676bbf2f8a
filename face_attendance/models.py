"""
Data model for the attendance pipeline.

Descriptors are read-only float32 numpy vectors; everything else is a
small dataclass passed between the recognition stages.
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, NewType, Optional, Tuple

import numpy as np

from .errors import ValidationError

IdentityId = NewType('IdentityId', int)

DEFAULT_DESCRIPTOR_LENGTH = 128


def clamp_unit(value: float) -> float:
    """Clamp a score to [0, 1]."""
    return min(max(float(value), 0.0), 1.0)


def as_descriptor(values: Any, length: int = DEFAULT_DESCRIPTOR_LENGTH) -> np.ndarray:
    """
    Convert values to an immutable face descriptor.

    Args:
        values: Sequence or array of numbers
        length: Required descriptor length

    Returns:
        Read-only 1-D float32 array

    Raises:
        ValidationError: If shape, length or values are invalid
    """
    if values is None:
        raise ValidationError('Face descriptor is missing')

    try:
        descriptor = np.array(values, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise ValidationError(f'Face descriptor is not numeric: {e}') from e

    if descriptor.ndim != 1 or descriptor.shape[0] != length:
        raise ValidationError(
            f'Face descriptor must be a vector of length {length}, got shape {descriptor.shape}'
        )
    if not np.all(np.isfinite(descriptor)):
        raise ValidationError('Face descriptor contains non-finite values')

    descriptor.setflags(write=False)
    return descriptor


def as_identity_id(value: Any) -> IdentityId:
    """Convert a raw identity label to a typed identity id."""
    if isinstance(value, bool):
        raise ValidationError(f'Invalid identity id: {value!r}')
    try:
        return IdentityId(int(value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f'Invalid identity id: {value!r}') from e


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> 'BoundingBox':
        """Build a box from [x1, y1, x2, y2] corners."""
        return cls(x=float(x1), y=float(y1), width=float(x2 - x1), height=float(y2 - y1))


@dataclass(frozen=True, eq=False)
class Detection:
    """
    One face found in a frame by the external detector.

    Every field except the descriptor may be missing; quality scoring
    falls back to a neutral value when it cannot use them.
    """

    descriptor: np.ndarray
    box: Optional[BoundingBox] = None
    score: Optional[float] = None
    has_landmarks: bool = False
    expressions: Optional[Mapping[str, float]] = None


@dataclass(frozen=True, eq=False)
class EnrollmentSample:
    descriptor: np.ndarray
    quality: float
    timestamp: float


@dataclass(frozen=True, eq=False)
class GalleryEntry:
    """All descriptors enrolled for one identity, in enrollment order."""

    identity_id: IdentityId
    descriptors: Tuple[np.ndarray, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, 'descriptors', tuple(self.descriptors))


@dataclass(frozen=True)
class MatchResult:
    """
    Best gallery match for one descriptor.

    identity_id is None when the best candidate is too far away
    ("unknown"); distance and confidence are still reported.
    """

    identity_id: Optional[IdentityId]
    distance: float
    confidence: float

    @property
    def is_match(self) -> bool:
        return self.identity_id is not None

    @classmethod
    def unknown(cls, distance: float = math.inf) -> 'MatchResult':
        confidence = 0.0 if math.isinf(distance) else clamp_unit(1.0 - distance)
        return cls(identity_id=None, distance=distance, confidence=confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'identityId': self.identity_id,
            'distance': None if math.isinf(self.distance) else self.distance,
            'confidence': self.confidence,
            'isMatch': self.is_match,
        }


@dataclass(frozen=True)
class RecognitionCandidate:
    """Match result of one detection, with the quality of that detection."""

    match: MatchResult
    quality: float
    detection_index: int = 0

    @property
    def identity_id(self) -> Optional[IdentityId]:
        return self.match.identity_id

    @property
    def confidence(self) -> float:
        return self.match.confidence

    @property
    def is_match(self) -> bool:
        return self.match.is_match


@dataclass(frozen=True)
class Decision:
    accepted: bool
    identity_id: Optional[IdentityId] = None
    confidence: float = 0.0
    quality: float = 0.0
    reason: str = ''

    @classmethod
    def accept(cls, identity_id: IdentityId, confidence: float, quality: float) -> 'Decision':
        return cls(
            accepted=True,
            identity_id=identity_id,
            confidence=clamp_unit(confidence),
            quality=clamp_unit(quality),
        )

    @classmethod
    def reject(cls, reason: str) -> 'Decision':
        return cls(accepted=False, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accepted': self.accepted,
            'identityId': self.identity_id,
            'confidence': self.confidence,
            'quality': self.quality,
            'reason': self.reason,
        }


class AttemptOutcome(Enum):
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    EXHAUSTED = 'exhausted'


@dataclass(frozen=True)
class RecognitionAttempt:
    """Result of one attendance capture action."""

    attempt_number: int
    detection_count: int
    candidates: Tuple[RecognitionCandidate, ...]
    quality: float
    decision: Decision
    outcome: AttemptOutcome
    timestamp: float
    attempts_remaining: int = 0
    record_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'attempt': self.attempt_number,
            'detectionCount': self.detection_count,
            'quality': self.quality,
            'decision': self.decision.to_dict(),
            'outcome': self.outcome.value,
            'attemptsRemaining': self.attempts_remaining,
            'recordId': self.record_id,
            'timestamp': self.timestamp,
            'candidates': [
                {**c.match.to_dict(), 'quality': c.quality, 'detectionIndex': c.detection_index}
                for c in self.candidates
            ],
        }


@dataclass(frozen=True)
class AttendanceRecord:
    """Append-only attendance record."""

    id: int
    identity_id: IdentityId
    confidence: float
    timestamp: str
    date: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'identityId': self.identity_id,
            'confidence': self.confidence,
            'timestamp': self.timestamp,
            'date': self.date,
            'metadata': dict(self.metadata),
        }


_EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

PROFILE_FIELDS = ('name', 'email', 'department', 'role')


@dataclass(frozen=True)
class IdentityProfile:
    """Personal details collected when an identity is enrolled."""

    name: str
    email: str
    department: str = ''
    role: str = 'Employee'

    @classmethod
    def from_dict(cls, data: Any) -> 'IdentityProfile':
        if not isinstance(data, Mapping):
            raise ValidationError('Identity profile must be an object')
        return cls(
            name=data.get('name') or '',
            email=data.get('email') or '',
            department=data.get('department') or '',
            role=data.get('role') or 'Employee',
        ).normalized()

    def normalized(self) -> 'IdentityProfile':
        """
        Strip whitespace and lower-case the email.

        Raises:
            ValidationError: If the name is empty or the email malformed
        """
        name = str(self.name).strip()
        email = str(self.email).strip().lower()
        if not name:
            raise ValidationError('Identity name is required')
        if not _EMAIL_PATTERN.match(email):
            raise ValidationError(f'Invalid email address: {self.email!r}')
        return IdentityProfile(
            name=name,
            email=email,
            department=str(self.department).strip(),
            role=str(self.role).strip() or 'Employee',
        )


@dataclass(frozen=True)
class Identity:
    """Stored identity profile with its attendance statistics."""

    id: IdentityId
    name: str
    email: str
    department: str
    role: str
    created_at: str
    updated_at: str
    total_attendance: int = 0
    last_seen: Optional[str] = None

    @property
    def profile(self) -> IdentityProfile:
        return IdentityProfile(self.name, self.email, self.department, self.role)

    @classmethod
    def from_dict(cls, item: Mapping[str, Any]) -> 'Identity':
        try:
            return cls(
                id=as_identity_id(item['id']),
                name=item['name'],
                email=item['email'],
                department=item.get('department') or '',
                role=item.get('role') or 'Employee',
                created_at=item.get('createdAt') or '',
                updated_at=item.get('updatedAt') or item.get('createdAt') or '',
                total_attendance=int(item.get('totalAttendance') or 0),
                last_seen=item.get('lastSeen'),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f'Malformed identity record: {e}') from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'department': self.department,
            'role': self.role,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'totalAttendance': self.total_attendance,
            'lastSeen': self.last_seen,
        }


ACTIVITY_LEVELS = ('info', 'warning', 'error')


@dataclass(frozen=True)
class ActivityEntry:
    id: int
    level: str
    message: str
    timestamp: str
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, item: Mapping[str, Any]) -> 'ActivityEntry':
        return cls(
            id=int(item['id']),
            level=item['level'],
            message=item['message'],
            timestamp=item['timestamp'],
            data=dict(item.get('data') or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'level': self.level,
            'message': self.message,
            'timestamp': self.timestamp,
            'data': dict(self.data),
        }

