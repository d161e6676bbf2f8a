"""
In-memory gallery, identity and attendance store.

Used for development, demos and tests. Mirrors the operations of the
backend store: identity profiles, descriptor CRUD per identity,
append-only attendance with per-identity statistics, an activity log and
a full data export.
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from . import __version__
from .errors import Conflict, NotFound, ValidationError
from .logging_config import get_logger
from .models import (
    ACTIVITY_LEVELS,
    PROFILE_FIELDS,
    ActivityEntry,
    AttendanceRecord,
    Identity,
    IdentityId,
    IdentityProfile,
    as_descriptor,
    clamp_unit,
)

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """Identity, gallery, attendance and activity stores kept in process memory."""

    def __init__(self, descriptor_length: int = 128):
        self.descriptor_length = descriptor_length
        self._lock = threading.RLock()
        self._identities: Dict[IdentityId, Identity] = {}
        # identity id -> list of (descriptor id, descriptor, metadata)
        self._descriptors: Dict[IdentityId, List[Tuple[int, np.ndarray, Dict[str, Any]]]] = {}
        self._attendance: List[AttendanceRecord] = []
        self._activity: List[ActivityEntry] = []
        self._next_identity_id = 1
        self._next_descriptor_id = 1
        self._next_attendance_id = 1
        self._next_activity_id = 1

    # Identities

    def add_identity(self, profile: IdentityProfile) -> Identity:
        """
        Create an identity profile.

        Raises:
            ValidationError: If the profile is malformed
            Conflict: If the email is already registered
        """
        profile = profile.normalized()
        now = _utc_now().isoformat()

        with self._lock:
            if self._find_by_email(profile.email) is not None:
                raise Conflict('Email already exists in the system')

            identity = Identity(
                id=IdentityId(self._next_identity_id),
                name=profile.name,
                email=profile.email,
                department=profile.department,
                role=profile.role,
                created_at=now,
                updated_at=now,
            )
            self._next_identity_id += 1
            self._identities[identity.id] = identity

        self.log_activity('info', f'Identity added: {identity.name}', {'identityId': identity.id})
        return identity

    def get_identity(self, identity_id: IdentityId) -> Optional[Identity]:
        with self._lock:
            return self._identities.get(identity_id)

    def list_identities(self) -> List[Identity]:
        with self._lock:
            return list(self._identities.values())

    def find_identity_by_email(self, email: str) -> Optional[Identity]:
        with self._lock:
            return self._find_by_email(str(email).strip().lower())

    def update_identity(self, identity_id: IdentityId, updates: Dict[str, Any]) -> Identity:
        """
        Change profile fields of an identity.

        Raises:
            NotFound: If the identity does not exist
            ValidationError: If an unknown field or a malformed value is given
            Conflict: If the new email belongs to another identity
        """
        unknown = set(updates) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        with self._lock:
            current = self._identities.get(identity_id)
            if current is None:
                raise NotFound(f'Identity {identity_id} not found')

            profile = replace(current.profile, **updates).normalized()
            owner = self._find_by_email(profile.email)
            if owner is not None and owner.id != identity_id:
                raise Conflict('Email already exists in the system')

            updated = replace(
                current,
                name=profile.name,
                email=profile.email,
                department=profile.department,
                role=profile.role,
                updated_at=_utc_now().isoformat(),
            )
            self._identities[identity_id] = updated

        self.log_activity('info', f'Identity updated: {updated.name}', {'identityId': identity_id})
        return updated

    def _find_by_email(self, email: str) -> Optional[Identity]:
        for identity in self._identities.values():
            if identity.email == email:
                return identity
        return None

    # Gallery store

    def get_all_identity_descriptors(self) -> List[Tuple[IdentityId, List[np.ndarray]]]:
        """Return (identity id, descriptors) for every identity, in enrollment order."""
        with self._lock:
            return [
                (identity_id, [descriptor for _, descriptor, _ in rows])
                for identity_id, rows in self._descriptors.items()
            ]

    def add_descriptor(
        self,
        identity_id: IdentityId,
        descriptor: Any,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        descriptor = as_descriptor(descriptor, self.descriptor_length)
        with self._lock:
            descriptor_id = self._next_descriptor_id
            self._next_descriptor_id += 1
            self._descriptors.setdefault(identity_id, []).append(
                (descriptor_id, descriptor, dict(metadata or {}))
            )
        logger.debug(f'Face descriptor {descriptor_id} added for identity {identity_id}')
        return descriptor_id

    def remove_descriptor(self, descriptor_id: int) -> bool:
        with self._lock:
            for identity_id, rows in self._descriptors.items():
                kept = [row for row in rows if row[0] != descriptor_id]
                if len(kept) == len(rows):
                    continue
                if kept:
                    self._descriptors[identity_id] = kept
                else:
                    del self._descriptors[identity_id]
                return True
        return False

    def get_descriptor_metadata(self, identity_id: IdentityId) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(meta) for _, _, meta in self._descriptors.get(identity_id, [])]

    def remove_identity(self, identity_id: IdentityId) -> bool:
        """Drop the profile and all descriptors of an identity. Attendance history is kept."""
        with self._lock:
            identity = self._identities.pop(identity_id, None)
            removed = self._descriptors.pop(identity_id, None)
        if identity is None and removed is None:
            return False

        name = identity.name if identity is not None else str(identity_id)
        self.log_activity('info', f'Identity deleted: {name}', {'identityId': identity_id})
        return True

    # Attendance store

    def record_attendance(
        self,
        identity_id: IdentityId,
        confidence: float,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """Append an attendance record and update the identity's statistics."""
        now = _utc_now()
        with self._lock:
            record = AttendanceRecord(
                id=self._next_attendance_id,
                identity_id=identity_id,
                confidence=clamp_unit(confidence),
                timestamp=now.isoformat(),
                date=now.date().isoformat(),
                metadata=dict(metadata or {}),
            )
            self._next_attendance_id += 1
            self._attendance.append(record)

            identity = self._identities.get(identity_id)
            if identity is not None:
                self._identities[identity_id] = replace(
                    identity,
                    total_attendance=identity.total_attendance + 1,
                    last_seen=record.timestamp,
                    updated_at=record.timestamp,
                )

        self.log_activity(
            'info',
            f'Attendance recorded for identity {identity_id}',
            {'attendanceId': record.id, 'confidence': record.confidence},
        )
        return record.id

    def get_attendance_records(
        self,
        identity_id: Optional[IdentityId] = None,
        date: Optional[str] = None
    ) -> List[AttendanceRecord]:
        """Records matching the filters, newest first."""
        with self._lock:
            records = list(self._attendance)

        if identity_id is not None:
            records = [r for r in records if r.identity_id == identity_id]
        if date is not None:
            records = [r for r in records if r.date == date]

        return sorted(records, key=lambda r: (r.timestamp, r.id), reverse=True)

    def get_today_attendance(self) -> List[AttendanceRecord]:
        return self.get_attendance_records(date=_utc_now().date().isoformat())

    # Activity log

    def log_activity(
        self,
        level: str,
        message: str,
        data: Optional[Dict[str, Any]] = None
    ) -> ActivityEntry:
        if level not in ACTIVITY_LEVELS:
            raise ValidationError(f'Unknown activity level: {level}')

        with self._lock:
            entry = ActivityEntry(
                id=self._next_activity_id,
                level=level,
                message=message,
                timestamp=_utc_now().isoformat(),
                data=dict(data or {}),
            )
            self._next_activity_id += 1
            self._activity.append(entry)
        return entry

    def get_activity_log(
        self,
        level: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[ActivityEntry]:
        """Activity entries, newest first."""
        with self._lock:
            entries = list(reversed(self._activity))
        if level is not None:
            entries = [e for e in entries if e.level == level]
        if limit is not None:
            entries = entries[:limit]
        return entries

    def export_data(self) -> Dict[str, Any]:
        """Snapshot of identities, attendance and activity for backup."""
        with self._lock:
            identities = [i.to_dict() for i in self._identities.values()]
            attendance = [r.to_dict() for r in self._attendance]
            activity = [e.to_dict() for e in self._activity]
        return {
            'exportDate': _utc_now().isoformat(),
            'version': __version__,
            'data': {
                'identities': identities,
                'attendance': attendance,
                'logs': activity,
            },
        }
