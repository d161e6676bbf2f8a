"""
Backend store module.

Reads identities and enrolled descriptors from, and sends attendance
records and activity entries to, the backend API. The backend keeps the
per-identity attendance statistics and logs its own mutations.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import requests

from .config import Config
from .errors import Conflict, NotFound, ResourceError, ValidationError
from .logging_config import get_logger
from .models import (
    ActivityEntry,
    AttendanceRecord,
    Identity,
    IdentityId,
    IdentityProfile,
    as_descriptor,
    as_identity_id,
)
from .utils.timing import retry_with_backoff

logger = get_logger(__name__)


def _error_message(response: requests.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and body.get('message'):
        return str(body['message'])
    return default


class BackendStore:
    """
    Identity, gallery, attendance and activity stores backed by the HTTP API.

    Endpoints:
        GET    /api/identities
        POST   /api/identities
        GET    /api/identities/<id>
        PUT    /api/identities/<id>
        DELETE /api/identities/<id>
        GET    /api/identities/descriptors
        POST   /api/identities/<id>/descriptors
        DELETE /api/descriptors/<id>
        POST   /api/attendance
        GET    /api/attendance
        POST   /api/logs
        GET    /api/logs
        GET    /api/export
    """

    def __init__(
        self,
        config: Config,
        session: Optional[requests.Session] = None,
        timeout: float = 10,
        read_attempts: int = 3
    ):
        """
        Initialize backend store.

        Args:
            config: Service configuration
            session: Optional requests session (shared connection pool)
            timeout: Request timeout in seconds
            read_attempts: Attempts for idempotent reads
        """
        self.config = config
        self.base_url = config.backend_url.rstrip('/')
        self.http = session or requests.Session()
        self.timeout = timeout
        self.read_attempts = read_attempts

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f'{self.base_url}{path}'
        try:
            response = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.error(f'❌ Timeout calling {method} {url}')
            raise ResourceError(f'Backend timeout: {url}') from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f'❌ Connection error calling {method} {url}')
            raise ResourceError(f'Backend unreachable: {url}') from e
        except requests.exceptions.RequestException as e:
            logger.error(f'❌ Request to {url} failed: {e}')
            raise ResourceError(f'Backend request failed: {e}') from e

        if response.status_code == 404:
            raise NotFound(_error_message(response, f'{path} not found'))
        if response.status_code == 409:
            raise Conflict(_error_message(response, f'Conflict on {method} {path}'))
        if not response.ok:
            logger.error(f'❌ {method} {url} failed: {response.status_code} {response.text}')
            raise ResourceError(f'Backend returned {response.status_code} for {method} {path}')

        if not response.content:
            return None
        return response.json()

    def _get(self, path: str, **kwargs) -> Any:
        return retry_with_backoff(
            lambda: self._request('GET', path, **kwargs),
            max_attempts=self.read_attempts,
            retry_on=(ResourceError,),
        )

    # Identities

    def add_identity(self, profile: IdentityProfile) -> Identity:
        """
        Create an identity profile.

        Raises:
            Conflict: If the backend reports the email as taken
        """
        profile = profile.normalized()
        body = self._request('POST', '/api/identities', json={
            'name': profile.name,
            'email': profile.email,
            'department': profile.department,
            'role': profile.role,
        })
        identity = Identity.from_dict(body)
        logger.info(f'✅ Identity {identity.id} created for {identity.name}')
        return identity

    def get_identity(self, identity_id: IdentityId) -> Optional[Identity]:
        try:
            body = self._get(f'/api/identities/{int(identity_id)}')
        except NotFound:
            return None
        return Identity.from_dict(body)

    def list_identities(self) -> List[Identity]:
        payload = self._get('/api/identities') or []
        return [Identity.from_dict(item) for item in payload]

    def find_identity_by_email(self, email: str) -> Optional[Identity]:
        email = str(email).strip().lower()
        for identity in self.list_identities():
            if identity.email.lower() == email:
                return identity
        return None

    def update_identity(self, identity_id: IdentityId, updates: Dict[str, Any]) -> Identity:
        body = self._request('PUT', f'/api/identities/{int(identity_id)}', json=dict(updates))
        return Identity.from_dict(body)

    # Gallery store

    def get_all_identity_descriptors(self) -> List[Tuple[IdentityId, List[np.ndarray]]]:
        """
        Load every identity's descriptors.

        Rows with an invalid id or descriptor are skipped with a warning.

        Returns:
            List of (identity id, descriptors)
        """
        payload = self._get('/api/identities/descriptors') or []

        rows: List[Tuple[IdentityId, List[np.ndarray]]] = []
        for item in payload:
            try:
                identity_id = as_identity_id(item.get('identityId'))
                descriptors = [
                    as_descriptor(d, self.config.descriptor_length)
                    for d in item.get('descriptors') or []
                ]
            except ValidationError as e:
                logger.warning(f"Skipping identity {item.get('identityId')}: {e}")
                continue
            rows.append((identity_id, descriptors))

        logger.info(f'Fetched descriptors for {len(rows)} identities from backend')
        return rows

    def add_descriptor(
        self,
        identity_id: IdentityId,
        descriptor: Any,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        descriptor = as_descriptor(descriptor, self.config.descriptor_length)
        body = self._request(
            'POST',
            f'/api/identities/{int(identity_id)}/descriptors',
            json={'descriptor': descriptor.tolist(), 'metadata': metadata or {}},
        )
        return int(body['id'])

    def remove_descriptor(self, descriptor_id: int) -> bool:
        try:
            self._request('DELETE', f'/api/descriptors/{int(descriptor_id)}')
        except NotFound:
            return False
        return True

    def remove_identity(self, identity_id: IdentityId) -> bool:
        try:
            self._request('DELETE', f'/api/identities/{int(identity_id)}')
        except NotFound:
            return False
        return True

    # Attendance store

    def record_attendance(
        self,
        identity_id: IdentityId,
        confidence: float,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        payload = {
            'identityId': int(identity_id),
            'confidence': confidence,
            'cameraId': int(self.config.camera_id) if self.config.camera_id.isdigit() else None,
            'metadata': metadata or {},
        }

        logger.info(f'📤 Sending attendance for identity {identity_id}')
        body = self._request('POST', '/api/attendance', json=payload)
        logger.info('✅ Attendance sent successfully')
        return int(body['id'])

    def get_attendance_records(
        self,
        identity_id: Optional[IdentityId] = None,
        date: Optional[str] = None
    ) -> List[AttendanceRecord]:
        params: Dict[str, Any] = {}
        if identity_id is not None:
            params['identityId'] = int(identity_id)
        if date is not None:
            params['date'] = date

        payload = self._get('/api/attendance', params=params) or []
        return [
            AttendanceRecord(
                id=int(item['id']),
                identity_id=as_identity_id(item['identityId']),
                confidence=float(item['confidence']),
                timestamp=item['timestamp'],
                date=item.get('date') or item['timestamp'][:10],
                metadata=item.get('metadata') or {},
            )
            for item in payload
        ]

    def get_today_attendance(self) -> List[AttendanceRecord]:
        today = datetime.now(timezone.utc).date().isoformat()
        return self.get_attendance_records(date=today)

    # Activity log

    def log_activity(
        self,
        level: str,
        message: str,
        data: Optional[Dict[str, Any]] = None
    ) -> ActivityEntry:
        body = self._request('POST', '/api/logs', json={
            'level': level,
            'message': message,
            'data': data or {},
        })
        return ActivityEntry.from_dict(body)

    def get_activity_log(
        self,
        level: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[ActivityEntry]:
        params: Dict[str, Any] = {}
        if level is not None:
            params['level'] = level
        if limit is not None:
            params['limit'] = int(limit)

        payload = self._get('/api/logs', params=params) or []
        return [ActivityEntry.from_dict(item) for item in payload]

    def export_data(self) -> Dict[str, Any]:
        return self._get('/api/export') or {}
