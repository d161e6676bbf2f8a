from unittest.mock import MagicMock

import pytest
import requests

from face_attendance.backend import BackendStore
from face_attendance.errors import Conflict, NotFound, ResourceError, ValidationError
from face_attendance.models import IdentityId, IdentityProfile

BASE = 'http://backend:3000'


def _response(payload=None, status=200):
    response = MagicMock()
    response.ok = status < 400
    response.status_code = status
    response.text = ''
    response.content = b'' if payload is None else b'{}'
    response.json.return_value = payload
    return response


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def backend(make_config, http):
    return BackendStore(make_config(backend_url=BASE + '/'), session=http, read_attempts=1)


def test_get_all_identity_descriptors(backend, http, descriptor):
    http.request.return_value = _response([
        {'identityId': 1, 'descriptors': [descriptor(0).tolist(), descriptor(1).tolist()]},
        {'identityId': '2', 'descriptors': []},
    ])

    rows = backend.get_all_identity_descriptors()

    http.request.assert_called_once_with(
        'GET', f'{BASE}/api/identities/descriptors', timeout=10
    )
    assert [identity for identity, _ in rows] == [1, 2]
    assert len(rows[0][1]) == 2
    assert rows[1][1] == []


def test_invalid_rows_are_skipped(backend, http, descriptor):
    http.request.return_value = _response([
        {'identityId': 'abc', 'descriptors': [descriptor(0).tolist()]},
        {'identityId': 2, 'descriptors': [[0.1, 0.2]]},
        {'identityId': 3, 'descriptors': [descriptor(3).tolist()]},
    ])

    rows = backend.get_all_identity_descriptors()

    assert [identity for identity, _ in rows] == [3]


def test_add_descriptor_posts_list(backend, http, descriptor):
    http.request.return_value = _response({'id': 17})

    descriptor_id = backend.add_descriptor(IdentityId(5), descriptor(2), {'quality': 0.9})

    assert descriptor_id == 17
    method, url = http.request.call_args.args
    assert (method, url) == ('POST', f'{BASE}/api/identities/5/descriptors')
    body = http.request.call_args.kwargs['json']
    assert len(body['descriptor']) == 128
    assert body['descriptor'][2] == 1.0
    assert body['metadata'] == {'quality': 0.9}


def test_add_descriptor_rejects_bad_length_without_request(backend, http, descriptor):
    with pytest.raises(ValidationError):
        backend.add_descriptor(IdentityId(5), descriptor(length=10))
    http.request.assert_not_called()


def test_record_attendance(backend, http):
    http.request.return_value = _response({'id': 99})

    record_id = backend.record_attendance(IdentityId(4), 0.82, {'attempt': 2})

    assert record_id == 99
    http.request.assert_called_once_with(
        'POST',
        f'{BASE}/api/attendance',
        timeout=10,
        json={'identityId': 4, 'confidence': 0.82, 'cameraId': 0, 'metadata': {'attempt': 2}},
    )


def test_record_attendance_with_stream_camera(make_config, http):
    backend = BackendStore(
        make_config(backend_url=BASE, camera_id='rtsp://cam/1'), session=http, read_attempts=1
    )
    http.request.return_value = _response({'id': 1})

    backend.record_attendance(IdentityId(4), 0.82)

    assert http.request.call_args.kwargs['json']['cameraId'] is None


def test_remove_identity(backend, http):
    http.request.return_value = _response()

    assert backend.remove_identity(IdentityId(8)) is True
    http.request.assert_called_once_with('DELETE', f'{BASE}/api/identities/8', timeout=10)


def test_get_attendance_records(backend, http):
    http.request.return_value = _response([
        {'id': 3, 'identityId': 4, 'confidence': 0.9, 'timestamp': '2024-05-01T08:00:00Z'},
    ])

    records = backend.get_attendance_records(identity_id=IdentityId(4), date='2024-05-01')

    assert http.request.call_args.kwargs['params'] == {'identityId': 4, 'date': '2024-05-01'}
    assert records[0].id == 3
    assert records[0].identity_id == 4
    assert records[0].date == '2024-05-01'


@pytest.mark.parametrize('error', [
    requests.exceptions.Timeout(),
    requests.exceptions.ConnectionError(),
    requests.exceptions.RequestException('boom'),
])
def test_transport_errors_become_resource_errors(backend, http, error):
    http.request.side_effect = error

    with pytest.raises(ResourceError):
        backend.record_attendance(IdentityId(1), 0.9)


def test_error_status_becomes_resource_error(backend, http):
    http.request.return_value = _response({'error': 'nope'}, status=500)

    with pytest.raises(ResourceError):
        backend.get_all_identity_descriptors()


def test_reads_are_retried(make_config, http, monkeypatch):
    monkeypatch.setattr('face_attendance.utils.timing.time.sleep', lambda seconds: None)
    backend = BackendStore(make_config(backend_url=BASE), session=http, read_attempts=3)
    http.request.side_effect = [
        requests.exceptions.ConnectionError(),
        _response([]),
    ]

    assert backend.get_all_identity_descriptors() == []
    assert http.request.call_count == 2


IDENTITY = {
    'id': 4,
    'name': 'Ada Lovelace',
    'email': 'ada@example.com',
    'department': 'R&D',
    'role': 'Engineer',
    'createdAt': '2024-05-01T08:00:00Z',
    'totalAttendance': 12,
    'lastSeen': '2024-05-02T08:00:00Z',
}


def test_add_identity(backend, http):
    http.request.return_value = _response(IDENTITY, status=201)

    identity = backend.add_identity(
        IdentityProfile(name='Ada Lovelace', email='ADA@example.com', department='R&D', role='Engineer')
    )

    http.request.assert_called_once_with(
        'POST',
        f'{BASE}/api/identities',
        timeout=10,
        json={'name': 'Ada Lovelace', 'email': 'ada@example.com', 'department': 'R&D', 'role': 'Engineer'},
    )
    assert identity.id == 4
    assert identity.total_attendance == 12
    assert identity.updated_at == IDENTITY['createdAt']


def test_duplicate_email_maps_to_conflict(backend, http):
    http.request.return_value = _response({'message': 'Email already exists in the system'}, status=409)

    with pytest.raises(Conflict, match='Email already exists'):
        backend.add_identity(IdentityProfile(name='Ada', email='ada@example.com'))


def test_missing_identity(backend, http):
    http.request.return_value = _response({'message': 'User not found'}, status=404)

    assert backend.get_identity(IdentityId(8)) is None
    assert backend.remove_identity(IdentityId(8)) is False
    with pytest.raises(NotFound, match='User not found'):
        backend.update_identity(IdentityId(8), {'name': 'Nobody'})


def test_find_identity_by_email(backend, http):
    http.request.return_value = _response([IDENTITY])

    assert backend.find_identity_by_email(' Ada@Example.com').id == 4
    assert backend.find_identity_by_email('grace@example.com') is None


def test_malformed_identity_is_a_validation_error(backend, http):
    http.request.return_value = _response({'id': 4})

    with pytest.raises(ValidationError):
        backend.get_identity(IdentityId(4))


def test_remove_descriptor(backend, http):
    http.request.return_value = _response()

    assert backend.remove_descriptor(17) is True
    http.request.assert_called_once_with('DELETE', f'{BASE}/api/descriptors/17', timeout=10)


def test_activity_log(backend, http):
    entry = {'id': 1, 'level': 'error', 'message': 'Enrollment failed', 'timestamp': '2024-05-01T08:00:00Z'}
    http.request.return_value = _response(entry)

    logged = backend.log_activity('error', 'Enrollment failed', {'identityId': 4})

    assert http.request.call_args.kwargs['json'] == {
        'level': 'error', 'message': 'Enrollment failed', 'data': {'identityId': 4},
    }
    assert logged.level == 'error'

    http.request.return_value = _response([entry])

    entries = backend.get_activity_log(level='error', limit=20)

    assert http.request.call_args.kwargs['params'] == {'level': 'error', 'limit': 20}
    assert [e.message for e in entries] == ['Enrollment failed']


def test_export_data(backend, http):
    http.request.return_value = _response({'version': '1.0.0', 'data': {'identities': []}})

    assert backend.export_data()['data'] == {'identities': []}
    http.request.assert_called_once_with('GET', f'{BASE}/api/export', timeout=10)
