import pytest

from conftest import FakeCamera, FakeDetector
from face_attendance.app import create_app
from face_attendance.models import IdentityId, IdentityProfile
from face_attendance.session import AttendanceSession, EnrollmentSession


@pytest.fixture
def detector():
    return FakeDetector()


@pytest.fixture
def session(config, detector, gallery_manager, store, clock):
    session = AttendanceSession(
        config,
        detector,
        gallery_manager,
        store,
        camera_factory=lambda cfg: FakeCamera(),
        clock=clock,
        session_id='kiosk',
    )
    session.start()
    yield session
    session.stop()


@pytest.fixture
def client(config, detector, gallery_manager, session):
    enrollment = EnrollmentSession(config, detector, gallery_manager)
    app = create_app(session, enrollment)
    app.config['TESTING'] = True
    return app.test_client()


def _enroll(gallery_manager, store, descriptor, identity_id=1):
    store.add_descriptor(IdentityId(identity_id), descriptor(0))
    gallery_manager.rebuild()


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'ok'
    assert body['active'] is True
    assert body['sessionId'] == 'kiosk'


def test_system_info(client):
    body = client.get('/system-info').get_json()

    assert body['sessionId'] == 'kiosk'
    assert body['thresholds']['recognition'] == 0.6
    assert body['cooldown']['durationMs'] == 3000


def test_capture_accepts_enrolled_face(
    client, detector, gallery_manager, store, make_detection, descriptor
):
    _enroll(gallery_manager, store, descriptor)
    detector.results = [[make_detection(descriptor=descriptor(0))]]

    response = client.post('/attendance/capture')

    assert response.status_code == 200
    body = response.get_json()
    assert body['outcome'] == 'accepted'
    assert body['decision']['identityId'] == 1
    assert body['recordId'] is not None

    today = client.get('/attendance/today').get_json()
    assert [r['identityId'] for r in today] == [1]


def test_capture_during_cooldown_returns_429(
    client, detector, gallery_manager, store, make_detection, descriptor
):
    _enroll(gallery_manager, store, descriptor)
    detector.results = [[make_detection(descriptor=descriptor(0))]]
    client.post('/attendance/capture')

    response = client.post('/attendance/capture')

    assert response.status_code == 429
    body = response.get_json()
    assert body['error'] == 'CooldownActive'
    assert body['remainingSeconds'] == 3


def test_capture_without_face_returns_422(client):
    response = client.post('/attendance/capture')

    assert response.status_code == 422
    assert response.get_json()['error'] == 'NoFaceDetected'


def test_unknown_face_is_rejected(client, detector, make_detection, descriptor):
    detector.results = [[make_detection(descriptor=descriptor(0))]]

    body = client.post('/attendance/capture').get_json()

    assert body['outcome'] == 'rejected'
    assert body['decision']['accepted'] is False
    assert body['candidates'][0]['distance'] is None


def test_detector_fault_returns_500(client, detector):
    detector.error = RuntimeError('model crashed')

    response = client.post('/attendance/capture')

    assert response.status_code == 500
    assert response.get_json()['error'] == 'EngineFault'


def test_enrollment_flow(client, detector, make_detection, descriptor):
    detector.results = [[make_detection(descriptor=descriptor(4))]]

    response = client.post('/enrollment/12/begin')
    assert response.status_code == 200
    assert response.get_json()['state'] == 'collecting'

    assert client.post('/enrollment/12/begin').status_code == 409

    early = client.post('/enrollment/complete')
    assert early.status_code == 400
    assert early.get_json()['shortfall'] == 5

    for count in range(1, 6):
        body = client.post('/enrollment/sample').get_json()
        assert body['accepted'] is True
        assert body['sampleCount'] == count

    response = client.post('/enrollment/complete')
    assert response.status_code == 200
    assert response.get_json() == {'identityId': 12, 'descriptorCount': 5}


def test_rejected_sample_reports_issues(client, detector, make_detection):
    detector.results = [[make_detection(), make_detection()]]
    client.post('/enrollment/1/begin')

    body = client.post('/enrollment/sample').get_json()

    assert body['accepted'] is False
    assert body['issues'] == ['multiple faces detected']
    assert body['sampleCount'] == 0


def test_enrollment_cancel(client, detector, make_detection):
    detector.results = [[make_detection()]]
    client.post('/enrollment/1/begin')
    client.post('/enrollment/sample')

    body = client.post('/enrollment/cancel').get_json()

    assert body['state'] == 'idle'
    assert body['sampleCount'] == 0


def test_sample_without_enrollment_returns_409(client):
    assert client.post('/enrollment/sample').status_code == 409


def test_invalid_identity_id_returns_400(client):
    response = client.post('/enrollment/abc/begin')

    assert response.status_code == 400
    assert response.get_json()['error'] == 'ValidationError'


def test_remove_identity(client, gallery_manager, store, descriptor):
    _enroll(gallery_manager, store, descriptor, identity_id=5)

    response = client.delete('/identities/5')

    assert response.status_code == 200
    assert response.get_json() == {'removed': True, 'identityId': 5}
    assert gallery_manager.current().is_empty
    assert client.delete('/identities/5').status_code == 404


PROFILE = {'name': 'Ada Lovelace', 'email': 'ada@example.com', 'department': 'R&D'}


def test_enrollment_of_new_identity(client, detector, store, make_detection, descriptor):
    detector.results = [[make_detection(descriptor=descriptor(4))]]

    response = client.post('/enrollment/begin', json=PROFILE)
    assert response.status_code == 200
    assert response.get_json()['email'] == 'ada@example.com'

    for _ in range(5):
        client.post('/enrollment/sample')
    body = client.post('/enrollment/complete').get_json()

    identity = client.get(f"/identities/{body['identityId']}").get_json()
    assert identity['name'] == 'Ada Lovelace'
    assert identity['role'] == 'Employee'
    assert body['descriptorCount'] == 5


def test_enrollment_with_taken_email_returns_409(client, store):
    store.add_identity(IdentityProfile(name='Ada', email='ada@example.com'))

    response = client.post('/enrollment/begin', json={**PROFILE, 'email': 'ADA@example.com'})

    assert response.status_code == 409
    assert response.get_json()['error'] == 'Conflict'
    assert response.get_json()['message'] == 'Email already exists in the system'


@pytest.mark.parametrize('payload', [None, {'name': 'Ada'}, {'name': '', 'email': 'ada@example.com'}])
def test_enrollment_with_invalid_profile_returns_400(client, payload):
    response = client.post('/enrollment/begin', json=payload)

    assert response.status_code == 400


def test_identity_routes(client, store):
    identity = store.add_identity(IdentityProfile(name='Ada', email='ada@example.com'))
    store.add_identity(IdentityProfile(name='Grace', email='grace@example.com'))

    assert [i['name'] for i in client.get('/identities').get_json()] == ['Ada', 'Grace']

    response = client.put(f'/identities/{identity.id}', json={'department': 'Research'})
    assert response.status_code == 200
    assert response.get_json()['department'] == 'Research'

    assert client.put(f'/identities/{identity.id}', json={'email': 'grace@example.com'}).status_code == 409
    assert client.put(f'/identities/{identity.id}', json=['x']).status_code == 400
    assert client.put('/identities/99', json={'name': 'Nobody'}).status_code == 404
    assert client.get('/identities/99').status_code == 404


def test_attendance_statistics_are_served(client, detector, store, gallery_manager, make_detection, descriptor):
    identity = store.add_identity(IdentityProfile(name='Ada', email='ada@example.com'))
    store.add_descriptor(identity.id, descriptor(0))
    gallery_manager.rebuild()
    detector.results = [[make_detection(descriptor=descriptor(0))]]

    client.post('/attendance/capture')

    body = client.get(f'/identities/{identity.id}').get_json()
    assert body['totalAttendance'] == 1
    assert body['lastSeen'] is not None


def test_activity_log_route(client, detector, store):
    detector.error = RuntimeError('model crashed')
    client.post('/attendance/capture')

    errors = client.get('/activity?level=error&limit=5').get_json()

    assert [e['message'] for e in errors] == ['Attendance capture failed: Face detection failed: model crashed']
    assert errors[0]['level'] == 'error'
    started = client.get('/activity?level=info').get_json()
    assert started[-1]['message'] == 'Attendance session kiosk started'


def test_export_route(client, store):
    store.add_identity(IdentityProfile(name='Ada', email='ada@example.com'))

    body = client.get('/export').get_json()

    assert [i['email'] for i in body['data']['identities']] == ['ada@example.com']
    assert set(body['data']) == {'identities', 'attendance', 'logs'}
