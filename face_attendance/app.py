"""
Flask application for HTTP API.

Provides:
- GET /health: Service health check
- GET /system-info: Session diagnostics
- POST /attendance/capture: Run one attendance capture
- GET /attendance/today: Today's attendance records
- /enrollment/...: Enrollment session control
- /identities[/<id>]: Identity profiles (list, get, update, delete)
- GET /activity: Activity log
- GET /export: Full data export
"""

from flask import Flask, jsonify, request
from flask_cors import CORS

from .errors import (
    CaptureInProgress,
    Conflict,
    CooldownActive,
    EngineFault,
    FaceAttendanceError,
    InsufficientSamples,
    InvalidStateError,
    NoFaceDetected,
    NotFound,
    PolicyRejection,
    ResourceError,
    RetryBudgetExhausted,
    ValidationError,
)
from .logging_config import get_logger
from .models import IdentityProfile, as_identity_id
from .session import AttendanceSession, EnrollmentSession

logger = get_logger(__name__)


def _error(error: FaceAttendanceError, status: int, **extra):
    body = {'error': type(error).__name__, 'message': str(error)}
    body.update(extra)
    return jsonify(body), status


def create_app(session: AttendanceSession, enrollment: EnrollmentSession) -> Flask:
    """
    Create and configure Flask application.

    Args:
        session: Attendance session served by this app
        enrollment: Enrollment session sharing the session's gallery

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    CORS(app)
    store = session.gallery.store

    @app.errorhandler(CooldownActive)
    def cooldown_active(error):
        return _error(error, 429, remainingSeconds=error.remaining_seconds)

    @app.errorhandler(CaptureInProgress)
    def capture_in_progress(error):
        return _error(error, 409)

    @app.errorhandler(Conflict)
    def conflict(error):
        return _error(error, 409)

    @app.errorhandler(NotFound)
    def not_found(error):
        return _error(error, 404)

    @app.errorhandler(InvalidStateError)
    def invalid_state(error):
        return _error(error, 409)

    @app.errorhandler(InsufficientSamples)
    def insufficient_samples(error):
        return _error(error, 400, shortfall=error.shortfall)

    @app.errorhandler(NoFaceDetected)
    @app.errorhandler(RetryBudgetExhausted)
    def unprocessable(error):
        return _error(error, 422)

    @app.errorhandler(PolicyRejection)
    def policy_rejection(error):
        return _error(error, 422)

    @app.errorhandler(ValidationError)
    def validation_error(error):
        return _error(error, 400)

    @app.errorhandler(ResourceError)
    def resource_error(error):
        return _error(error, 503)

    @app.errorhandler(EngineFault)
    def engine_fault(error):
        return _error(error, 500)

    @app.route('/health')
    def health():
        """Health check endpoint."""
        info = session.system_info()
        return jsonify({
            'status': 'ok',
            'active': info['active'],
            'uptime': info['uptime'],
            'sessionId': session.session_id,
        })

    @app.route('/system-info')
    def system_info():
        return jsonify(session.system_info())

    @app.route('/attendance/capture', methods=['POST'])
    def capture_attendance():
        attempt = session.capture_attendance()
        return jsonify(attempt.to_dict())

    @app.route('/attendance/today')
    def today_attendance():
        records = session.attendance_store.get_today_attendance()
        return jsonify([r.to_dict() for r in records])

    @app.route('/enrollment')
    def enrollment_progress():
        return jsonify(enrollment.progress())

    @app.route('/enrollment/begin', methods=['POST'])
    def enrollment_begin_new():
        """Start enrolling a new identity from a JSON profile."""
        enrollment.begin_with_profile(IdentityProfile.from_dict(request.get_json(silent=True)))
        return jsonify(enrollment.progress())

    @app.route('/enrollment/<identity_id>/begin', methods=['POST'])
    def enrollment_begin(identity_id):
        enrollment.begin(as_identity_id(identity_id))
        return jsonify(enrollment.progress())

    @app.route('/enrollment/sample', methods=['POST'])
    def enrollment_sample():
        result = enrollment.capture_sample(session.latest_frame())
        return jsonify({
            'accepted': result.accepted,
            'quality': result.quality,
            'issues': result.issues,
            **enrollment.progress(),
        })

    @app.route('/enrollment/complete', methods=['POST'])
    def enrollment_complete():
        entry = enrollment.complete()
        return jsonify({
            'identityId': entry.identity_id,
            'descriptorCount': len(entry.descriptors),
        })

    @app.route('/enrollment/cancel', methods=['POST'])
    def enrollment_cancel():
        enrollment.cancel()
        return jsonify(enrollment.progress())

    @app.route('/identities')
    def list_identities():
        identities = store.list_identities()
        return jsonify([i.to_dict() for i in identities])

    @app.route('/identities/<identity_id>')
    def get_identity(identity_id):
        identity = store.get_identity(as_identity_id(identity_id))
        if identity is None:
            raise NotFound(f'Identity {identity_id} not found')
        return jsonify(identity.to_dict())

    @app.route('/identities/<identity_id>', methods=['PUT'])
    def update_identity(identity_id):
        updates = request.get_json(silent=True)
        if not isinstance(updates, dict):
            raise ValidationError('Request body must be a JSON object')
        identity = store.update_identity(as_identity_id(identity_id), updates)
        return jsonify(identity.to_dict())

    @app.route('/identities/<identity_id>', methods=['DELETE'])
    def remove_identity(identity_id):
        if not session.gallery.remove_identity(as_identity_id(identity_id)):
            raise NotFound(f'Identity {identity_id} not enrolled')
        return jsonify({'removed': True, 'identityId': int(identity_id)})

    @app.route('/activity')
    def activity_log():
        level = request.args.get('level')
        limit = request.args.get('limit', type=int)
        entries = store.get_activity_log(level=level, limit=limit)
        return jsonify([e.to_dict() for e in entries])

    @app.route('/export')
    def export_data():
        return jsonify(store.export_data())

    return app
