import pytest

from face_attendance.errors import InsufficientSamples, InvalidStateError, ValidationError
from face_attendance.recognition.enrollment import (
    ISSUE_MULTIPLE_FACES,
    ISSUE_NO_FACE,
    ISSUE_QUOTA_REACHED,
    EnrollmentPolicy,
    EnrollmentState,
)
from face_attendance.recognition.quality import ISSUE_FACE_TOO_SMALL


@pytest.fixture
def policy(config):
    policy = EnrollmentPolicy(config)
    policy.begin()
    return policy


def test_new_policy_is_idle(config):
    policy = EnrollmentPolicy(config)

    assert policy.state is EnrollmentState.IDLE
    assert policy.sample_count == 0


def test_submit_requires_collecting_state(config, make_detection):
    policy = EnrollmentPolicy(config)

    with pytest.raises(InvalidStateError):
        policy.submit([make_detection()])


def test_begin_twice_is_rejected(policy):
    with pytest.raises(InvalidStateError):
        policy.begin()


def test_no_detections_rejected_without_state_change(policy):
    result = policy.submit([])

    assert not result.accepted
    assert result.issues == [ISSUE_NO_FACE]
    assert policy.sample_count == 0
    assert policy.state is EnrollmentState.COLLECTING


def test_multiple_faces_rejected(policy, make_detection):
    result = policy.submit([make_detection(), make_detection()])

    assert not result.accepted
    assert result.issues == [ISSUE_MULTIPLE_FACES]
    assert policy.sample_count == 0


def test_low_quality_sample_rejected_with_issues(policy, make_detection):
    result = policy.submit([make_detection(width=40, height=40, score=0.5)])

    assert not result.accepted
    assert ISSUE_FACE_TOO_SMALL in result.issues
    assert result.quality < 0.7
    assert policy.sample_count == 0


def test_accepted_sample_is_stored(policy, make_detection, descriptor):
    result = policy.submit([make_detection(descriptor=descriptor(3))], timestamp=123.0)

    assert result.accepted
    assert result.sample_count == 1
    sample = policy.samples[0]
    assert sample.timestamp == 123.0
    assert sample.quality == pytest.approx(result.quality)
    assert sample.descriptor[3] == 1.0
    assert not sample.descriptor.flags.writeable


def test_wrong_descriptor_length_raises(policy, make_detection, descriptor):
    with pytest.raises(ValidationError):
        policy.submit([make_detection(descriptor=descriptor(length=64))])
    assert policy.sample_count == 0


def test_complete_with_missing_samples_reports_shortfall(policy, make_detection):
    for _ in range(4):
        assert policy.submit([make_detection()]).accepted

    with pytest.raises(InsufficientSamples) as excinfo:
        policy.complete()

    assert excinfo.value.shortfall == 1
    assert policy.state is EnrollmentState.COLLECTING


def test_complete_returns_samples_in_order(policy, make_detection, descriptor):
    for i in range(5):
        policy.submit([make_detection(descriptor=descriptor(i))])

    assert policy.is_ready
    samples = policy.complete()

    assert policy.state is EnrollmentState.COMPLETE
    assert [int(s.descriptor.argmax()) for s in samples] == [0, 1, 2, 3, 4]


def test_submissions_beyond_quota_are_rejected(policy, make_detection):
    for _ in range(5):
        policy.submit([make_detection()])

    result = policy.submit([make_detection()])

    assert not result.accepted
    assert result.issues == [ISSUE_QUOTA_REACHED]
    assert policy.sample_count == 5


def test_required_samples_is_configurable(make_config, make_detection):
    policy = EnrollmentPolicy(make_config(required_enrollment_samples=2))
    policy.begin()
    policy.submit([make_detection()])

    assert policy.remaining == 1
    with pytest.raises(InsufficientSamples) as excinfo:
        policy.complete()
    assert excinfo.value.shortfall == 1


def test_cancel_discards_samples(policy, make_detection):
    policy.submit([make_detection()])

    policy.cancel()

    assert policy.state is EnrollmentState.IDLE
    assert policy.sample_count == 0
    with pytest.raises(InvalidStateError):
        policy.complete()


def test_begin_after_complete_starts_fresh(policy, make_detection):
    for _ in range(5):
        policy.submit([make_detection()])
    policy.complete()

    policy.begin()

    assert policy.state is EnrollmentState.COLLECTING
    assert policy.sample_count == 0


def test_average_quality(policy, make_detection):
    assert policy.average_quality == 0.0

    policy.submit([make_detection(expressions={'neutral': 1.0})])
    policy.submit([make_detection(expressions={})])

    assert policy.average_quality == pytest.approx((0.96 + 0.86) / 2)
