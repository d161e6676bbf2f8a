import pytest

from face_attendance.utils.timing import format_uptime, retry_with_backoff


@pytest.mark.parametrize('seconds, expected', [
    (0, '0s'),
    (59.9, '59s'),
    (3600, '1h 0s'),
    (90061, '1d 1h 1m 1s'),
])
def test_format_uptime(seconds, expected):
    assert format_uptime(seconds) == expected


def test_retry_with_backoff_succeeds_after_failures():
    calls = []
    waits = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError('down')
        return 'ok'

    assert retry_with_backoff(flaky, max_attempts=3, sleep=waits.append) == 'ok'
    assert waits == [1.0, 2.0]


def test_retry_with_backoff_raises_last_error():
    def down():
        raise ConnectionError('down')

    with pytest.raises(ConnectionError):
        retry_with_backoff(down, max_attempts=2, sleep=lambda seconds: None)


def test_retry_with_backoff_only_retries_selected_errors():
    calls = []

    def broken():
        calls.append(1)
        raise ValueError('bad input')

    with pytest.raises(ValueError):
        retry_with_backoff(broken, retry_on=(ConnectionError,), sleep=lambda seconds: None)

    assert len(calls) == 1
