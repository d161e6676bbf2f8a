"""
Configuration module for Face Attendance.

Loads configuration from environment variables with sensible defaults.
All settings are immutable after initialization.
"""

import os
from dataclasses import dataclass
from typing import Tuple

from .errors import ValidationError


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for Face Attendance.

    Backend Integration:
        backend_url: Base URL of the backend API (e.g., http://backend:3000)

    Camera Settings:
        camera_source: Camera source - can be:
            - Integer (0, 1, 2) for local webcam
            - RTSP URL: rtsp://user:pass@ip:port/path
            - HTTP URL: http://camera-gateway:4000/streams/1.mjpg
        camera_id: Logical identifier for this camera (for logging/monitoring)

    Service Identity:
        service_name: Name of this service instance
        api_port: Port for Flask HTTP server

    Descriptors:
        descriptor_length: Fixed length of every face descriptor

    Enrollment:
        required_enrollment_samples: Accepted samples needed to complete enrollment
        enrollment_quality_threshold: Minimum quality of an enrollment sample
        min_enrollment_detection_score: Below this score "low detection confidence" is reported
        min_enrollment_face_size: Minimum box width/height in pixels
        min_neutral_expression: Below this neutral score a neutral expression is requested

    Recognition:
        recognition_threshold: Minimum confidence to accept a match
        match_distance_threshold: Maximum (scaled) distance for a gallery match
        matcher_distance_scale: Multiplier applied to raw Euclidean distances
        reference_face_area: Box area (px^2) that scores full size quality

    Attendance:
        recognition_cooldown_ms: Minimum time between two accepted recognitions
        max_recognition_attempts: Attempts per capture-to-recognize cycle

    Detection Loop:
        detection_min_quality: Detections below this quality are not published
        detection_interval_ms: Sampling period of the detection loop
        detector_det_size: Detection size for InsightFace (width, height)
        detector_model: InsightFace model pack name (e.g., buffalo_l)

    System:
        debug_mode: Enable debug logging
    """

    # Backend
    backend_url: str = 'http://localhost:3000'

    # Camera
    camera_source: str = '0'
    camera_id: str = '0'

    # Service
    service_name: str = 'attendance'
    api_port: int = 5001

    # Descriptors
    descriptor_length: int = 128

    # Enrollment
    required_enrollment_samples: int = 5
    enrollment_quality_threshold: float = 0.7
    min_enrollment_detection_score: float = 0.8
    min_enrollment_face_size: int = 100
    min_neutral_expression: float = 0.3

    # Recognition
    recognition_threshold: float = 0.6
    match_distance_threshold: float = 0.6
    matcher_distance_scale: float = 1.0
    reference_face_area: float = 40000.0

    # Attendance
    recognition_cooldown_ms: int = 3000
    max_recognition_attempts: int = 3

    # Detection loop
    detection_min_quality: float = 0.3
    detection_interval_ms: int = 100
    detector_det_size: Tuple[int, int] = (640, 640)
    detector_model: str = 'buffalo_l'

    # System
    debug_mode: bool = False

    def __post_init__(self) -> None:
        for name in (
            'enrollment_quality_threshold',
            'min_enrollment_detection_score',
            'min_neutral_expression',
            'recognition_threshold',
            'detection_min_quality',
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f'{name} must be within [0, 1], got {value}')

        for name in (
            'descriptor_length',
            'required_enrollment_samples',
            'max_recognition_attempts',
            'detection_interval_ms',
        ):
            if getattr(self, name) < 1:
                raise ValidationError(f'{name} must be a positive integer')

        for name in ('match_distance_threshold', 'matcher_distance_scale', 'reference_face_area'):
            if getattr(self, name) <= 0:
                raise ValidationError(f'{name} must be positive')

        if self.recognition_cooldown_ms < 0:
            raise ValidationError('recognition_cooldown_ms must not be negative')


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


def _env_size(name: str, default: str) -> Tuple[int, int]:
    """Parse "640" or "640x480" into a (width, height) pair."""
    raw = os.getenv(name, default).lower()
    width, _, height = raw.partition('x')
    return int(width), int(height or width)


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config: Immutable configuration object

    Raises:
        ValidationError: If a value is out of range
    """
    camera_source_raw = os.getenv('CAMERA_SOURCE', '0')

    try:
        return Config(
            # Backend
            backend_url=os.getenv('BACKEND_URL', 'http://localhost:3000'),

            # Camera
            camera_source=camera_source_raw,
            camera_id=os.getenv('CAMERA_ID', camera_source_raw),

            # Service
            service_name=os.getenv('SERVICE_NAME', 'attendance'),
            api_port=int(os.getenv('API_PORT', '5001')),

            # Descriptors
            descriptor_length=int(os.getenv('DESCRIPTOR_LENGTH', '128')),

            # Enrollment
            required_enrollment_samples=int(os.getenv('REQUIRED_ENROLLMENT_SAMPLES', '5')),
            enrollment_quality_threshold=float(os.getenv('ENROLLMENT_QUALITY_THRESHOLD', '0.7')),
            min_enrollment_detection_score=float(os.getenv('MIN_ENROLLMENT_SCORE', '0.8')),
            min_enrollment_face_size=int(os.getenv('MIN_ENROLLMENT_FACE_SIZE', '100')),
            min_neutral_expression=float(os.getenv('MIN_NEUTRAL_EXPRESSION', '0.3')),

            # Recognition
            recognition_threshold=float(os.getenv('RECOGNITION_THRESHOLD', '0.6')),
            match_distance_threshold=float(os.getenv('MATCH_DISTANCE_THRESHOLD', '0.6')),
            matcher_distance_scale=float(os.getenv('MATCHER_DISTANCE_SCALE', '1.0')),
            reference_face_area=float(os.getenv('REFERENCE_FACE_AREA', '40000')),

            # Attendance
            recognition_cooldown_ms=int(os.getenv('RECOGNITION_COOLDOWN_MS', '3000')),
            max_recognition_attempts=int(os.getenv('MAX_RECOGNITION_ATTEMPTS', '3')),

            # Detection loop
            detection_min_quality=float(os.getenv('DETECTION_MIN_QUALITY', '0.3')),
            detection_interval_ms=int(os.getenv('DETECTION_INTERVAL_MS', '100')),
            detector_det_size=_env_size('DETECTOR_DET_SIZE', '640'),
            detector_model=os.getenv('DETECTOR_MODEL', 'buffalo_l'),

            # System
            debug_mode=_env_bool('DEBUG', 'false'),
        )
    except ValueError as e:
        raise ValidationError(f'Invalid configuration value: {e}') from e
