"""
Face Attendance - Main Entry Point

Runs an attendance kiosk session for one camera and serves its HTTP API.
"""

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Optional, Tuple

from flask import Flask

from .app import create_app
from .backend import BackendStore
from .config import Config, load_config
from .gallery import GalleryManager
from .logging_config import get_logger, setup_logging
from .session import AttendanceSession, EnrollmentSession
from .stores import InMemoryStore

logger = get_logger(__name__)


def load_env_file(path: Path) -> int:
    """
    Export KEY=VALUE lines of a dotenv file that are not already set.

    Blank lines, comments and an optional ``export`` prefix are ignored;
    matching surrounding quotes are stripped from values.

    Args:
        path: Env file to read

    Returns:
        Number of variables exported
    """
    if not path.is_file():
        return 0

    loaded = 0
    for line in path.read_text().splitlines():
        key, sep, value = line.strip().removeprefix('export ').partition('=')
        key = key.strip()
        if not sep or not key or key.startswith('#'):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in '"\'':
            value = value[1:-1]
        if key not in os.environ:
            os.environ[key] = value
            loaded += 1

    logger.debug(f'Loaded {loaded} variable(s) from {path}')
    return loaded


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog='face-attendance',
        description='Face Attendance - face recognition attendance kiosk'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help='Run the attendance session and HTTP API')
    serve.add_argument(
        '--backend-url',
        type=str,
        help='Backend API URL (or set BACKEND_URL)'
    )
    serve.add_argument(
        '--camera-source',
        type=str,
        help='Camera index or stream URL (or set CAMERA_SOURCE)'
    )
    serve.add_argument(
        '--port',
        type=int,
        help='HTTP API port (or set API_PORT)'
    )
    serve.add_argument(
        '--in-memory',
        action='store_true',
        help='Keep gallery and attendance in memory instead of the backend'
    )
    serve.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command line overrides on top of the environment config."""
    overrides = {}
    if args.backend_url:
        overrides['backend_url'] = args.backend_url
    if args.camera_source:
        overrides['camera_source'] = args.camera_source
        overrides['camera_id'] = args.camera_source
    if args.port:
        overrides['api_port'] = args.port
    if args.debug:
        overrides['debug_mode'] = True
    return replace(config, **overrides)


def align_config_with_detector(config: Config, detector: Any) -> Config:
    """
    Make the descriptor settings match what the detector produces.

    Detectors may declare ``descriptor_length`` and ``distance_scale``.
    When the declared length differs from the configured one, both
    settings are taken from the detector; otherwise the config is kept.

    Args:
        config: Service configuration
        detector: Detector that will feed the pipeline

    Returns:
        Config to build the stores and sessions with
    """
    length = getattr(detector, 'descriptor_length', None)
    if length is None or length == config.descriptor_length:
        return config

    scale = getattr(detector, 'distance_scale', config.matcher_distance_scale)
    logger.warning(
        f'⚠️  Detector produces {length}-D descriptors, overriding '
        f'DESCRIPTOR_LENGTH={config.descriptor_length} '
        f'(distance scale {config.matcher_distance_scale} -> {scale})'
    )
    return replace(config, descriptor_length=length, matcher_distance_scale=scale)


def build_services(
    config: Config,
    detector: Any,
    in_memory: bool = False
) -> Tuple[AttendanceSession, EnrollmentSession, Flask]:
    """
    Wire store, gallery, sessions and HTTP app around a detector.

    Args:
        config: Service configuration
        detector: Face detector
        in_memory: Use the in-memory store instead of the backend

    Returns:
        (attendance session, enrollment session, Flask app)
    """
    config = align_config_with_detector(config, detector)

    store = InMemoryStore(config.descriptor_length) if in_memory else BackendStore(config)
    gallery = GalleryManager(store, config)

    session = AttendanceSession(
        config,
        detector,
        gallery,
        store,
        session_id=config.camera_id,
    )
    enrollment = EnrollmentSession(config, detector, gallery)
    return session, enrollment, create_app(session, enrollment)


def serve(config: Config, in_memory: bool = False) -> None:
    """
    Start the attendance session and block serving the HTTP API.

    Args:
        config: Service configuration
        in_memory: Use the in-memory store instead of the backend
    """
    # Import here so the CLI starts without loading models for --help
    from .face_app import InsightFaceDetector

    detector = InsightFaceDetector.from_config(config)
    session, _, app = build_services(config, detector, in_memory=in_memory)

    with session:
        logger.info(f'HTTP API: http://localhost:{session.config.api_port}/health')
        app.run(
            host='0.0.0.0',
            port=session.config.api_port,
            threaded=True,
            debug=False,
            use_reloader=False
        )


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    load_env_file(Path(os.getenv('FACE_ATTENDANCE_ENV', '.env')))
    args = parse_args(argv)

    config = apply_overrides(load_config(), args)

    setup_logging(config.service_name, config.debug_mode)

    logger.info('=' * 60)
    logger.info('Face Attendance')
    logger.info('=' * 60)
    logger.info(f'Camera: {config.camera_source}')
    logger.info(f'Store: {"in-memory" if args.in_memory else config.backend_url}')
    logger.info(
        f'Thresholds: recognition={config.recognition_threshold}, '
        f'distance={config.match_distance_threshold}, '
        f'enrollment={config.enrollment_quality_threshold}'
    )
    logger.info('=' * 60)

    try:
        serve(config, in_memory=args.in_memory)
    except KeyboardInterrupt:
        logger.info('Received keyboard interrupt, shutting down...')
        sys.exit(0)
    except Exception as e:
        logger.error(f'Fatal error: {e}', exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
