"""
InsightFace detector module.

Wraps InsightFace FaceAnalysis as the pipeline's detector capability:
frame in, list of Detection out.
"""

from typing import Any, List

import numpy as np
from insightface.app import FaceAnalysis

from .config import Config
from .logging_config import get_logger
from .models import BoundingBox, Detection

logger = get_logger(__name__)


class InsightFaceDetector:
    """
    Detector backed by InsightFace.

    InsightFace has no expression model, so expressions are left empty
    and quality scoring uses its neutral default.

    Attributes:
        descriptor_length: Length of the normalized embeddings it returns
        distance_scale: Matcher distance scale for unit-length embeddings.
            Two unit vectors are at most 2.0 apart; halving maps that
            range onto the [0, 1] confidence scale.
    """

    descriptor_length = 512
    distance_scale = 0.5

    def __init__(self, face_app: Any):
        self.face_app = face_app

    @classmethod
    def from_config(cls, config: Config) -> 'InsightFaceDetector':
        """
        Load the configured model pack and prepare it for CPU inference.

        Args:
            config: Service configuration (detector_model, detector_det_size)
        """
        logger.info(f'Loading InsightFace model pack {config.detector_model}...')
        face_app = FaceAnalysis(name=config.detector_model, providers=['CPUExecutionProvider'])
        face_app.prepare(ctx_id=0, det_size=config.detector_det_size)
        logger.info(
            f'✅ InsightFace ready ({config.detector_model}, '
            f'det_size={config.detector_det_size[0]}x{config.detector_det_size[1]})'
        )
        return cls(face_app)

    def detect(self, frame: np.ndarray) -> List[Detection]:
        faces = self.face_app.get(frame)
        return [self._to_detection(face) for face in faces]

    @staticmethod
    def _to_detection(face) -> Detection:
        x1, y1, x2, y2 = face.bbox.astype(float)
        landmarks = getattr(face, 'kps', None)
        return Detection(
            descriptor=np.asarray(face.normed_embedding, dtype=np.float32),
            box=BoundingBox.from_corners(x1, y1, x2, y2),
            score=float(face.det_score),
            has_landmarks=landmarks is not None and len(landmarks) > 0,
            expressions=None,
        )
