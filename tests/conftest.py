import os
import tempfile

# Keep exports out of the working tree; config reads this at import time
os.environ.setdefault("OUTPUT_DIR", tempfile.mkdtemp(prefix="vigilance_logs_"))

import numpy as np
import pytest

from config import (
    LEFT_EYE_INDICES, RIGHT_EYE_INDICES, MOUTH_CORNER_INDICES, MOUTH_VERTICAL_INDICES,
    MIN_LANDMARKS, DetectionConfig,
)
from vigilance_logic import LandmarkFrame, VigilanceLogic


def build_points(ear=0.3, mar=0.2, count=MIN_LANDMARKS):
    """Mesh whose eyes have exactly `ear` and whose mouth has exactly `mar`."""
    points = np.zeros((count, 3))
    half_open = ear / 2.0
    for indices, x0 in ((LEFT_EYE_INDICES, 0.0), (RIGHT_EYE_INDICES, 2.0)):
        p1, p2, p3, p4, p5, p6 = indices
        points[p1] = (x0, 0.0, 0.0)
        points[p4] = (x0 + 1.0, 0.0, 0.0)
        points[p2] = (x0 + 0.33, half_open, 0.0)
        points[p6] = (x0 + 0.33, -half_open, 0.0)
        points[p3] = (x0 + 0.66, half_open, 0.0)
        points[p5] = (x0 + 0.66, -half_open, 0.0)
    left, right = MOUTH_CORNER_INDICES
    top, bottom = MOUTH_VERTICAL_INDICES
    points[left] = (0.0, 3.0, 0.0)
    points[right] = (1.0, 3.0, 0.0)
    points[top] = (0.5, 3.0, 0.0)
    points[bottom] = (0.5, 3.0 + mar, 0.0)
    return points


@pytest.fixture
def make_points():
    return build_points


@pytest.fixture
def make_frame():
    def _make(timestamp, ear=0.3, mar=0.2, confidence=0.9, count=MIN_LANDMARKS):
        return LandmarkFrame(build_points(ear, mar, count), timestamp=timestamp, confidence=confidence)
    return _make


@pytest.fixture
def events():
    return []


@pytest.fixture
def logic(events):
    def logger(event_type, description, timestamp):
        events.append((event_type, description, timestamp))
    return VigilanceLogic(logger, DetectionConfig(ear_threshold=0.25, mar_threshold=0.6, alert_cooldown_ms=3000))
