# config.py

import os
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()

# ========== CONFIGURATION CONSTANTS ==========
# Output Directory
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "logs")
# Ensure the output directory exists when the config is imported
os.makedirs(OUTPUT_DIR, exist_ok=True)

# Camera / Video
CAMERA_INDEX = int(os.getenv("CAMERA_INDEX", 0))
VIDEO_FPS_TARGET = 30 # Target FPS for video processing and display
FACE_DETECTION_CONFIDENCE = 0.7 # FaceMesh min detection/tracking confidence, reported as frame confidence

# Landmark contract
MIN_LANDMARKS = 468 # FaceMesh returns 468 points (478 with refine_landmarks)

# Detection Thresholds
EAR_THRESHOLD = float(os.getenv("EAR_THRESHOLD", 0.25)) # Smoothed EAR below this => eyes closed
MAR_THRESHOLD = float(os.getenv("MAR_THRESHOLD", 0.6)) # Smoothed MAR above this => yawning
BLINK_CEILING_MS = 500 # Closures shorter than this are counted as blinks
SMOOTHING_WINDOW = 5 # Samples in the moving average (~150-200 ms at 25-30 FPS)

# Scoring brackets (closure ms, penalty), most severe first
CLOSURE_PENALTIES = ((3000, 70), (1500, 50), (500, 25))
YAWN_PENALTY_MIN_MS = 1000 # Yawn longer than this costs YAWN_PENALTY points
YAWN_PENALTY = 30

# Classification thresholds (score below, or closure ms above)
CRITICAL_SCORE = 20
CRITICAL_CLOSURE_MS = 3000
VERY_DROWSY_SCORE = 40
VERY_DROWSY_CLOSURE_MS = 1500
DROWSY_SCORE = 60
DROWSY_CLOSURE_MS = 500

# Alert gate
VERY_DROWSY_ALERT_MS = 1500 # VERY_DROWSY only alerts past this closure
DROWSY_ALERT_MS = 800 # DROWSY only alerts past this closure
ALERT_COOLDOWN_MS = int(os.getenv("ALERT_COOLDOWN_MS", 3000)) # Minimum gap between two alerts
ALERT_COOLDOWN_MIN_MS = 3000
ALERT_COOLDOWN_MAX_MS = 5000

# Dashboard
ACTIVE_ALERTS_MAXLEN = 50 # Alerts kept for the UI
EVENT_LOG_MAXLEN = 500 # Console events kept for CSV export
SCORE_SAMPLE_INTERVAL_MS = 1000 # Score history sampling for graphs
SCORE_HISTORY_MAXLEN = 4 * 3600 # Four hours at one sample per second

# MediaPipe Face Mesh Indices for EAR/MAR
# Eyes are p1..p6: corner, top, top, corner, bottom, bottom
LEFT_EYE_INDICES = (33, 160, 158, 133, 153, 144)
RIGHT_EYE_INDICES = (362, 385, 387, 263, 373, 380)
MOUTH_CORNER_INDICES = (61, 291) # left, right
MOUTH_VERTICAL_INDICES = (13, 17) # top center, bottom center


@dataclass(frozen=True)
class DetectionConfig:
    """Read-only detection parameters for one run."""
    ear_threshold: float = EAR_THRESHOLD
    mar_threshold: float = MAR_THRESHOLD
    blink_ceiling_ms: int = BLINK_CEILING_MS
    alert_cooldown_ms: int = ALERT_COOLDOWN_MS
    smoothing_window: int = SMOOTHING_WINDOW
    left_eye_indices: Tuple[int, ...] = field(default=LEFT_EYE_INDICES)
    right_eye_indices: Tuple[int, ...] = field(default=RIGHT_EYE_INDICES)
    mouth_corner_indices: Tuple[int, ...] = field(default=MOUTH_CORNER_INDICES)
    mouth_vertical_indices: Tuple[int, ...] = field(default=MOUTH_VERTICAL_INDICES)

    def __post_init__(self):
        if self.ear_threshold <= 0:
            raise ValueError(f"ear_threshold must be positive, got {self.ear_threshold}")
        if self.mar_threshold <= 0:
            raise ValueError(f"mar_threshold must be positive, got {self.mar_threshold}")
        if not ALERT_COOLDOWN_MIN_MS <= self.alert_cooldown_ms <= ALERT_COOLDOWN_MAX_MS:
            raise ValueError(
                f"alert_cooldown_ms must be within [{ALERT_COOLDOWN_MIN_MS}, {ALERT_COOLDOWN_MAX_MS}], "
                f"got {self.alert_cooldown_ms}"
            )
        # Window and blink ceiling are fixed in this design
        if self.smoothing_window != SMOOTHING_WINDOW:
            raise ValueError(f"smoothing_window is fixed at {SMOOTHING_WINDOW}")
        if self.blink_ceiling_ms != BLINK_CEILING_MS:
            raise ValueError(f"blink_ceiling_ms is fixed at {BLINK_CEILING_MS}")
        if len(self.left_eye_indices) != 6 or len(self.right_eye_indices) != 6:
            raise ValueError("each eye needs exactly 6 landmark indices")
        if len(self.mouth_corner_indices) != 2 or len(self.mouth_vertical_indices) != 2:
            raise ValueError("mouth needs 2 corner and 2 vertical landmark indices")
        highest = max(self.left_eye_indices + self.right_eye_indices +
                      self.mouth_corner_indices + self.mouth_vertical_indices)
        if highest >= MIN_LANDMARKS:
            raise ValueError(f"landmark index {highest} is outside the {MIN_LANDMARKS}-point mesh")
