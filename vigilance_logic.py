# vigilance_logic.py
"""
Temporal vigilance classification.

Per frame: landmarks -> EAR/MAR -> moving average -> closure/yawn durations
-> score -> alert level -> cooldown-gated alert. One VigilanceLogic instance
is one driving session; it holds no globals and never blocks.
"""

import math
import uuid
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from functools import total_ordering
from typing import Optional, Tuple, Dict

import numpy as np

# Import constants from config module
from config import (
    DetectionConfig, MIN_LANDMARKS, SMOOTHING_WINDOW, BLINK_CEILING_MS,
    CLOSURE_PENALTIES, YAWN_PENALTY_MIN_MS, YAWN_PENALTY,
    CRITICAL_SCORE, CRITICAL_CLOSURE_MS, VERY_DROWSY_SCORE, VERY_DROWSY_CLOSURE_MS,
    DROWSY_SCORE, DROWSY_CLOSURE_MS, VERY_DROWSY_ALERT_MS, DROWSY_ALERT_MS,
)
from utils import compute_ear, compute_mar, reference_width


@total_ordering
class AlertLevel(Enum):
    """Alert severity, ordered NORMAL < DROWSY < VERY_DROWSY < CRITICAL."""
    NORMAL = "normal"
    DROWSY = "drowsy"
    VERY_DROWSY = "very_drowsy"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other):
        if other.__class__ is self.__class__:
            return self.severity < other.severity
        return NotImplemented


@dataclass
class LandmarkFrame:
    """
    One frame of face-mesh output.

    points: (N, 3) array of x, y, z. Only x and y feed the aspect ratios.
    timestamp: capture time in milliseconds.
    confidence: detector confidence in [0, 1].
    """
    points: np.ndarray
    timestamp: int
    confidence: float = 1.0

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=float)
        if self.points.ndim != 2 or self.points.shape[1] < 2:
            raise ValueError(f"points must have shape (N, 2|3), got {self.points.shape}")
        self.timestamp = int(self.timestamp)
        self.confidence = min(max(float(self.confidence), 0.0), 1.0)

    @classmethod
    def from_face_mesh(cls, landmarks, timestamp, confidence, image_size=None):
        """
        Builds a frame from MediaPipe FaceMesh landmarks.

        image_size is (width, height); when given, normalized coordinates are
        scaled to pixels so ratios are not skewed by the frame aspect.
        """
        w, h = image_size if image_size else (1.0, 1.0)
        points = np.array([(lm.x * w, lm.y * h, lm.z * w) for lm in landmarks], dtype=float)
        return cls(points=points.reshape(-1, 3), timestamp=timestamp, confidence=confidence)

    @property
    def is_complete(self) -> bool:
        return len(self.points) >= MIN_LANDMARKS


@dataclass
class Metrics:
    ear: float
    mar: float
    timestamp: int


# Same shape, values replaced by windowed means
SmoothedMetrics = Metrics


@dataclass
class TemporalState:
    eyes_closed_start_time: Optional[int] = None
    eyes_closed_duration: int = 0
    yawn_start_time: Optional[int] = None
    yawn_duration: int = 0
    blink_count: int = 0
    last_blink_time: int = 0


@dataclass
class VigilanceState:
    level: AlertLevel = AlertLevel.NORMAL
    score: float = 100.0
    confidence: float = 0.0
    duration: int = 0

    def to_dict(self):
        return {
            "level": self.level.value,
            "score": round(self.score, 1),
            "confidence": round(self.confidence, 2),
            "duration": self.duration,
        }


@dataclass
class AlertEvent:
    level: AlertLevel
    message: str
    timestamp: int
    dismissed: bool = False
    audio_played: bool = False
    id: Optional[str] = None

    def __post_init__(self):
        if self.id is None:
            self.id = f"alert_{self.timestamp}_{uuid.uuid4().hex[:9]}"

    def to_dict(self):
        return {
            "id": self.id,
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "dismissed": self.dismissed,
            "audio_played": self.audio_played,
        }


# ========== SMOOTHING ==========
class Smoother:
    """Fixed-size moving average per named stream ("ear", "mar")."""

    def __init__(self, window=SMOOTHING_WINDOW):
        self.window = window
        self._streams: Dict[str, deque] = {}

    def push(self, stream_id: str, value: float) -> float:
        history = self._streams.setdefault(stream_id, deque(maxlen=self.window))
        history.append(value)
        return self.mean(stream_id)

    def mean(self, stream_id: str) -> Optional[float]:
        history = self._streams.get(stream_id)
        if not history:
            return None
        avg = math.fsum(history) / len(history)
        # Rounding must not push the mean outside the window
        return min(max(avg, min(history)), max(history))

    def reset(self):
        self._streams.clear()


# ========== TEMPORAL TRACKING ==========
class TemporalTracker:
    """
    Eye (OPEN/CLOSED) and mouth (NORMAL/YAWNING) automata.

    Durations run from the first frame past threshold, so they measure real
    elapsed time regardless of frame rate. An eye closure shorter than the
    blink ceiling is counted as a blink when it ends. Frames must arrive in
    non-decreasing timestamp order.
    """

    def __init__(self, ear_threshold, mar_threshold, blink_ceiling_ms=BLINK_CEILING_MS):
        self.ear_threshold = ear_threshold
        self.mar_threshold = mar_threshold
        self.blink_ceiling_ms = blink_ceiling_ms
        self._state = TemporalState()

    @property
    def state(self) -> TemporalState:
        return replace(self._state)

    @property
    def eyes_closed(self) -> bool:
        return self._state.eyes_closed_start_time is not None

    @property
    def yawning(self) -> bool:
        return self._state.yawn_start_time is not None

    def update(self, timestamp: int, ear: float, mar: float) -> TemporalState:
        state = self._state

        if ear < self.ear_threshold:
            if state.eyes_closed_start_time is None:
                state.eyes_closed_start_time = timestamp
            state.eyes_closed_duration = max(0, timestamp - state.eyes_closed_start_time)
        elif state.eyes_closed_start_time is not None:
            if state.eyes_closed_duration < self.blink_ceiling_ms:
                state.blink_count += 1
                state.last_blink_time = timestamp
            state.eyes_closed_start_time = None
            state.eyes_closed_duration = 0

        if mar > self.mar_threshold:
            if state.yawn_start_time is None:
                state.yawn_start_time = timestamp
            state.yawn_duration = max(0, timestamp - state.yawn_start_time)
        elif state.yawn_start_time is not None:
            state.yawn_start_time = None
            state.yawn_duration = 0

        return self.state

    def reset(self):
        self._state = TemporalState()


# ========== SCORING & CLASSIFICATION ==========
def compute_score(temporal_state: TemporalState) -> float:
    """Vigilance score in [0, 100]; one closure bracket plus an optional yawn penalty."""
    score = 100.0
    for min_ms, penalty in CLOSURE_PENALTIES:
        if temporal_state.eyes_closed_duration > min_ms:
            score -= penalty
            break
    if temporal_state.yawn_duration > YAWN_PENALTY_MIN_MS:
        score -= YAWN_PENALTY
    return min(max(score, 0.0), 100.0)


def classify(score: float, eyes_closed_duration: int) -> AlertLevel:
    if score < CRITICAL_SCORE or eyes_closed_duration > CRITICAL_CLOSURE_MS:
        return AlertLevel.CRITICAL
    if score < VERY_DROWSY_SCORE or eyes_closed_duration > VERY_DROWSY_CLOSURE_MS:
        return AlertLevel.VERY_DROWSY
    if score < DROWSY_SCORE or eyes_closed_duration > DROWSY_CLOSURE_MS:
        return AlertLevel.DROWSY
    return AlertLevel.NORMAL


# ========== ALERT GATING ==========
def should_alert(level: AlertLevel, eyes_closed_duration: int) -> bool:
    return (
        level == AlertLevel.CRITICAL or
        (level == AlertLevel.VERY_DROWSY and eyes_closed_duration > VERY_DROWSY_ALERT_MS) or
        (level == AlertLevel.DROWSY and eyes_closed_duration > DROWSY_ALERT_MS)
    )


def alert_message(level: AlertLevel, eyes_closed_duration: int) -> str:
    closed_seconds = int(math.floor(eyes_closed_duration / 1000.0 + 0.5))
    return f"{level.value} - Eyes closed {closed_seconds}s"


def maybe_emit(level, eyes_closed_duration, now, last_alert_time, cooldown_ms) -> Optional[AlertEvent]:
    """
    Returns a new AlertEvent when the level is alert-worthy and the cooldown
    since last_alert_time has elapsed. last_alert_time is None before the
    first alert of a session.
    """
    if not should_alert(level, eyes_closed_duration):
        return None
    if last_alert_time is not None and now - last_alert_time <= cooldown_ms:
        return None
    return AlertEvent(
        level=level,
        message=alert_message(level, eyes_closed_duration),
        timestamp=now,
    )


class AlertGate:
    """Cooldown rate limiter; remembers when it last emitted."""

    def __init__(self, cooldown_ms):
        self.cooldown_ms = cooldown_ms
        self.last_alert_time: Optional[int] = None

    def emit(self, level, eyes_closed_duration, now) -> Optional[AlertEvent]:
        event = maybe_emit(level, eyes_closed_duration, now, self.last_alert_time, self.cooldown_ms)
        if event is not None:
            self.last_alert_time = now
        return event

    def reset(self):
        self.last_alert_time = None


# ========== SESSION ==========
SKIP_REASONS = ("no_face", "insufficient_landmarks", "degenerate_geometry")


class VigilanceLogic:
    def __init__(self, logger_callback, config: Optional[DetectionConfig] = None):
        self.logger = logger_callback # This will be VigilanceVideoProcessor.log_event_to_console
        self.config = config or DetectionConfig()

        self.smoother = Smoother(self.config.smoothing_window)
        self.tracker = TemporalTracker(self.config.ear_threshold, self.config.mar_threshold,
                                       self.config.blink_ceiling_ms)
        self.alert_gate = AlertGate(self.config.alert_cooldown_ms)

        self.vigilance_state = VigilanceState() # Last classification, kept across skipped frames
        self.metrics: Optional[SmoothedMetrics] = None # Last smoothed metrics

        # Session statistics, constant size
        self.frames_processed = 0
        self.skip_reasons = dict.fromkeys(SKIP_REASONS, 0)
        self._score_total = 0.0
        self.alert_counts = {level.value: 0 for level in AlertLevel}

    def _skip(self, reason):
        self.skip_reasons[reason] += 1
        return self.vigilance_state, None

    @property
    def frames_skipped(self) -> int:
        return sum(self.skip_reasons.values())

    def _eyes_degenerate(self, points) -> bool:
        # NaN or inf coordinates would read as open eyes and end a closure
        if not np.isfinite(points[:, :2]).all():
            return True
        cfg = self.config
        for indices in (cfg.left_eye_indices, cfg.right_eye_indices):
            if reference_width(points, indices[0], indices[3]) == 0:
                return True
        return False

    def process_frame(self, frame: Optional[LandmarkFrame]) -> Tuple[VigilanceState, Optional[AlertEvent]]:
        """
        Runs one frame through the pipeline.

        Returns the current VigilanceState and at most one AlertEvent. A missing
        face, an incomplete mesh, a non-finite coordinate or a zero eye width
        leaves the smoother, tracker and gate untouched and returns the
        previous state.
        """
        if frame is None:
            return self._skip("no_face")
        if not frame.is_complete:
            return self._skip("insufficient_landmarks")

        cfg = self.config
        points = frame.points
        if self._eyes_degenerate(points):
            return self._skip("degenerate_geometry")

        now = frame.timestamp
        raw = Metrics(
            ear=compute_ear(points, cfg.left_eye_indices, cfg.right_eye_indices),
            mar=compute_mar(points, cfg.mouth_corner_indices, cfg.mouth_vertical_indices),
            timestamp=now,
        )

        ear = self.smoother.push("ear", raw.ear)
        if reference_width(points, *cfg.mouth_corner_indices) == 0:
            # Degenerate mouth only affects MAR; hold the last smoothed value
            mar = self.smoother.mean("mar")
            mar = 0.0 if mar is None else mar
        else:
            mar = self.smoother.push("mar", raw.mar)
        self.metrics = SmoothedMetrics(ear=ear, mar=mar, timestamp=now)

        temporal = self.tracker.update(now, ear, mar)
        score = compute_score(temporal)
        level = classify(score, temporal.eyes_closed_duration)

        previous_level = self.vigilance_state.level
        self.vigilance_state = VigilanceState(
            level=level,
            score=score,
            confidence=frame.confidence,
            duration=temporal.eyes_closed_duration,
        )
        self.frames_processed += 1
        self._score_total += score

        if level != previous_level:
            self.logger(event_type="Vigilance", description=f"Level {level.value} (score {score:.0f})", timestamp=now)

        event = self.alert_gate.emit(level, temporal.eyes_closed_duration, now)
        if event is not None:
            self.alert_counts[level.value] += 1
            self.logger(event_type="Alert", description=event.message, timestamp=now)

        return self.vigilance_state, event

    @property
    def temporal_state(self) -> TemporalState:
        return self.tracker.state

    @property
    def average_score(self) -> float:
        if not self.frames_processed:
            return 100.0
        return self._score_total / self.frames_processed

    def summary(self):
        return {
            "frames_processed": self.frames_processed,
            "frames_skipped": self.frames_skipped,
            "skip_reasons": dict(self.skip_reasons),
            "average_score": self.average_score,
            "blink_count": self.tracker.state.blink_count,
            "alert_counts": dict(self.alert_counts),
            "last_state": self.vigilance_state.to_dict(),
        }

    def reset(self):
        """Starts a new session: clears windows, durations, cooldown and statistics."""
        self.smoother.reset()
        self.tracker.reset()
        self.alert_gate.reset()
        self.vigilance_state = VigilanceState()
        self.metrics = None
        self.frames_processed = 0
        self.skip_reasons = dict.fromkeys(SKIP_REASONS, 0)
        self._score_total = 0.0
        self.alert_counts = {level.value: 0 for level in AlertLevel}
