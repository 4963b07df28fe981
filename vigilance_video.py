import cv2
import mediapipe as mp
import time
import threading
import os
from collections import deque
from datetime import datetime
from config import (
    CAMERA_INDEX, VIDEO_FPS_TARGET, FACE_DETECTION_CONFIDENCE, OUTPUT_DIR,
    ACTIVE_ALERTS_MAXLEN, EVENT_LOG_MAXLEN, SCORE_SAMPLE_INTERVAL_MS, SCORE_HISTORY_MAXLEN,
    DetectionConfig,
)
from utils import SessionClock, format_ms, save_csv, generate_vigilance_graphs, generate_session_report
from vigilance_logic import VigilanceLogic, LandmarkFrame, AlertLevel

# BGR overlay colors per level
LEVEL_BGR = {
    AlertLevel.NORMAL: (0, 200, 0),
    AlertLevel.DROWSY: (0, 215, 255),
    AlertLevel.VERY_DROWSY: (0, 140, 255),
    AlertLevel.CRITICAL: (0, 0, 255),
}


class VigilanceVideoProcessor:
    def __init__(self, config=None, camera_index=CAMERA_INDEX):
        # Flag to control the main loop and shutdown event for thread coordination
        self.running = True
        self.shutdown_event = threading.Event()
        # Session context for closure/yawn tracking, scoring and alert gating
        self.logic = VigilanceLogic(self.log_event_to_console, config or DetectionConfig())
        self.session_start = datetime.now()
        self.clock = SessionClock()  # Frame timestamps, non-decreasing even if the wall clock steps

        # Initialize MediaPipe FaceMesh for face landmark detection (eyes, mouth)
        self.mp_face_mesh = mp.solutions.face_mesh.FaceMesh(
            refine_landmarks=True,  # Enable detailed eye landmarks
            max_num_faces=1,  # Process only the driver's face
            min_detection_confidence=FACE_DETECTION_CONFIDENCE,
            min_tracking_confidence=FACE_DETECTION_CONFIDENCE
        )

        # Initialize webcam capture
        self.cap = cv2.VideoCapture(camera_index)
        if not self.cap.isOpened():
            print(f"[ERROR] Could not open webcam {camera_index}.")
            self.running = False
            self.shutdown_event.set()

        # Event and alert storage
        self.events = deque(maxlen=EVENT_LOG_MAXLEN)  # Console events (level changes, alerts)
        self.alerts = deque(maxlen=ACTIVE_ALERTS_MAXLEN)  # AlertEvent objects for the UI
        self.alert_log = []  # (ms, level, message), one per emitted alert, bounded by the cooldown
        self.alert_queue = deque()  # New alerts not yet pushed to the UI
        self.score_history = deque(maxlen=SCORE_HISTORY_MAXLEN)  # (ms, score, level) samples for graphs
        self._last_score_sample = None
        self.current_frame = None  # Current annotated video frame
        self.frame_lock = threading.Lock()  # Lock for thread-safe frame and state access
        self.face_detected = False

        # Start the frame driver
        self.video_thread = threading.Thread(target=self.video_loop, name="video", daemon=True)
        self.video_thread.start()

    def log_event_to_console(self, event_type, description, timestamp):
        # Format and log vigilance events (level changes, alerts); timestamp is in ms
        ts_str = format_ms(timestamp)
        print(f"[{ts_str}] {event_type}: {description}")
        self.events.append((ts_str, event_type, description))

    def video_loop(self):
        # Continuously process video frames at target FPS
        while self.running and not self.shutdown_event.is_set():
            try:
                frame = self.process_frame()
            except Exception as e:
                print(f"[ERROR] Frame processing error: {e}")
                frame = None
            if frame is not None:
                with self.frame_lock:
                    self.current_frame = frame
            time.sleep(1 / VIDEO_FPS_TARGET)

    def process_frame(self):
        # Grab one frame, extract landmarks and run it through the vigilance logic
        if not self.running or self.shutdown_event.is_set() or self.cap is None:
            return None

        ret, frame = self.cap.read()
        if not ret:
            print("[WARN] Failed to grab frame.")
            return None

        frame = cv2.flip(frame, 1)  # Flip horizontally for natural webcam view
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)  # Convert to RGB for MediaPipe
        h, w, _ = frame.shape
        now_ms = self.clock.now_ms()

        face_results = self.mp_face_mesh.process(rgb_frame)

        landmark_frame = None
        if face_results.multi_face_landmarks:
            # The legacy FaceMesh solution reports no per-frame score, use the configured floor
            landmark_frame = LandmarkFrame.from_face_mesh(
                face_results.multi_face_landmarks[0].landmark,
                timestamp=now_ms,
                confidence=FACE_DETECTION_CONFIDENCE,
                image_size=(w, h),
            )

        with self.frame_lock:
            self.face_detected = landmark_frame is not None
            state, alert = self.logic.process_frame(landmark_frame)
            if alert is not None:
                self.alerts.append(alert)
                self.alert_queue.append(alert)
                self.alert_log.append((alert.timestamp, alert.level.value, alert.message))
            if self._last_score_sample is None or now_ms - self._last_score_sample >= SCORE_SAMPLE_INTERVAL_MS:
                self.score_history.append((now_ms, state.score, state.level.value))
                self._last_score_sample = now_ms
            metrics = self.logic.metrics

        self.draw_overlay(frame, state, metrics)
        return frame

    def draw_overlay(self, frame, state, metrics):
        color = LEVEL_BGR[state.level]
        cv2.putText(frame, f"{state.level.value.upper()}  score {state.score:.0f}", (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2)
        if not self.face_detected:
            cv2.putText(frame, "No face detected", (10, 60), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 255), 2)
        elif metrics is not None:
            cv2.putText(frame, f"EAR {metrics.ear:.3f}  MAR {metrics.mar:.3f}  closed {state.duration}ms",
                        (10, 60), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)

    def get_current_frame(self):
        # Return the current frame for Flask video feed
        with self.frame_lock:
            return self.current_frame

    def get_vigilance(self):
        # Return current vigilance snapshot for UI updates
        with self.frame_lock:
            snapshot = self.logic.vigilance_state.to_dict()
            temporal = self.logic.temporal_state
            snapshot.update({
                "face_detected": self.face_detected,
                "blink_count": temporal.blink_count,
                "yawn_duration": temporal.yawn_duration,
            })
            return snapshot

    def get_new_alerts(self):
        # Return alerts emitted since the last call
        with self.frame_lock:
            alerts = [alert.to_dict() for alert in self.alert_queue]
            self.alert_queue.clear()
            return alerts

    def _find_alert(self, alert_id):
        for alert in self.alerts:
            if alert.id == alert_id:
                return alert
        return None

    def dismiss_alert(self, alert_id):
        # Presentation side owns the dismissed flag
        with self.frame_lock:
            alert = self._find_alert(alert_id)
            if alert is None:
                return False
            alert.dismissed = True
            return True

    def mark_audio_played(self, alert_id):
        with self.frame_lock:
            alert = self._find_alert(alert_id)
            if alert is None:
                return False
            alert.audio_played = True
            return True

    def end_session(self):
        # End the session and save outputs
        self.running = False
        self.shutdown_event.set()

        if self.video_thread.is_alive():
            print(f"[INFO] Waiting for {self.video_thread.name} to terminate")
            self.video_thread.join(timeout=2.0)

        with self.frame_lock:
            summary = self.logic.summary()
            alert_log = list(self.alert_log)
            score_history = list(self.score_history)
            events = list(self.events)
        summary["start_time"] = self.session_start.strftime("%Y-%m-%d %H:%M:%S")
        summary["end_time"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        print(f"[INFO] Session summary: {summary}")

        alert_rows = [(format_ms(ts), level, message) for ts, level, message in alert_log]

        # Save alert and event logs to CSV
        save_csv(os.path.join(OUTPUT_DIR, "alerts.csv"),
                 alert_rows, ["Timestamp", "Level", "Message"])
        save_csv(os.path.join(OUTPUT_DIR, "vigilance_log.csv"),
                 events, ["Timestamp", "EventType", "Description"])

        # Generate graphs and PDF report
        graph_files = generate_vigilance_graphs(score_history, [(ts, level) for ts, level, _ in alert_log], OUTPUT_DIR)
        generate_session_report(summary, alert_rows, OUTPUT_DIR, graph_files)
        return summary

    def release(self):
        # Clean up resources (webcam, MediaPipe)
        self.running = False
        self.shutdown_event.set()

        if self.video_thread.is_alive():
            print(f"[INFO] Waiting for {self.video_thread.name} to terminate")
            self.video_thread.join(timeout=2.0)

        if self.cap and self.cap.isOpened():
            self.cap.release()
            self.cap = None
        if self.mp_face_mesh is not None:
            self.mp_face_mesh.close()
            self.mp_face_mesh = None
