# utils.py

import os
import csv
import math
import time
from datetime import datetime
from collections import Counter
import matplotlib
import matplotlib.pyplot as plt
from reportlab.lib.pagesizes import letter
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, Image as RLImage
from reportlab.platypus import PageBreak

from config import MIN_LANDMARKS

matplotlib.use('Agg')

LEVEL_ORDER = ["normal", "drowsy", "very_drowsy", "critical"]
LEVEL_COLORS = {"normal": "green", "drowsy": "gold", "very_drowsy": "orange", "critical": "red"}


# ========== UTILITY FUNCTIONS ==========
def format_ms(ms):
    """Formats a millisecond epoch timestamp as HH:MM:SS local time."""
    return datetime.fromtimestamp(ms / 1000.0).strftime("%H:%M:%S")

class SessionClock:
    """
    Millisecond epoch timestamps that never go backwards.

    The epoch is read once at construction; after that time advances with the
    monotonic clock, so a wall-clock step cannot reorder frames.
    """

    def __init__(self):
        self._epoch_ms = time.time() * 1000.0
        self._origin = time.monotonic()

    def now_ms(self):
        return int(self._epoch_ms + (time.monotonic() - self._origin) * 1000.0)

def save_csv(filename, rows, headers):
    """Saves data to a CSV file with given headers."""
    with open(filename, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(headers)
        writer.writerows(rows)

# ========== GRAPH GENERATION ==========
def generate_vigilance_graphs(score_history, alerts, output_dir):
    """
    Generates and saves graphs for the vigilance score and the emitted alerts.

    score_history: list of (timestamp_ms, score, level_value)
    alerts: list of (timestamp_ms, level_value)
    Returns the list of written file paths.
    """
    written = []

    # Score plot
    if score_history:
        times = [datetime.fromtimestamp(ts / 1000.0) for ts, _, _ in score_history]
        scores = [score for _, score, _ in score_history]

        plt.figure(figsize=(12, 6))
        plt.plot(times, scores, color='steelblue', linewidth=1.5, label='Vigilance score')

        # Shade the score bands used by the classifier
        plt.axhspan(0, 20, color='red', alpha=0.1)
        plt.axhspan(20, 40, color='orange', alpha=0.1)
        plt.axhspan(40, 60, color='gold', alpha=0.1)

        alert_times = [datetime.fromtimestamp(ts / 1000.0) for ts, _ in alerts]
        for i, (alert_time, (_, level)) in enumerate(zip(alert_times, alerts)):
            plt.axvline(alert_time, color=LEVEL_COLORS.get(level, 'grey'), linestyle='--', alpha=0.7,
                        label='Alert' if i == 0 else "")

        plt.title('Driver Vigilance Over Time')
        plt.xlabel('Time')
        plt.ylabel('Score')
        plt.ylim(0, 105)
        plt.grid(True, linestyle='--', alpha=0.7)
        plt.legend()
        plt.tight_layout()
        path = os.path.join(output_dir, "vigilance_over_time.png")
        plt.savefig(path)
        plt.close()
        written.append(path)

    # Alerts per level
    if alerts:
        counts = Counter(level for _, level in alerts)
        levels = [level for level in LEVEL_ORDER if counts.get(level)]
        plt.figure(figsize=(8, 4))
        plt.bar(levels, [counts[level] for level in levels],
                color=[LEVEL_COLORS[level] for level in levels])
        plt.title('Alerts by Level')
        plt.xlabel('Level')
        plt.ylabel('Count')
        plt.grid(True, axis='y', linestyle='--', alpha=0.7)
        plt.tight_layout()
        path = os.path.join(output_dir, "alerts_by_level.png")
        plt.savefig(path)
        plt.close()
        written.append(path)

    return written

# ========== PDF REPORT ==========
def generate_session_report(summary, alerts, output_dir, graph_files=()):
    """
    Builds the end-of-session PDF.

    summary: dict returned by VigilanceLogic.summary() plus session start/end.
    alerts: iterable of (time_str, level_value, message)
    graph_files: image paths to embed, normally what generate_vigilance_graphs returned
    """
    pdf_path = os.path.join(output_dir, "vigilance_report.pdf")
    doc = SimpleDocTemplate(pdf_path, pagesize=letter)
    styles = getSampleStyleSheet()
    elements = []

    # Title
    elements.append(Paragraph("Driver Vigilance Session Report", styles['Title']))
    elements.append(Spacer(1, 20))

    # Summary statistics
    elements.append(Paragraph("Session Summary", styles['Heading2']))
    if summary.get("start_time"):
        elements.append(Paragraph(f"Started: {summary['start_time']}", styles['Normal']))
    if summary.get("end_time"):
        elements.append(Paragraph(f"Ended: {summary['end_time']}", styles['Normal']))
    elements.append(Paragraph(f"Frames Processed: {summary.get('frames_processed', 0)}", styles['Normal']))
    elements.append(Paragraph(f"Frames Skipped: {summary.get('frames_skipped', 0)}", styles['Normal']))
    elements.append(Paragraph(f"Average Vigilance: {summary.get('average_score', 100.0):.1f}", styles['Normal']))
    elements.append(Paragraph(f"Blinks Counted: {summary.get('blink_count', 0)}", styles['Normal']))
    alert_counts = summary.get("alert_counts", {})
    counts_text = ", ".join(f"{level}: {alert_counts.get(level, 0)}" for level in LEVEL_ORDER)
    elements.append(Paragraph(f"Alerts: {counts_text}", styles['Normal']))
    elements.append(Spacer(1, 15))

    # Alert Table
    elements.append(Paragraph("Alert Log", styles['Heading2']))
    table_data = [["Timestamp", "Level", "Message"]]
    for ts, level, message in alerts:
        table_data.append([ts, level, Paragraph(message, styles['Normal'])])

    col_widths = [80, 90, 300]
    table = Table(table_data, colWidths=col_widths, repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0,0), (-1,0), colors.grey),
        ('TEXTCOLOR',(0,0),(-1,0),colors.whitesmoke),
        ('ALIGN',(0,0),(-1,-1),'LEFT'),
        ('FONTNAME', (0,0), (-1,0), 'Helvetica-Bold'),
        ('BOTTOMPADDING', (0,0), (-1,0), 12),
        ('GRID', (0,0), (-1,-1), 0.5, colors.black)
    ]))
    elements.append(table)
    elements.append(Spacer(1, 20))

    # --- Start graphs on a new page ---
    if graph_files:
        elements.append(PageBreak())
        elements.append(Paragraph("Graphs and Visualizations", styles['Title']))
        elements.append(Spacer(1, 20))

        for path in graph_files:
            title = os.path.splitext(os.path.basename(path))[0].replace("_", " ").title()
            elements.append(Paragraph(title, styles['Heading3']))
            elements.append(RLImage(path, width=400, height=250))
            elements.append(Spacer(1, 20))

    doc.build(elements)
    print(f"[INFO] Full report saved to {pdf_path}")
    return pdf_path


# ========== FACIAL LANDMARK UTILITIES ==========
def euclidean_distance(p1, p2):
    # 2D only, z is ignored for aspect ratios
    return math.sqrt((p1[0] - p2[0])**2 + (p1[1] - p2[1])**2)

def get_eye_aspect_ratio(eye_landmarks):
    A = euclidean_distance(eye_landmarks[1], eye_landmarks[5])
    B = euclidean_distance(eye_landmarks[2], eye_landmarks[4])
    C = euclidean_distance(eye_landmarks[0], eye_landmarks[3])
    return (A + B) / (2.0 * C) if C != 0 else 0.0

def reference_width(landmarks, index_a, index_b):
    """Horizontal reference distance between two landmarks, 0.0 when the mesh is too small."""
    if landmarks is None or len(landmarks) < MIN_LANDMARKS:
        return 0.0
    return euclidean_distance(landmarks[index_a], landmarks[index_b])

def compute_ear(landmarks, left_eye_indices, right_eye_indices):
    """
    Average Eye Aspect Ratio of both eyes.

    Each eye is six indices p1..p6 taken corner to corner with two vertical
    pairs in between. Returns 0.0 for a mesh with fewer than MIN_LANDMARKS
    points; an eye with zero width contributes 0.0.
    """
    if landmarks is None or len(landmarks) < MIN_LANDMARKS:
        return 0.0
    left_ear = get_eye_aspect_ratio([landmarks[i] for i in left_eye_indices])
    right_ear = get_eye_aspect_ratio([landmarks[i] for i in right_eye_indices])
    return (left_ear + right_ear) / 2.0

def compute_mar(landmarks, mouth_corner_indices, mouth_vertical_indices):
    """Mouth Aspect Ratio: vertical opening over corner-to-corner width."""
    if landmarks is None or len(landmarks) < MIN_LANDMARKS:
        return 0.0
    left_corner, right_corner = (landmarks[i] for i in mouth_corner_indices)
    top_center, bottom_center = (landmarks[i] for i in mouth_vertical_indices)
    width = euclidean_distance(left_corner, right_corner)
    return euclidean_distance(top_center, bottom_center) / width if width != 0 else 0.0
