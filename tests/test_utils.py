import csv
import os

import numpy as np
import pytest

from config import LEFT_EYE_INDICES, RIGHT_EYE_INDICES, MOUTH_CORNER_INDICES, MOUTH_VERTICAL_INDICES
from utils import (
    euclidean_distance, get_eye_aspect_ratio, compute_ear, compute_mar, reference_width,
    save_csv, generate_vigilance_graphs, generate_session_report, SessionClock,
)
import utils


def test_euclidean_distance_ignores_z():
    assert euclidean_distance((0, 0, 0), (3, 4, 100)) == pytest.approx(5.0)


def test_eye_aspect_ratio_formula():
    eye = [(0, 0), (1, 1), (2, 1), (3, 0), (2, -1), (1, -1)]
    # (2 + 2) / (2 * 3)
    assert get_eye_aspect_ratio(eye) == pytest.approx(4 / 6)


def test_eye_aspect_ratio_zero_width():
    eye = [(1, 0), (1, 1), (1, 1), (1, 0), (1, -1), (1, -1)]
    assert get_eye_aspect_ratio(eye) == 0.0


def test_compute_ear_averages_both_eyes(make_points):
    points = make_points(ear=0.3)
    # Close only the right eye
    p1, p2, p3, p4, p5, p6 = RIGHT_EYE_INDICES
    points[[p2, p3]] = points[[p2, p3]] * [1, 0, 1]
    points[[p5, p6]] = points[[p5, p6]] * [1, 0, 1]
    assert compute_ear(points, LEFT_EYE_INDICES, RIGHT_EYE_INDICES) == pytest.approx(0.15)


def test_compute_ear_decreases_as_eye_closes(make_points):
    openings = [0.4, 0.3, 0.2, 0.1, 0.05, 0.0]
    ears = [compute_ear(make_points(ear=o), LEFT_EYE_INDICES, RIGHT_EYE_INDICES) for o in openings]
    assert all(a > b for a, b in zip(ears, ears[1:]))


def test_compute_ear_is_scale_invariant(make_points):
    points = make_points(ear=0.3)
    scaled = points * 640
    assert compute_ear(scaled, LEFT_EYE_INDICES, RIGHT_EYE_INDICES) == pytest.approx(
        compute_ear(points, LEFT_EYE_INDICES, RIGHT_EYE_INDICES))


def test_compute_ear_insufficient_landmarks(make_points):
    points = make_points(ear=0.3, count=400)
    assert compute_ear(points, LEFT_EYE_INDICES, RIGHT_EYE_INDICES) == 0.0
    assert compute_ear(None, LEFT_EYE_INDICES, RIGHT_EYE_INDICES) == 0.0


def test_compute_ear_degenerate_eyes(make_points):
    points = make_points(ear=0.3)
    for indices in (LEFT_EYE_INDICES, RIGHT_EYE_INDICES):
        points[indices[3]] = points[indices[0]]
    assert compute_ear(points, LEFT_EYE_INDICES, RIGHT_EYE_INDICES) == 0.0


def test_compute_mar(make_points):
    points = make_points(mar=0.7)
    assert compute_mar(points, MOUTH_CORNER_INDICES, MOUTH_VERTICAL_INDICES) == pytest.approx(0.7)


def test_compute_mar_zero_width_and_short_mesh(make_points):
    points = make_points(mar=0.7)
    left, right = MOUTH_CORNER_INDICES
    points[right] = points[left]
    assert compute_mar(points, MOUTH_CORNER_INDICES, MOUTH_VERTICAL_INDICES) == 0.0
    assert compute_mar(make_points(mar=0.7)[:300], MOUTH_CORNER_INDICES, MOUTH_VERTICAL_INDICES) == 0.0


def test_reference_width(make_points):
    points = make_points()
    assert reference_width(points, *MOUTH_CORNER_INDICES) == pytest.approx(1.0)
    assert reference_width(points[:100], *MOUTH_CORNER_INDICES) == 0.0


def test_save_csv(tmp_path):
    path = tmp_path / "alerts.csv"
    save_csv(str(path), [("12:00:00", "critical", "critical - Eyes closed 3s")], ["Timestamp", "Level", "Message"])
    with open(path, newline='', encoding='utf-8') as f:
        rows = list(csv.reader(f))
    assert rows == [["Timestamp", "Level", "Message"], ["12:00:00", "critical", "critical - Eyes closed 3s"]]


def test_graphs_and_report(tmp_path):
    start = 1_700_000_000_000
    history = [(start + i * 1000, 100.0 - i * 10, "normal") for i in range(8)]
    alerts = [(start + 3000, "drowsy"), (start + 7000, "critical")]
    written = generate_vigilance_graphs(history, alerts, str(tmp_path))
    assert sorted(os.path.basename(p) for p in written) == ["alerts_by_level.png", "vigilance_over_time.png"]

    summary = {
        "frames_processed": 8, "frames_skipped": 1, "average_score": 65.0, "blink_count": 2,
        "alert_counts": {"normal": 0, "drowsy": 1, "very_drowsy": 0, "critical": 1},
    }
    rows = [("12:00:03", "drowsy", "drowsy - Eyes closed 1s"), ("12:00:07", "critical", "critical - Eyes closed 3s")]
    pdf_path = generate_session_report(summary, rows, str(tmp_path), written)
    assert os.path.getsize(pdf_path) > 0


def test_graphs_with_no_data(tmp_path):
    assert generate_vigilance_graphs([], [], str(tmp_path)) == []


def test_report_embeds_only_this_sessions_graphs(tmp_path, monkeypatch):
    start = 1_700_000_000_000
    history = [(start + i * 1000, 100.0, "normal") for i in range(3)]
    # An earlier session left an alerts graph in the same directory
    generate_vigilance_graphs(history, [(start + 1000, "critical")], str(tmp_path))
    written = generate_vigilance_graphs(history, [], str(tmp_path))
    assert [os.path.basename(p) for p in written] == ["vigilance_over_time.png"]

    embedded = []
    real_image = utils.RLImage

    def recording_image(path, **kwargs):
        embedded.append(os.path.basename(path))
        return real_image(path, **kwargs)

    monkeypatch.setattr(utils, "RLImage", recording_image)
    generate_session_report({"frames_processed": 3}, [], str(tmp_path), written)
    assert embedded == ["vigilance_over_time.png"]


def test_session_clock_ignores_wall_clock_steps(monkeypatch):
    wall = iter([1_000.0, 10.0, 5.0])
    mono = iter([50.0, 50.25, 50.5])
    monkeypatch.setattr(utils.time, "time", lambda: next(wall))
    monkeypatch.setattr(utils.time, "monotonic", lambda: next(mono))
    clock = SessionClock()
    first = clock.now_ms()
    second = clock.now_ms()
    assert first == 1_000_250
    assert second == 1_000_500
