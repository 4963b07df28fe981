import os

import pytest

import config
from config import DetectionConfig


def test_defaults():
    cfg = DetectionConfig()
    assert cfg.smoothing_window == 5
    assert cfg.blink_ceiling_ms == 500
    assert config.ALERT_COOLDOWN_MIN_MS <= cfg.alert_cooldown_ms <= config.ALERT_COOLDOWN_MAX_MS
    assert len(cfg.left_eye_indices) == len(cfg.right_eye_indices) == 6


def test_output_dir_created():
    assert os.path.isdir(config.OUTPUT_DIR)


def test_config_is_read_only():
    cfg = DetectionConfig()
    with pytest.raises(AttributeError):
        cfg.ear_threshold = 0.1


@pytest.mark.parametrize("overrides", [
    {"ear_threshold": 0},
    {"mar_threshold": -0.6},
    {"alert_cooldown_ms": 1000},
    {"alert_cooldown_ms": 6000},
    {"smoothing_window": 10},
    {"blink_ceiling_ms": 1000},
    {"left_eye_indices": (33, 160, 158, 133)},
    {"mouth_vertical_indices": (13, 900)},
])
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValueError):
        DetectionConfig(**overrides)


def test_cooldown_range_accepted():
    assert DetectionConfig(alert_cooldown_ms=5000).alert_cooldown_ms == 5000
