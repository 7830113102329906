import pytest

from posereps.config import (
    DEFAULT_CONFIG,
    DEFAULT_TARGET_FPS,
    View,
    config_from_env,
    effective_thresholds,
    parse_view,
    resolve_target_fps,
    settings_from_env,
)


def test_defaults():
    cfg = DEFAULT_CONFIG
    assert cfg.keypoint_confidence_threshold == 0.5
    assert cfg.debounce_ms == 350
    assert cfg.min_down_hold_ms == 100
    assert (cfg.theta_down_deg, cfg.theta_up_deg) == (100, 160)
    assert cfg.pose_lost_timeout_ms == 500
    assert cfg.ema_alpha == 0.6


def test_patch_clamps_and_ignores_junk():
    cfg = DEFAULT_CONFIG.patched({
        "debounce_ms": 50,
        "ema_alpha": 2,
        "theta_down_deg": 95,
        "unknown": 3,
        "theta_up_deg": "170",
        "min_down_hold_ms": True,
    })
    assert cfg.debounce_ms == 200
    assert cfg.ema_alpha == 0.9
    assert cfg.theta_down_deg == 95
    assert cfg.theta_up_deg == 160
    assert cfg.min_down_hold_ms == 100
    assert DEFAULT_CONFIG.debounce_ms == 350


def test_patch_accepts_upper_case_aliases():
    cfg = DEFAULT_CONFIG.patched({"TH_CONF": 0.7, "MIN_LEG_LENGTH_PIXELS": 80})
    assert cfg.keypoint_confidence_threshold == 0.7
    assert cfg.min_leg_length_px == 80


def test_empty_patch_returns_same_config():
    assert DEFAULT_CONFIG.patched({}) is DEFAULT_CONFIG


def test_view_calibration():
    front = effective_thresholds(DEFAULT_CONFIG, View.FRONT)
    assert (front.confidence, front.theta_down, front.theta_up) == (0.5, 100, 160)

    side = effective_thresholds(DEFAULT_CONFIG, View.SIDE)
    assert side.confidence == pytest.approx(0.45)
    assert side.theta_down == 95
    assert side.ankle_symmetry_multiplier == 2.0

    rear = effective_thresholds(DEFAULT_CONFIG, View.REAR)
    assert rear.confidence == pytest.approx(0.3)
    assert (rear.theta_down, rear.theta_up) == (85, 150)
    assert rear.single_side_penalty == pytest.approx(0.85)


def test_effective_confidence_is_bounded():
    low = DEFAULT_CONFIG.patched({"keypoint_confidence_threshold": 0.0})
    assert effective_thresholds(low, View.REAR).confidence == 0.2
    high = DEFAULT_CONFIG.patched({"keypoint_confidence_threshold": 1.0})
    assert effective_thresholds(high, View.FRONT).confidence == 0.95


def test_parse_view():
    assert parse_view("front") is View.FRONT
    assert parse_view(" Side ") is View.SIDE
    assert parse_view("back") is View.REAR
    assert parse_view("top") is None
    assert parse_view(None) is None


@pytest.mark.parametrize("value, expected", [(24, 24), (30, 30), (25, 24), (29, 30), (60, 30), (0, DEFAULT_TARGET_FPS), ("30", DEFAULT_TARGET_FPS)])
def test_resolve_target_fps(value, expected):
    assert resolve_target_fps(value) == expected


def test_config_from_env():
    cfg = config_from_env(environ={"POSEREPS_EMA_ALPHA": "0.4", "POSEREPS_DEBOUNCE_MS": "oops"})
    assert cfg.ema_alpha == 0.4
    assert cfg.debounce_ms == 350


def test_settings_from_env():
    settings = settings_from_env({"POSEREPS_VIEW": "rear", "POSEREPS_TARGET_FPS": "28", "POSEREPS_DELEGATE": "GPU"})
    assert settings["view"] is View.REAR
    assert settings["target_fps"] == 30
    assert settings["delegate"] == "gpu"
    assert settings["model"] == "pose_landmarker_lite"
    assert settings["config"] == DEFAULT_CONFIG
