import json

import numpy as np

from posereps import analyze
from posereps.config import View

from support import FakeEstimator, factory_for, squat_pose

# Two full squats sampled at 20 fps (50ms per frame).
ANGLES = [170] * 6 + [90] * 6 + [170] * 8 + [90] * 6 + [170] * 6


def test_reference_rep_count_finds_troughs():
    signal = [170.0] * 10 + [90.0] * 10 + [170.0] * 10 + [90.0] * 10 + [170.0] * 10
    assert analyze.reference_rep_count(signal, fps=20, min_gap_ms=350) == 2


def test_reference_rep_count_tolerates_gaps():
    signal = [None, None] + [170.0] * 10 + [None] * 3 + [90.0] * 10 + [170.0] * 10
    assert analyze.reference_rep_count(signal, fps=20, min_gap_ms=350) == 1
    assert analyze.reference_rep_count([None, 1.0], fps=20, min_gap_ms=350) == 0


def test_summarize_counts_events():
    events = [
        {"type": "REP_COMPLETE", "ts": 100, "confidence": 0.9},
        {"type": "POSE_LOST", "ts": 200},
        {"type": "HEARTBEAT", "ts": 0, "fps": 24.0},
        {"type": "HEARTBEAT", "ts": 1000, "fps": 20.0},
    ]
    metrics = [
        {"ts": 0, "smoothed": 170.0, "confidence": 0.8, "valid": True},
        {"ts": 50, "smoothed": None, "confidence": 0.0, "valid": False},
    ]
    summary = analyze.summarize(events, metrics, fps=30, min_gap_ms=350)
    assert summary["total_reps_detected"] == 1
    assert summary["pose_lost_count"] == 1
    assert summary["error_count"] == 0
    assert summary["frames_processed"] == 2
    assert summary["avg_confidence"] == 0.8
    assert summary["avg_fps"] == 22.0


def test_analyze_video_writes_report(monkeypatch, tmp_path):
    def fake_frames(path):
        for idx, _ in enumerate(ANGLES):
            yield np.zeros((4, 4, 3), dtype=np.uint8), idx, idx * 50.0, 20.0

    meta = {"fps": 20.0, "frame_count": len(ANGLES), "duration_ms": len(ANGLES) * 50.0, "width": 4, "height": 4}
    monkeypatch.setattr(analyze, "video_frames", fake_frames)
    monkeypatch.setattr(analyze, "video_metadata", lambda path: meta)

    est = FakeEstimator([squat_pose(a) for a in ANGLES])
    out = tmp_path / "report.json"
    report = analyze.analyze_video(
        "clips/squat_front.mp4",
        view=View.FRONT,
        config_override={"EMA_ALPHA": 0.9},
        estimator_factory=factory_for(est),
        out_path=str(out),
    )

    assert report["video_meta"]["id"] == "squat_front"
    assert report["config"]["ema_alpha"] == 0.9
    assert report["summary"]["total_reps_detected"] == 2
    assert report["summary"]["reference_reps"] == 2
    assert report["summary"]["frames_processed"] == len(ANGLES)
    assert est.closed
    assert json.loads(out.read_text())["summary"] == report["summary"]
