import pytest

from posereps.config import DEFAULT_CONFIG, View
from posereps.detector import RepDetector
from posereps.protocol import EventType, Phase

from support import rear_pose, squat_pose

# Light smoothing keeps the step responses short and easy to reason about.
FAST = DEFAULT_CONFIG.patched({"ema_alpha": 0.9})
STEP_MS = 50


def feed(detector, poses, start=0):
    """Evaluate one pose per STEP_MS; returns (ts, event) pairs."""
    out = []
    for i, kps in enumerate(poses):
        ts = start + i * STEP_MS
        for event in detector.evaluate(kps, ts).events:
            out.append((ts, event))
    return out


def angles(*values):
    return [squat_pose(v) for v in values]


def reps(events):
    return [ts for ts, e in events if e.type is EventType.REP_COMPLETE]


def test_full_squat_counts_one_rep():
    det = RepDetector(FAST, View.FRONT)
    events = feed(det, angles(170, 170, 170, 90, 90, 90, 170))
    assert reps(events) == [300]
    assert det.rep_count == 1
    assert det.state.phase is Phase.UP
    rep = events[-1][1]
    assert rep.exercise == "squat"
    assert rep.confidence == pytest.approx(0.9)


def test_short_dip_below_hold_does_not_count():
    det = RepDetector(FAST, View.FRONT)
    events = feed(det, angles(170, 170, 90, 90, 170, 170))
    assert reps(events) == []
    assert det.state.phase is Phase.UP


def test_shallow_squat_does_not_count():
    det = RepDetector(FAST, View.FRONT)
    assert reps(feed(det, angles(170, 120, 120, 120, 120, 170))) == []


def test_debounce_delays_second_rep():
    det = RepDetector(FAST, View.FRONT)
    poses = angles(170, 170, 170, 90, 90, 90, 170, 90, 90, 90, 170, 170, 170, 170, 170)
    events = feed(det, poses)
    # Second ascent at 500 is within 350ms of the first rep; counted once the window passes.
    assert reps(events) == [300, 650]


def test_starts_in_no_pose_until_standing():
    det = RepDetector(FAST, View.FRONT)
    analysis = det.evaluate(squat_pose(90), 0)
    assert analysis.valid
    assert analysis.phase is Phase.NO_POSE
    # Starting from the bottom never produces a rep on the way up.
    assert reps(feed(det, angles(90, 90, 170), start=50)) == []
    assert det.state.phase is Phase.UP


def test_single_side_penalty_applied_to_rep_confidence():
    det = RepDetector(FAST, View.FRONT)
    poses = [squat_pose(a, right_score=0.1) for a in (170, 170, 170, 90, 90, 90, 170)]
    events = feed(det, poses)
    assert reps(events) == [300]
    assert events[-1][1].confidence == pytest.approx(0.72)


def test_pose_lost_once_then_regained():
    det = RepDetector(FAST, View.FRONT)
    events = feed(det, angles(170, 170, 170))
    events += feed(det, [None] * 12, start=150)
    lost = [ts for ts, e in events if e.type is EventType.POSE_LOST]
    assert lost == [600]
    assert det.state.phase is Phase.NO_POSE
    assert det.state.smoothed_signal is None

    regained = det.evaluate(squat_pose(170), 800)
    assert [e.type for e in regained.events] == [EventType.POSE_REGAINED]
    assert not det.state.pose_lost_notified


def test_brief_dropout_keeps_phase():
    det = RepDetector(FAST, View.FRONT)
    feed(det, angles(170, 170, 170, 90, 90, 90))
    assert det.state.phase is Phase.DOWN
    events = feed(det, [None, None], start=300)
    assert events == []
    assert det.state.phase is Phase.DOWN
    assert reps(feed(det, angles(170), start=400)) == [400]


def test_same_input_same_output():
    poses = angles(170, 170, 170, 90, 90, 90, 170, 170)
    first = RepDetector(FAST, View.FRONT)
    second = RepDetector(FAST, View.FRONT)
    assert feed(first, poses) == feed(second, poses)
    first.reset()
    assert first.rep_count == 0
    assert feed(first, poses) == feed(RepDetector(FAST, View.FRONT), poses)
    assert first.rep_count == 1


def test_raised_ankle_never_counts():
    det = RepDetector(FAST, View.FRONT)
    poses = [squat_pose(a, left_ankle_lift=80) for a in (170, 170, 170, 90, 90, 90, 170)]
    events = feed(det, poses)
    assert reps(events) == []
    analysis = det.evaluate(squat_pose(170, left_ankle_lift=80), 400)
    assert not analysis.valid
    assert analysis.rejected_by == "ankle_plant"


def test_back_facing_subject_rejected_in_front_view():
    det = RepDetector(FAST, View.FRONT)
    analysis = det.evaluate(squat_pose(170, face_score=0.05), 0)
    assert not analysis.valid
    assert analysis.rejected_by == "orientation"

    unchecked = RepDetector(FAST, View.FRONT, validate_orientation=False)
    assert unchecked.evaluate(squat_pose(170, face_score=0.05), 0).valid


def test_missing_ankles_reported_but_allowed():
    det = RepDetector(FAST, View.FRONT)
    analysis = det.evaluate(squat_pose(170, right_score=0.1), 0)
    assert analysis.valid
    assert analysis.plant_check is not None
    assert analysis.plant_check.reason == "missing_ankles"


def test_rear_view_counts_from_hip_displacement():
    det = RepDetector(FAST, View.REAR)
    poses = [rear_pose(d) for d in (100, 100, 100, 30, 30, 30, 100)]
    events = feed(det, poses)
    assert reps(events) == [300]
    assert det.state.baseline_displacement == pytest.approx(100.0)


def test_rear_baseline_rises_while_standing():
    det = RepDetector(FAST, View.REAR)
    feed(det, [rear_pose(d) for d in (80, 80, 120, 120)])
    assert det.state.baseline_displacement == pytest.approx(119.6)
    # 50px only clears the down threshold (0.45 x baseline) because the baseline rose.
    events = feed(det, [rear_pose(d) for d in (50, 50, 50, 50, 120)], start=200)
    assert reps(events) == [400]


def test_set_view_resets_state():
    det = RepDetector(FAST, View.FRONT)
    feed(det, angles(170, 170, 170, 90, 90, 90, 170))
    det.set_view(View.SIDE)
    assert det.rep_count == 0
    assert det.state.phase is Phase.NO_POSE
    assert det.view is View.SIDE


def test_second_ascent_inside_debounce_window_not_counted():
    det = RepDetector(FAST, View.FRONT)
    poses = angles(170, 170, 170, 90, 90, 90, 170, 90, 90, 90, 170, 90, 90)
    assert reps(feed(det, poses)) == [300]
    assert det.state.phase is Phase.DOWN


def _sweep(hold_ms):
    """170 -> 90 -> 170 at 20 fps over 0..1000ms, holding 90 for `hold_ms` once reached at 300ms."""
    values = [170] * 5 + [130, 90] + [90] * (hold_ms // STEP_MS) + [130]
    values += [170] * (21 - len(values))
    return angles(*values)


@pytest.mark.parametrize("hold_ms, expected", [(150, [600]), (50, [])])
def test_default_config_sweep_scenarios(hold_ms, expected):
    det = RepDetector(DEFAULT_CONFIG, View.FRONT)
    events = feed(det, _sweep(hold_ms))
    assert reps(events) == expected
    for ts, event in events:
        if event.type is EventType.REP_COMPLETE:
            assert event.confidence == pytest.approx(0.9)
