"""
Profile-driven form scoring and feedback selection.
"""

import dataclasses

import pytest

from form_service.models import (
    DegenerateAngle,
    FormAnalyzer,
    FormQuality,
    IncompletePose,
    Landmark,
    MOVENET_MAPPING,
    RepPhase,
    SQUAT_PROFILE,
    interpolate_score,
    normalize,
    redistribute_weights,
)

HEAD = (Landmark.NOSE, Landmark.LEFT_EYE, Landmark.RIGHT_EYE, Landmark.LEFT_EAR, Landmark.RIGHT_EAR)


@pytest.fixture
def analyzer():
    return FormAnalyzer()


def test_good_squat_is_affirmed(analyzer, squat_pose):
    result = analyzer.analyze(squat_pose(hip_angle=75, knee_angle=95, back_deviation=8), SQUAT_PROFILE)

    assert result.subscores == {
        "depth": pytest.approx(100.0),
        "knee": pytest.approx(100.0),
        "back": pytest.approx(100.0),
    }
    assert result.score == pytest.approx(100.0)
    assert result.feedback == "Great form!"
    assert result.focus_metric is None
    assert result.quality is FormQuality.EXCELLENT
    assert result.measurements["depth"] == pytest.approx(75.0)


def test_leaning_squat_gets_back_cue(analyzer, squat_pose):
    result = analyzer.analyze(squat_pose(hip_angle=75, knee_angle=95, back_deviation=30), SQUAT_PROFILE)

    assert result.subscores["back"] == pytest.approx(0.0)
    assert result.score == pytest.approx(70.0)
    assert result.feedback == "Keep your back straight"
    assert result.focus_metric == "back"
    assert result.quality is FormQuality.FAIR


@pytest.mark.parametrize("value,great,poor,expected", [
    (105.0, 80.0, 130.0, 50.0),
    (60.0, 80.0, 130.0, 100.0),
    (200.0, 80.0, 130.0, 0.0),
    (155.0, 170.0, 140.0, 50.0),
    (180.0, 170.0, 140.0, 100.0),
    (100.0, 170.0, 140.0, 0.0),
])
def test_interpolate_score(value, great, poor, expected):
    assert interpolate_score(value, great, poor) == pytest.approx(expected)


def test_interpolate_score_moves_toward_great():
    closer = interpolate_score(90.0, 80.0, 130.0)
    farther = interpolate_score(110.0, 80.0, 130.0)
    assert closer > farther


def test_redistribute_weights_sums_to_one():
    weights = redistribute_weights({"depth": 0.4, "back": 0.3})
    assert sum(weights.values()) == pytest.approx(1.0)
    assert weights["depth"] == pytest.approx(0.4 / 0.7)


def test_missing_ankles_exclude_knee_metric(analyzer, squat_pose):
    pose = squat_pose(
        hip_angle=105, back_deviation=13,
        missing=(Landmark.LEFT_ANKLE, Landmark.RIGHT_ANKLE),
    )
    result = analyzer.analyze(pose, SQUAT_PROFILE)

    assert result.excluded == ("knee",)
    assert set(result.subscores) == {"depth", "back"}
    assert result.subscores["depth"] == pytest.approx(50.0)
    assert result.subscores["back"] == pytest.approx(80.0)
    assert result.score == pytest.approx((0.4 * 50.0 + 0.3 * 80.0) / 0.7)
    assert result.feedback == "Go deeper: lower your hips"


def test_pose_without_body_is_incomplete(analyzer, squat_pose):
    body = tuple(lm for lm in Landmark if lm not in HEAD)
    pose = squat_pose(missing=body)

    with pytest.raises(IncompletePose) as exc_info:
        analyzer.analyze(pose, SQUAT_PROFILE)
    assert exc_info.value.missing_metrics == ["depth", "knee", "back"]


def test_coincident_landmarks_propagate(analyzer):
    pose = normalize([(0.5, 0.5, 0.9)] * 17, MOVENET_MAPPING)
    with pytest.raises(DegenerateAngle):
        analyzer.analyze(pose, SQUAT_PROFILE)


def test_bottom_only_metrics_skipped_while_standing(analyzer, squat_pose):
    pose = squat_pose(hip_angle=170, knee_angle=175, back_deviation=8)
    result = analyzer.analyze(pose, SQUAT_PROFILE, previous_phase=RepPhase.STANDING)

    assert set(result.subscores) == {"back"}
    assert result.score == pytest.approx(100.0)
    assert result.excluded == ()


def test_bottom_phase_scores_every_metric(analyzer, squat_pose):
    result = analyzer.analyze(squat_pose(), SQUAT_PROFILE, previous_phase=RepPhase.BOTTOM)
    assert set(result.subscores) == {"depth", "knee", "back"}


def test_score_independent_of_metric_order(analyzer, squat_pose):
    reversed_profile = dataclasses.replace(
        SQUAT_PROFILE, metrics=tuple(reversed(SQUAT_PROFILE.metrics))
    )
    pose = squat_pose(hip_angle=100, knee_angle=125, back_deviation=18)

    forward = analyzer.analyze(pose, SQUAT_PROFILE)
    backward = analyzer.analyze(pose, reversed_profile)

    assert forward.score == pytest.approx(backward.score)
    assert forward.subscores == pytest.approx(backward.subscores)


def test_feedback_tie_goes_to_first_declared_metric():
    subscores = {"back": 40.0, "knee": 40.0, "depth": 90.0}
    feedback, focus = FormAnalyzer.select_feedback(SQUAT_PROFILE, subscores)
    assert focus == "knee"
    assert feedback == "Bend your knees more"


def test_feedback_names_lowest_subscore():
    subscores = {"depth": 60.0, "knee": 20.0, "back": 65.0}
    _, focus = FormAnalyzer.select_feedback(SQUAT_PROFILE, subscores)
    assert focus == "knee"


def test_score_at_cutoff_is_not_flagged():
    subscores = {"depth": 100.0, "knee": 100.0, "back": 70.0}
    feedback, focus = FormAnalyzer.select_feedback(SQUAT_PROFILE, subscores)
    assert feedback == "Great form!"
    assert focus is None


def test_result_to_dict(analyzer, squat_pose):
    data = analyzer.analyze(squat_pose(timestamp_ms=40.0), SQUAT_PROFILE).to_dict()
    assert data["exercise"] == "squat"
    assert data["quality"] == "excellent"
    assert data["timestamp_ms"] == 40.0
    assert set(data["subscores"]) == {"depth", "knee", "back"}
