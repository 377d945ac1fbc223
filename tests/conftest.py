"""
Shared fixtures: synthetic side-view keypoints with exact joint angles.
"""

import math

import pytest

from form_service.models import Landmark, MOVENET_MAPPING, normalize


def _direction(theta_deg):
    """Unit vector theta degrees clockwise from straight up (image coords, y down)."""
    r = math.radians(theta_deg)
    return math.sin(r), -math.cos(r)


def _offset(origin, theta_deg, length):
    dx, dy = _direction(theta_deg)
    return origin[0] + dx * length, origin[1] + dy * length


def side_view_points(hip_angle=75.0, knee_angle=95.0, back_deviation=8.0):
    """
    Canonical landmark -> (x, y) for a side-view squatter.

    hip_angle is shoulder-hip-knee, knee_angle is hip-knee-ankle and
    back_deviation is the shoulder-hip segment's angle from vertical.
    Left and right sides coincide.
    """
    hip = (0.5, 0.6)
    shoulder_theta = -back_deviation
    knee_theta = shoulder_theta + hip_angle
    ankle_theta = knee_theta + 180.0 - knee_angle

    shoulder = _offset(hip, shoulder_theta, 0.30)
    knee = _offset(hip, knee_theta, 0.22)
    ankle = _offset(knee, ankle_theta, 0.22)
    elbow = (shoulder[0] + 0.08, shoulder[1] + 0.10)
    wrist = (shoulder[0] + 0.18, shoulder[1] + 0.10)
    nose = (shoulder[0] + 0.03, shoulder[1] - 0.10)

    points = {
        Landmark.NOSE: nose,
        Landmark.LEFT_EYE: (nose[0] - 0.01, nose[1] - 0.01),
        Landmark.RIGHT_EYE: (nose[0] - 0.01, nose[1] - 0.012),
        Landmark.LEFT_EAR: (nose[0] - 0.04, nose[1]),
        Landmark.RIGHT_EAR: (nose[0] - 0.04, nose[1] - 0.002),
    }
    for side in ("LEFT", "RIGHT"):
        points[Landmark[f"{side}_SHOULDER"]] = shoulder
        points[Landmark[f"{side}_ELBOW"]] = elbow
        points[Landmark[f"{side}_WRIST"]] = wrist
        points[Landmark[f"{side}_HIP"]] = hip
        points[Landmark[f"{side}_KNEE"]] = knee
        points[Landmark[f"{side}_ANKLE"]] = ankle
    return points


@pytest.fixture
def squat_keypoints():
    """Factory: raw MoveNet-order (x, y, confidence) list for a squat pose."""
    def build(hip_angle=75.0, knee_angle=95.0, back_deviation=8.0, confidence=0.9, missing=()):
        points = side_view_points(hip_angle, knee_angle, back_deviation)
        raw = []
        for lm in Landmark:
            x, y = points[lm]
            raw.append((x, y, 0.1 if lm in missing else confidence))
        return raw
    return build


@pytest.fixture
def squat_pose(squat_keypoints):
    """Factory: normalized Pose for a squat pose."""
    def build(timestamp_ms=0.0, **kwargs):
        pose = normalize(squat_keypoints(**kwargs), MOVENET_MAPPING, timestamp_ms=timestamp_ms)
        assert pose is not None
        return pose
    return build


@pytest.fixture
def feed():
    """Factory: push an angle sequence through a RepCounter, collect events."""
    def run(counter, angles, step_ms=33.0, start_ms=0.0):
        events = []
        for i, angle in enumerate(angles):
            event = counter.update(angle, start_ms + i * step_ms)
            if event is not None:
                events.append(event)
        return events
    return run
