"""
FORMCOACH Form Service - Angle Engine

Pure geometric functions over 2-D landmark positions. Callers are expected
to pass only confident keypoints; geometry that cannot be measured raises
DegenerateAngle / InsufficientPrecision instead of returning 0 or NaN.
"""

import math
import numpy as np
from enum import Enum
from typing import Optional, Sequence, Tuple, Union

from .errors import DegenerateAngle, InsufficientPrecision
from .pose import Keypoint, Landmark, Pose

# Below this length (normalized units) a segment is too short to trust
PRECISION_FLOOR = 1e-4

PointLike = Union[Keypoint, Sequence[float], np.ndarray]
LandmarkGroup = Tuple[Landmark, ...]


class MetricKind(Enum):
    """Measurement kinds an exercise profile can declare."""
    ANGLE = "angle"            # interior angle at the middle landmark
    VERTICAL = "vertical"      # segment deviation from vertical
    HORIZONTAL = "horizontal"  # segment deviation from horizontal
    LINE = "line"              # middle landmark's distance from the outer line

    @property
    def arity(self) -> int:
        return 2 if self in (MetricKind.VERTICAL, MetricKind.HORIZONTAL) else 3


def _as_point(p: PointLike) -> np.ndarray:
    if isinstance(p, Keypoint):
        point = p.to_numpy()
    else:
        point = np.asarray(p, dtype=float).reshape(-1)[:2]
    if not np.all(np.isfinite(point)):
        raise InsufficientPrecision(f"Non-finite coordinates: {point.tolist()}")
    return point


def _check_length(vec: np.ndarray, label: str) -> float:
    length = float(np.linalg.norm(vec))
    if length == 0.0:
        raise DegenerateAngle(f"Zero-length segment {label}: landmarks coincide")
    if length < PRECISION_FLOOR:
        raise InsufficientPrecision(f"Segment {label} too short ({length:.2e})")
    return length


# ═══════════════════════════════════════════════════════════════════════════════
# PRIMITIVES
# ═══════════════════════════════════════════════════════════════════════════════

def angle_between(a: PointLike, b: PointLike, c: PointLike) -> float:
    """
    Calculate angle at point b formed by points a-b-c.

    Args:
        a, b, c: 2-D points (Keypoint or array-like)

    Returns:
        Angle in degrees (0-180)
    """
    pa, pb, pc = _as_point(a), _as_point(b), _as_point(c)
    ba = pa - pb
    bc = pc - pb

    norm_ba = _check_length(ba, "b->a")
    norm_bc = _check_length(bc, "b->c")

    cosine_angle = np.dot(ba, bc) / (norm_ba * norm_bc)
    cosine_angle = np.clip(cosine_angle, -1.0, 1.0)
    return float(np.degrees(np.arccos(cosine_angle)))


def deviation_from_vertical(a: PointLike, b: PointLike) -> float:
    """Angle of segment a->b relative to the vertical axis, in [0, 90]."""
    pa, pb = _as_point(a), _as_point(b)
    seg = pb - pa
    _check_length(seg, "a->b")
    return math.degrees(math.atan2(abs(seg[0]), abs(seg[1])))


def deviation_from_horizontal(a: PointLike, b: PointLike) -> float:
    """Angle of segment a->b relative to the horizontal axis, in [0, 90]."""
    pa, pb = _as_point(a), _as_point(b)
    seg = pb - pa
    _check_length(seg, "a->b")
    return math.degrees(math.atan2(abs(seg[1]), abs(seg[0])))


def line_deviation(a: PointLike, b: PointLike, c: PointLike) -> float:
    """
    Perpendicular distance of b from the line through a and c, normalized
    by the length of a->c.

    0.0 means a perfectly straight a-b-c chain (plank, push-up body line).
    """
    pa, pb, pc = _as_point(a), _as_point(b), _as_point(c)
    ac = pc - pa
    ab = pb - pa

    length = _check_length(ac, "a->c")
    cross = ac[0] * ab[1] - ac[1] * ab[0]
    return float(abs(cross) / (length * length))


# ═══════════════════════════════════════════════════════════════════════════════
# POSE MEASUREMENT
# ═══════════════════════════════════════════════════════════════════════════════

_MEASURES = {
    MetricKind.ANGLE: angle_between,
    MetricKind.VERTICAL: deviation_from_vertical,
    MetricKind.HORIZONTAL: deviation_from_horizontal,
    MetricKind.LINE: line_deviation,
}


def measure(pose: Pose, kind: MetricKind, groups: Sequence[LandmarkGroup]) -> Optional[float]:
    """
    Evaluate a measurement on a pose.

    Each group is one candidate landmark chain (typically the left and the
    right side of the body). Groups with any unconfident landmark are
    skipped; the result is the mean over the remaining groups.

    Returns:
        Measured value, or None when no group is fully confident

    Raises:
        DegenerateAngle: a fully confident group has coincident landmarks
    """
    func = _MEASURES[kind]
    values = []
    for group in groups:
        if not pose.is_visible(*group):
            continue
        values.append(func(*(pose[lm] for lm in group)))

    if not values:
        return None
    return float(np.mean(values))
