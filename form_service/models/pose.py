"""
FORMCOACH Form Service - Canonical Pose Model

Normalizes keypoints from heterogeneous pose detectors (MoveNet 17-point,
BlazePose / ML Kit 33-point) into one fixed 17-landmark vocabulary with
normalized 0-1 coordinates and confidence gating.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Any, Iterator
from enum import IntEnum


# Keypoints at or below this confidence are replaced by the sentinel
MIN_KEYPOINT_CONFIDENCE = 0.3

# Fewer confident keypoints than this and the frame has no pose
MIN_VALID_KEYPOINTS = 5

SENTINEL_POSITION = (0.0, 0.0)


# ═══════════════════════════════════════════════════════════════════════════════
# LANDMARKS AND DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class Landmark(IntEnum):
    """Canonical 17-point body landmark vocabulary (COCO order)."""
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


NUM_LANDMARKS = len(Landmark)


@dataclass(frozen=True)
class RawKeypoint:
    """One detector-native keypoint, before mapping and gating."""
    x: float
    y: float
    confidence: float


@dataclass(frozen=True)
class Keypoint:
    """A single canonical landmark observation."""
    x: float
    y: float
    confidence: float

    @property
    def is_valid(self) -> bool:
        return self.confidence > 0.0

    def to_numpy(self) -> np.ndarray:
        return np.array([self.x, self.y], dtype=float)


SENTINEL_KEYPOINT = Keypoint(x=SENTINEL_POSITION[0], y=SENTINEL_POSITION[1], confidence=0.0)


@dataclass(frozen=True)
class Pose:
    """
    One frame's detection result.

    Always holds exactly 17 keypoints ordered by Landmark, so call sites can
    index positionally. Construct through normalize(); a Pose is never
    created for a frame with too few confident keypoints.
    """
    keypoints: Tuple[Keypoint, ...]
    score: float
    timestamp_ms: float = 0.0

    def __post_init__(self):
        if len(self.keypoints) != NUM_LANDMARKS:
            raise ValueError(
                f"Pose requires {NUM_LANDMARKS} keypoints, got {len(self.keypoints)}"
            )

    def __getitem__(self, landmark: Landmark) -> Keypoint:
        return self.keypoints[int(landmark)]

    def __iter__(self) -> Iterator[Keypoint]:
        return iter(self.keypoints)

    def __len__(self) -> int:
        return len(self.keypoints)

    @property
    def valid_count(self) -> int:
        return sum(1 for kp in self.keypoints if kp.is_valid)

    def is_visible(self, *landmarks: Landmark) -> bool:
        """True when every given landmark cleared the confidence gate."""
        return all(self[lm].is_valid for lm in landmarks)

    def point(self, landmark: Landmark) -> np.ndarray:
        return self[landmark].to_numpy()

    def to_dict(self) -> Dict[str, Any]:
        """Convert pose keypoints to JSON-serializable dict."""
        return {
            "timestamp_ms": self.timestamp_ms,
            "score": round(self.score, 4),
            "keypoints": [
                {
                    "id": lm.value,
                    "name": lm.name.lower(),
                    "x": kp.x,
                    "y": kp.y,
                    "confidence": kp.confidence,
                }
                for lm, kp in zip(Landmark, self.keypoints)
            ],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# DETECTOR MAPPINGS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DetectorMapping:
    """
    Static table from canonical landmarks to detector-native indices.

    The table must be total: every canonical landmark has exactly one
    source index.
    """
    name: str
    num_keypoints: int
    source_indices: Dict[Landmark, int] = field(default_factory=dict)

    def __post_init__(self):
        missing = [lm.name for lm in Landmark if lm not in self.source_indices]
        if missing:
            raise ValueError(f"Detector mapping '{self.name}' is missing landmarks: {missing}")
        for lm, idx in self.source_indices.items():
            if not 0 <= idx < self.num_keypoints:
                raise ValueError(
                    f"Detector mapping '{self.name}': index {idx} for {lm.name} "
                    f"outside 0..{self.num_keypoints - 1}"
                )

    def source_index(self, landmark: Landmark) -> int:
        return self.source_indices[landmark]


MOVENET_MAPPING = DetectorMapping(
    name="movenet",
    num_keypoints=17,
    source_indices={lm: lm.value for lm in Landmark},
)

# BlazePose (ML Kit / MediaPipe) 33-point layout; hands, feet and mouth
# points have no canonical equivalent and are dropped.
BLAZEPOSE_MAPPING = DetectorMapping(
    name="blazepose",
    num_keypoints=33,
    source_indices={
        Landmark.NOSE: 0,
        Landmark.LEFT_EYE: 2,
        Landmark.RIGHT_EYE: 5,
        Landmark.LEFT_EAR: 7,
        Landmark.RIGHT_EAR: 8,
        Landmark.LEFT_SHOULDER: 11,
        Landmark.RIGHT_SHOULDER: 12,
        Landmark.LEFT_ELBOW: 13,
        Landmark.RIGHT_ELBOW: 14,
        Landmark.LEFT_WRIST: 15,
        Landmark.RIGHT_WRIST: 16,
        Landmark.LEFT_HIP: 23,
        Landmark.RIGHT_HIP: 24,
        Landmark.LEFT_KNEE: 25,
        Landmark.RIGHT_KNEE: 26,
        Landmark.LEFT_ANKLE: 27,
        Landmark.RIGHT_ANKLE: 28,
    },
)

DETECTOR_MAPPINGS: Dict[str, DetectorMapping] = {
    MOVENET_MAPPING.name: MOVENET_MAPPING,
    BLAZEPOSE_MAPPING.name: BLAZEPOSE_MAPPING,
}


def get_detector_mapping(name: str) -> DetectorMapping:
    """Look up a detector mapping by name (case-insensitive)."""
    try:
        return DETECTOR_MAPPINGS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown detector '{name}'. Valid detectors: {sorted(DETECTOR_MAPPINGS)}"
        ) from None


# ═══════════════════════════════════════════════════════════════════════════════
# NORMALIZATION
# ═══════════════════════════════════════════════════════════════════════════════

def _coerce_raw(item: Any) -> RawKeypoint:
    if isinstance(item, RawKeypoint):
        return item
    if isinstance(item, dict):
        confidence = item.get("confidence", item.get("score", item.get("likelihood", 0.0)))
        return RawKeypoint(x=float(item["x"]), y=float(item["y"]), confidence=float(confidence))
    x, y, confidence = item
    return RawKeypoint(x=float(x), y=float(y), confidence=float(confidence))


def normalize(
    raw_keypoints: Sequence[Any],
    mapping: DetectorMapping,
    threshold: float = MIN_KEYPOINT_CONFIDENCE,
    min_valid: int = MIN_VALID_KEYPOINTS,
    timestamp_ms: float = 0.0,
    frame_size: Optional[Tuple[float, float]] = None,
) -> Optional[Pose]:
    """
    Map detector-native keypoints onto the canonical 17-landmark pose.

    Args:
        raw_keypoints: Detector output; RawKeypoint, (x, y, confidence)
            tuples, or dicts with x/y and confidence/score/likelihood
        mapping: Detector mapping selecting the source index per landmark
        threshold: Keypoints at or below this confidence become sentinels
        min_valid: Minimum confident keypoints for the frame to count
        timestamp_ms: Frame timestamp carried on the Pose
        frame_size: (width, height) when coordinates are in pixels; both
            axes are divided by the longer side so angles are preserved

    Returns:
        Pose, or None when fewer than min_valid keypoints cleared the gate
    """
    raw = [_coerce_raw(item) for item in raw_keypoints]

    if frame_size is not None:
        width, height = frame_size
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid frame size: {frame_size}")
        scale = float(max(width, height))

    keypoints: List[Keypoint] = []
    for landmark in Landmark:
        idx = mapping.source_index(landmark)
        source = raw[idx] if idx < len(raw) else None

        if source is None or not source.confidence > threshold:
            keypoints.append(SENTINEL_KEYPOINT)
            continue

        x, y = source.x, source.y
        if frame_size is not None:
            x, y = x / scale, y / scale
        keypoints.append(Keypoint(x=x, y=y, confidence=source.confidence))

    kept = [kp.confidence for kp in keypoints if kp.is_valid]
    if len(kept) < min_valid:
        return None

    return Pose(
        keypoints=tuple(keypoints),
        score=float(np.mean(kept)) if kept else 0.0,
        timestamp_ms=timestamp_ms,
    )


def keypoints_from_movenet_tensor(values: Sequence[float]) -> List[RawKeypoint]:
    """
    Decode MoveNet single-pose output.

    MoveNet emits a flat [y, x, score] triple per keypoint (output shape
    [1, 1, 17, 3]); note y comes first.
    """
    flat = np.asarray(values, dtype=float).reshape(-1)
    if flat.size != NUM_LANDMARKS * 3:
        raise ValueError(f"Expected {NUM_LANDMARKS * 3} values from MoveNet, got {flat.size}")

    triples = flat.reshape(NUM_LANDMARKS, 3)
    return [RawKeypoint(x=float(x), y=float(y), confidence=float(s)) for y, x, s in triples]


# ═══════════════════════════════════════════════════════════════════════════════
# SKELETON
# ═══════════════════════════════════════════════════════════════════════════════

SKELETON_CONNECTIONS: List[Tuple[Landmark, Landmark]] = [
    # Face
    (Landmark.LEFT_EYE, Landmark.RIGHT_EYE),
    (Landmark.LEFT_EYE, Landmark.NOSE),
    (Landmark.RIGHT_EYE, Landmark.NOSE),
    (Landmark.LEFT_EAR, Landmark.LEFT_EYE),
    (Landmark.RIGHT_EAR, Landmark.RIGHT_EYE),
    # Upper body
    (Landmark.LEFT_SHOULDER, Landmark.RIGHT_SHOULDER),
    (Landmark.LEFT_SHOULDER, Landmark.LEFT_ELBOW),
    (Landmark.LEFT_ELBOW, Landmark.LEFT_WRIST),
    (Landmark.RIGHT_SHOULDER, Landmark.RIGHT_ELBOW),
    (Landmark.RIGHT_ELBOW, Landmark.RIGHT_WRIST),
    # Torso
    (Landmark.LEFT_SHOULDER, Landmark.LEFT_HIP),
    (Landmark.RIGHT_SHOULDER, Landmark.RIGHT_HIP),
    (Landmark.LEFT_HIP, Landmark.RIGHT_HIP),
    # Lower body
    (Landmark.LEFT_HIP, Landmark.LEFT_KNEE),
    (Landmark.LEFT_KNEE, Landmark.LEFT_ANKLE),
    (Landmark.RIGHT_HIP, Landmark.RIGHT_KNEE),
    (Landmark.RIGHT_KNEE, Landmark.RIGHT_ANKLE),
]


def visible_connections(pose: Pose) -> List[Dict[str, Any]]:
    """Bones whose two endpoints are both confident, with draw opacity."""
    bones = []
    for start, end in SKELETON_CONNECTIONS:
        a, b = pose[start], pose[end]
        if a.is_valid and b.is_valid:
            bones.append({
                "start": start.name.lower(),
                "end": end.name.lower(),
                "opacity": min(a.confidence, b.confidence),
            })
    return bones
