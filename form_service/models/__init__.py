"""
FORMCOACH Form Service Models

Pose normalization, angle engine, profile-driven form scoring and
hysteresis-based rep counting.
"""

from .errors import (
    FormAnalysisError,
    DegenerateAngle,
    InsufficientPrecision,
    IncompletePose,
    InvalidProfile,
)

from .pose import (
    Landmark,
    RawKeypoint,
    Keypoint,
    Pose,
    DetectorMapping,
    DETECTOR_MAPPINGS,
    MOVENET_MAPPING,
    BLAZEPOSE_MAPPING,
    SKELETON_CONNECTIONS,
    get_detector_mapping,
    normalize,
    keypoints_from_movenet_tensor,
    visible_connections,
)

from .angles import (
    MetricKind,
    angle_between,
    deviation_from_vertical,
    deviation_from_horizontal,
    line_deviation,
    measure,
)

from .rep_counter import (
    RepPhase,
    RepEventType,
    RepEvent,
    RepThresholds,
    RepSessionState,
    RepCounter,
)

from .profiles import (
    ExerciseType,
    MetricSpec,
    ExerciseProfile,
    ProfileRegistry,
    BUILTIN_PROFILES,
    SQUAT_PROFILE,
    PUSHUP_PROFILE,
    PLANK_PROFILE,
    profile_from_dict,
    load_profiles,
)

from .form_analyzer import (
    FormAnalyzer,
    FormResult,
    FormQuality,
    interpolate_score,
    redistribute_weights,
)

from .exercise_session import (
    ExerciseSession,
    ExerciseSessionHandler,
    SessionState,
    SessionLimitReached,
    RepRecord,
    FrameResult,
)

__all__ = [
    # Errors
    "FormAnalysisError",
    "DegenerateAngle",
    "InsufficientPrecision",
    "IncompletePose",
    "InvalidProfile",
    # Pose Model
    "Landmark",
    "RawKeypoint",
    "Keypoint",
    "Pose",
    "DetectorMapping",
    "DETECTOR_MAPPINGS",
    "MOVENET_MAPPING",
    "BLAZEPOSE_MAPPING",
    "SKELETON_CONNECTIONS",
    "get_detector_mapping",
    "normalize",
    "keypoints_from_movenet_tensor",
    "visible_connections",
    # Angle Engine
    "MetricKind",
    "angle_between",
    "deviation_from_vertical",
    "deviation_from_horizontal",
    "line_deviation",
    "measure",
    # Rep Counter
    "RepPhase",
    "RepEventType",
    "RepEvent",
    "RepThresholds",
    "RepSessionState",
    "RepCounter",
    # Profiles
    "ExerciseType",
    "MetricSpec",
    "ExerciseProfile",
    "ProfileRegistry",
    "BUILTIN_PROFILES",
    "SQUAT_PROFILE",
    "PUSHUP_PROFILE",
    "PLANK_PROFILE",
    "profile_from_dict",
    "load_profiles",
    # Form Analysis
    "FormAnalyzer",
    "FormResult",
    "FormQuality",
    "interpolate_score",
    "redistribute_weights",
    # Exercise Session
    "ExerciseSession",
    "ExerciseSessionHandler",
    "SessionState",
    "SessionLimitReached",
    "RepRecord",
    "FrameResult",
]
