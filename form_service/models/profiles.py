"""
FORMCOACH Form Service - Exercise Profiles

Data-only exercise configuration: which landmarks form each tracked metric,
the great/poor scoring bounds, the metric weights, the feedback cue per
metric and the rep-counter thresholds. New exercises are added by declaring
a profile (in code or in a JSON file), not by writing new analysis code.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple, Any, Union

from pydantic import BaseModel, ValidationError

from .angles import LandmarkGroup, MetricKind
from .errors import InvalidProfile
from .pose import Landmark
from .rep_counter import DEFAULT_MIN_DWELL_MS, RepPhase, RepThresholds

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-6
DEFAULT_AFFIRMATION = "Great form!"
DEFAULT_NEEDS_IMPROVEMENT_CUTOFF = 70.0


class ExerciseType(Enum):
    """Built-in exercise types."""
    SQUAT = "squat"
    PUSHUP = "pushup"
    PLANK = "plank"


# ═══════════════════════════════════════════════════════════════════════════════
# PROFILE DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MetricSpec:
    """
    One scored metric of an exercise.

    The sub-score is 100 at `great`, 0 at `poor`, linear in between and
    clamped outside. great < poor means lower values are better.
    """
    name: str
    kind: MetricKind
    landmarks: Tuple[LandmarkGroup, ...]
    great: float
    poor: float
    weight: float
    feedback: str
    phases: Optional[FrozenSet[RepPhase]] = None  # None = scored in every phase

    def applies_to(self, phase: Optional[RepPhase]) -> bool:
        return self.phases is None or phase is None or phase in self.phases

    def validate(self) -> None:
        if not self.name:
            raise InvalidProfile("Metric name cannot be empty")
        if not self.landmarks:
            raise InvalidProfile(f"Metric '{self.name}' declares no landmarks")
        for group in self.landmarks:
            if len(group) != self.kind.arity:
                raise InvalidProfile(
                    f"Metric '{self.name}' ({self.kind.value}) needs {self.kind.arity} "
                    f"landmarks per group, got {len(group)}"
                )
        if self.great == self.poor:
            raise InvalidProfile(f"Metric '{self.name}': great and poor bounds are equal")
        if self.weight <= 0:
            raise InvalidProfile(f"Metric '{self.name}': weight must be positive")
        if not self.feedback:
            raise InvalidProfile(f"Metric '{self.name}' has no feedback message")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "landmarks": [[lm.name.lower() for lm in group] for group in self.landmarks],
            "great": self.great,
            "poor": self.poor,
            "weight": self.weight,
            "feedback": self.feedback,
            "phases": sorted(p.value for p in self.phases) if self.phases else None,
        }


@dataclass(frozen=True)
class ExerciseProfile:
    """Complete static configuration of one exercise. Validated on construction."""
    name: str
    display_name: str
    metrics: Tuple[MetricSpec, ...]
    rep_thresholds: Optional[RepThresholds] = None
    needs_improvement_cutoff: float = DEFAULT_NEEDS_IMPROVEMENT_CUTOFF
    affirmation: str = DEFAULT_AFFIRMATION

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if not self.name:
            raise InvalidProfile("Profile name cannot be empty")
        if not self.metrics:
            raise InvalidProfile(f"Profile '{self.name}' declares no metrics")

        names = [m.name for m in self.metrics]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise InvalidProfile(f"Profile '{self.name}' has duplicate metrics: {duplicates}")

        for metric in self.metrics:
            metric.validate()

        total = sum(m.weight for m in self.metrics)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise InvalidProfile(f"Profile '{self.name}' weights sum to {total:.6f}, expected 1.0")

        if not 0.0 <= self.needs_improvement_cutoff <= 100.0:
            raise InvalidProfile(
                f"Profile '{self.name}': needs_improvement_cutoff must be within 0-100"
            )
        if not self.affirmation:
            raise InvalidProfile(f"Profile '{self.name}' has no affirmation message")

        if self.rep_thresholds is not None:
            self.rep_thresholds.validate()

    @property
    def counts_reps(self) -> bool:
        return self.rep_thresholds is not None

    @property
    def weights(self) -> Dict[str, float]:
        return {m.name: m.weight for m in self.metrics}

    def metric(self, name: str) -> MetricSpec:
        for m in self.metrics:
            if m.name == name:
                return m
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        rep = self.rep_thresholds
        return {
            "name": self.name,
            "display_name": self.display_name,
            "metrics": [m.to_dict() for m in self.metrics],
            "needs_improvement_cutoff": self.needs_improvement_cutoff,
            "counts_reps": self.counts_reps,
            "rep_thresholds": None if rep is None else {
                "standing_threshold": rep.standing_threshold,
                "bottom_threshold": rep.bottom_threshold,
                "min_dwell_ms": rep.min_dwell_ms,
            },
        }


# ═══════════════════════════════════════════════════════════════════════════════
# BUILT-IN PROFILES
# ═══════════════════════════════════════════════════════════════════════════════

L, R = "LEFT", "RIGHT"


def _sides(*parts: str) -> Tuple[LandmarkGroup, ...]:
    """Left and right landmark groups, e.g. _sides("SHOULDER", "HIP", "KNEE")."""
    return tuple(
        tuple(Landmark[f"{side}_{part}"] for part in parts)
        for side in (L, R)
    )


BOTTOM_ONLY = frozenset({RepPhase.BOTTOM})

SQUAT_PROFILE = ExerciseProfile(
    name=ExerciseType.SQUAT.value,
    display_name="Squat",
    metrics=(
        MetricSpec(
            name="depth",
            kind=MetricKind.ANGLE,
            landmarks=_sides("SHOULDER", "HIP", "KNEE"),
            great=80.0,
            poor=130.0,
            weight=0.4,
            feedback="Go deeper: lower your hips",
            phases=BOTTOM_ONLY,
        ),
        MetricSpec(
            name="knee",
            kind=MetricKind.ANGLE,
            landmarks=_sides("HIP", "KNEE", "ANKLE"),
            great=100.0,
            poor=140.0,
            weight=0.3,
            feedback="Bend your knees more",
            phases=BOTTOM_ONLY,
        ),
        MetricSpec(
            name="back",
            kind=MetricKind.VERTICAL,
            landmarks=_sides("SHOULDER", "HIP"),
            great=10.0,
            poor=25.0,
            weight=0.3,
            feedback="Keep your back straight",
        ),
    ),
    rep_thresholds=RepThresholds(
        landmarks=_sides("SHOULDER", "HIP", "KNEE"),
        standing_threshold=160.0,
        bottom_threshold=90.0,
    ),
)

PUSHUP_PROFILE = ExerciseProfile(
    name=ExerciseType.PUSHUP.value,
    display_name="Push-up",
    metrics=(
        MetricSpec(
            name="elbow",
            kind=MetricKind.ANGLE,
            landmarks=_sides("SHOULDER", "ELBOW", "WRIST"),
            great=90.0,
            poor=140.0,
            weight=0.4,
            feedback="Lower your chest further",
            phases=BOTTOM_ONLY,
        ),
        MetricSpec(
            name="body_line",
            kind=MetricKind.LINE,
            landmarks=_sides("SHOULDER", "HIP", "ANKLE"),
            great=0.03,
            poor=0.15,
            weight=0.4,
            feedback="Keep your body in a straight line",
        ),
        MetricSpec(
            name="legs",
            kind=MetricKind.ANGLE,
            landmarks=_sides("HIP", "KNEE", "ANKLE"),
            great=170.0,
            poor=140.0,
            weight=0.2,
            feedback="Keep your legs straight",
        ),
    ),
    rep_thresholds=RepThresholds(
        landmarks=_sides("SHOULDER", "ELBOW", "WRIST"),
        standing_threshold=150.0,
        bottom_threshold=90.0,
    ),
)

PLANK_PROFILE = ExerciseProfile(
    name=ExerciseType.PLANK.value,
    display_name="Plank",
    metrics=(
        MetricSpec(
            name="body_line",
            kind=MetricKind.LINE,
            landmarks=_sides("SHOULDER", "HIP", "ANKLE"),
            great=0.03,
            poor=0.12,
            weight=0.5,
            feedback="Keep your hips level with your shoulders",
        ),
        MetricSpec(
            name="elbows",
            kind=MetricKind.VERTICAL,
            landmarks=_sides("SHOULDER", "ELBOW"),
            great=10.0,
            poor=30.0,
            weight=0.3,
            feedback="Stack your elbows under your shoulders",
        ),
        MetricSpec(
            name="legs",
            kind=MetricKind.ANGLE,
            landmarks=_sides("HIP", "KNEE", "ANKLE"),
            great=170.0,
            poor=145.0,
            weight=0.2,
            feedback="Straighten your legs",
        ),
    ),
)

BUILTIN_PROFILES: Dict[str, ExerciseProfile] = {
    p.name: p for p in (SQUAT_PROFILE, PUSHUP_PROFILE, PLANK_PROFILE)
}


# ═══════════════════════════════════════════════════════════════════════════════
# PROFILE DOCUMENTS (JSON)
# ═══════════════════════════════════════════════════════════════════════════════

class MetricDocument(BaseModel):
    name: str
    kind: MetricKind
    landmarks: List[List[str]]
    great: float
    poor: float
    weight: float
    feedback: str
    phases: Optional[List[RepPhase]] = None


class RepThresholdsDocument(BaseModel):
    landmarks: List[List[str]]
    standing_threshold: float
    bottom_threshold: float
    min_dwell_ms: float = DEFAULT_MIN_DWELL_MS
    band_deg: float = 5.0
    window_size: int = 3
    trend_epsilon_deg: float = 1.0


class ProfileDocument(BaseModel):
    name: str
    display_name: Optional[str] = None
    metrics: List[MetricDocument]
    rep_thresholds: Optional[RepThresholdsDocument] = None
    needs_improvement_cutoff: float = DEFAULT_NEEDS_IMPROVEMENT_CUTOFF
    affirmation: str = DEFAULT_AFFIRMATION


def _parse_groups(groups: List[List[str]], owner: str) -> Tuple[LandmarkGroup, ...]:
    parsed = []
    for group in groups:
        try:
            parsed.append(tuple(Landmark[name.strip().upper()] for name in group))
        except KeyError as e:
            raise InvalidProfile(f"{owner}: unknown landmark {e.args[0]!r}") from None
    return tuple(parsed)


def profile_from_dict(data: Dict[str, Any]) -> ExerciseProfile:
    """
    Build and validate a profile from a plain dict (e.g. parsed JSON).

    Raises:
        InvalidProfile: malformed document or failed validation
    """
    try:
        doc = ProfileDocument.model_validate(data)
    except ValidationError as e:
        raise InvalidProfile(f"Malformed profile document: {e}") from e

    metrics = tuple(
        MetricSpec(
            name=m.name,
            kind=m.kind,
            landmarks=_parse_groups(m.landmarks, f"Metric '{m.name}'"),
            great=m.great,
            poor=m.poor,
            weight=m.weight,
            feedback=m.feedback,
            phases=frozenset(m.phases) if m.phases else None,
        )
        for m in doc.metrics
    )

    rep = None
    if doc.rep_thresholds is not None:
        r = doc.rep_thresholds
        rep = RepThresholds(
            landmarks=_parse_groups(r.landmarks, f"Profile '{doc.name}' primary angle"),
            standing_threshold=r.standing_threshold,
            bottom_threshold=r.bottom_threshold,
            min_dwell_ms=r.min_dwell_ms,
            band_deg=r.band_deg,
            window_size=r.window_size,
            trend_epsilon_deg=r.trend_epsilon_deg,
        )

    return ExerciseProfile(
        name=doc.name,
        display_name=doc.display_name or doc.name.replace("_", " ").title(),
        metrics=metrics,
        rep_thresholds=rep,
        needs_improvement_cutoff=doc.needs_improvement_cutoff,
        affirmation=doc.affirmation,
    )


def load_profiles(path: Union[str, Path]) -> List[ExerciseProfile]:
    """Load a JSON file holding a list of profile documents."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidProfile(f"Cannot read profiles from {path}: {e}") from e

    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        raise InvalidProfile(f"{path}: expected a list of profiles")

    profiles = [profile_from_dict(item) for item in raw]
    logger.info(f"Loaded {len(profiles)} profile(s) from {path}")
    return profiles


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

class ProfileRegistry:
    """Name -> profile lookup for one application instance."""

    def __init__(self, profiles: Optional[List[ExerciseProfile]] = None):
        self._profiles: Dict[str, ExerciseProfile] = {}
        for profile in profiles or []:
            self.register(profile)

    @classmethod
    def with_builtins(cls, extra_path: Optional[Union[str, Path]] = None) -> "ProfileRegistry":
        registry = cls(list(BUILTIN_PROFILES.values()))
        if extra_path:
            for profile in load_profiles(extra_path):
                registry.register(profile)
        return registry

    def register(self, profile: ExerciseProfile):
        key = profile.name.lower()
        if key in self._profiles:
            logger.info(f"Overriding exercise profile '{profile.name}'")
        self._profiles[key] = profile

    def get(self, name: str) -> ExerciseProfile:
        try:
            return self._profiles[name.lower()]
        except KeyError:
            raise ValueError(
                f"Invalid exercise type. Valid types: {self.names()}"
            ) from None

    def names(self) -> List[str]:
        return sorted(self._profiles)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._profiles

    def __iter__(self):
        return iter(self._profiles.values())
