"""
FORMCOACH Form Service - Form Analysis Engine

One engine for every exercise: the profile says which metrics to measure,
how to score them and how to weight them. Each metric becomes a 0-100
sub-score; the overall score is the weighted sum and the feedback cue names
the worst metric below the profile's "needs improvement" cutoff.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Any

from .angles import measure
from .errors import IncompletePose
from .pose import Pose
from .profiles import ExerciseProfile, MetricSpec
from .rep_counter import RepPhase

logger = logging.getLogger(__name__)


class FormQuality(Enum):
    """Form quality assessment levels."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


def quality_for_score(score: float) -> FormQuality:
    if score >= 90:
        return FormQuality.EXCELLENT
    elif score >= 75:
        return FormQuality.GOOD
    elif score >= 50:
        return FormQuality.FAIR
    return FormQuality.POOR


def interpolate_score(value: float, great: float, poor: float) -> float:
    """
    Map a measurement onto 0-100.

    100 at `great`, 0 at `poor`, linear in between, clamped at both ends.
    Works for either direction (great above or below poor).
    """
    fraction = (value - poor) / (great - poor)
    return max(0.0, min(1.0, fraction)) * 100.0


def redistribute_weights(weights: Dict[str, float]) -> Dict[str, float]:
    """Scale the weights of the computable metrics back up to a total of 1.0."""
    total = sum(weights.values())
    if total <= 0:
        return {}
    return {name: w / total for name, w in weights.items()}


@dataclass(frozen=True)
class FormResult:
    """Form assessment of a single pose."""
    exercise: str
    score: float  # 0-100
    subscores: Dict[str, float]
    feedback: str
    quality: FormQuality
    measurements: Dict[str, float] = field(default_factory=dict)
    excluded: Tuple[str, ...] = ()
    focus_metric: Optional[str] = None  # metric cited by the feedback, None for affirmation
    timestamp_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "exercise": self.exercise,
            "score": round(self.score, 1),
            "quality": self.quality.value,
            "subscores": {k: round(v, 1) for k, v in self.subscores.items()},
            "measurements": {k: round(v, 3) for k, v in self.measurements.items()},
            "feedback": self.feedback,
            "focus_metric": self.focus_metric,
            "excluded": list(self.excluded),
            "timestamp_ms": self.timestamp_ms,
        }


class FormAnalyzer:
    """
    Profile-driven form analyzer.

    Stateless; one instance can serve any number of sessions.
    """

    def measure_metric(self, pose: Pose, metric: MetricSpec) -> Optional[float]:
        """Raw measurement for one metric, or None if its landmarks are missing."""
        return measure(pose, metric.kind, metric.landmarks)

    def analyze(
        self,
        pose: Pose,
        profile: ExerciseProfile,
        previous_phase: Optional[RepPhase] = None,
    ) -> FormResult:
        """
        Assess exercise form for one pose.

        Args:
            pose: Current pose
            profile: Active exercise profile
            previous_phase: Rep phase before this pose; metrics restricted
                to other phases are skipped. None scores every metric.

        Returns:
            FormResult with weighted score and feedback

        Raises:
            IncompletePose: no active metric could be computed
            DegenerateAngle: landmarks of a metric coincide
        """
        active = [m for m in profile.metrics if m.applies_to(previous_phase)]

        measurements: Dict[str, float] = {}
        subscores: Dict[str, float] = {}
        excluded: List[str] = []

        for metric in active:
            value = self.measure_metric(pose, metric)
            if value is None:
                excluded.append(metric.name)
                continue
            measurements[metric.name] = value
            subscores[metric.name] = interpolate_score(value, metric.great, metric.poor)

        if not subscores:
            raise IncompletePose(
                f"No computable metric for '{profile.name}' in this pose",
                missing_metrics=excluded,
            )

        if excluded:
            logger.debug(f"{profile.name}: excluded {excluded}, redistributing weight")

        weights = redistribute_weights({m.name: m.weight for m in active if m.name in subscores})
        score = sum(weights[name] * subscores[name] for name in subscores)
        score = max(0.0, min(100.0, score))

        feedback, focus = self.select_feedback(profile, subscores)

        return FormResult(
            exercise=profile.name,
            score=score,
            subscores=subscores,
            feedback=feedback,
            quality=quality_for_score(score),
            measurements=measurements,
            excluded=tuple(excluded),
            focus_metric=focus,
            timestamp_ms=pose.timestamp_ms,
        )

    @staticmethod
    def select_feedback(
        profile: ExerciseProfile,
        subscores: Dict[str, float],
    ) -> Tuple[str, Optional[str]]:
        """
        Pick the cue for the worst sub-score under the cutoff.

        Ties go to the metric declared first in the profile.
        """
        worst: Optional[MetricSpec] = None
        worst_score = profile.needs_improvement_cutoff

        for metric in profile.metrics:
            value = subscores.get(metric.name)
            if value is None:
                continue
            if value < worst_score:
                worst, worst_score = metric, value

        if worst is None:
            return profile.affirmation, None
        return worst.feedback, worst.name
