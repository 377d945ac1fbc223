"""
FORMCOACH Form Service - Rep Counter

Hysteresis-based repetition counting. A per-session finite-state machine
driven by one primary angle per pose (e.g. hip angle for squats).

    STANDING -> DESCENDING -> BOTTOM -> ASCENDING -> STANDING (full rep)
    STANDING -> DESCENDING -> ASCENDING -> STANDING           (half rep)

Reaching BOTTOM requires the angle to stay under the bottom threshold,
inside a small band, for a minimum dwell time, so a fast bounce is not
read as reaching depth. Reversals between DESCENDING and ASCENDING need
both a trend over the window and a move of more than band_deg away from
the phase's extreme angle, so detector jitter does not flip the phase.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Optional, Tuple, Any

from .angles import LandmarkGroup, MetricKind, measure
from .errors import InvalidProfile
from .pose import Pose

logger = logging.getLogger(__name__)

DEFAULT_MIN_DWELL_MS = 200.0


class RepPhase(Enum):
    """Exercise phases tracked by the rep counter."""
    STANDING = "standing"
    DESCENDING = "descending"
    BOTTOM = "bottom"
    ASCENDING = "ascending"


class RepEventType(Enum):
    FULL_REP = "full_rep"
    HALF_REP = "half_rep"


@dataclass(frozen=True)
class RepThresholds:
    """
    State-machine configuration for one exercise.

    landmarks holds one or more (a, vertex, c) triples forming the primary
    angle; the mean over confident triples is used.
    """
    landmarks: Tuple[LandmarkGroup, ...]
    standing_threshold: float
    bottom_threshold: float
    min_dwell_ms: float = DEFAULT_MIN_DWELL_MS
    band_deg: float = 5.0
    window_size: int = 3
    trend_epsilon_deg: float = 1.0

    def validate(self) -> None:
        if not self.landmarks:
            raise InvalidProfile("Rep thresholds need at least one primary angle landmark triple")
        for group in self.landmarks:
            if len(group) != 3:
                raise InvalidProfile(f"Primary angle needs 3 landmarks, got {len(group)}")
        if not self.bottom_threshold < self.standing_threshold:
            raise InvalidProfile(
                f"bottom_threshold ({self.bottom_threshold}) must be below "
                f"standing_threshold ({self.standing_threshold})"
            )
        if self.min_dwell_ms < 0:
            raise InvalidProfile("min_dwell_ms cannot be negative")
        if self.band_deg <= 0:
            raise InvalidProfile("band_deg must be positive")
        if self.window_size < 2:
            raise InvalidProfile("window_size must be at least 2")
        if self.trend_epsilon_deg < 0:
            raise InvalidProfile("trend_epsilon_deg cannot be negative")


@dataclass(frozen=True)
class RepEvent:
    """Emitted when a motion cycle returns to STANDING."""
    kind: RepEventType
    rep_count: int
    half_rep_count: int
    depth: float  # degrees; minimum angle in BOTTOM, or cycle minimum for half reps
    phase_durations_ms: Dict[str, float]
    started_ms: float
    completed_ms: float

    @property
    def is_full_rep(self) -> bool:
        return self.kind is RepEventType.FULL_REP

    @property
    def duration_ms(self) -> float:
        return self.completed_ms - self.started_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "rep_count": self.rep_count,
            "half_rep_count": self.half_rep_count,
            "depth": round(self.depth, 1),
            "phase_durations_ms": {k: round(v, 1) for k, v in self.phase_durations_ms.items()},
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class RepSessionState:
    """Mutable rep-counting state owned by one RepCounter."""
    phase: RepPhase = RepPhase.STANDING
    phase_entered_ms: Optional[float] = None
    reps: int = 0
    half_reps: int = 0
    last_angle: Optional[float] = None


class RepCounter:
    """
    Counts full and half repetitions from a stream of poses.

    Feed every frame through observe(); frames without a pose or without a
    confident primary angle leave the state untouched.
    """

    def __init__(self, thresholds: RepThresholds):
        thresholds.validate()
        self.thresholds = thresholds
        self.reset()

    def reset(self):
        """Start a fresh session: phase STANDING, counts zero."""
        self.state = RepSessionState()
        self._window: Deque[float] = deque(maxlen=self.thresholds.window_size)
        self._reset_cycle()

    def _reset_cycle(self):
        self._cycle_start_ms: Optional[float] = None
        self._cycle_min: Optional[float] = None
        self._bottom_min: Optional[float] = None
        self._bottom_reached = False
        self._dwell_start_ms: Optional[float] = None
        self._dwell_ref: Optional[float] = None
        self._dwell_min: Optional[float] = None
        self._extreme: Optional[float] = None  # trough while descending, peak while ascending
        self._durations: Dict[RepPhase, float] = {}

    @property
    def phase(self) -> RepPhase:
        return self.state.phase

    @property
    def reps(self) -> int:
        return self.state.reps

    @property
    def half_reps(self) -> int:
        return self.state.half_reps

    def primary_angle(self, pose: Optional[Pose]) -> Optional[float]:
        if pose is None:
            return None
        return measure(pose, MetricKind.ANGLE, self.thresholds.landmarks)

    def observe(self, pose: Optional[Pose]) -> Optional[RepEvent]:
        """
        Advance the state machine with one pose.

        Returns:
            RepEvent when a cycle completed on this frame, else None
        """
        angle = self.primary_angle(pose)
        if angle is None:
            logger.debug(f"Holding {self.state.phase.value}: no primary angle this frame")
            return None
        return self.update(angle, pose.timestamp_ms)

    def update(self, angle: float, timestamp_ms: float) -> Optional[RepEvent]:
        """Advance the state machine with one primary-angle sample."""
        t = self.thresholds
        self._window.append(angle)
        trend = self._window[-1] - self._window[0]
        self.state.last_angle = angle

        phase = self.state.phase
        event = None

        if phase is RepPhase.STANDING:
            if angle < t.standing_threshold and trend < 0:
                self._reset_cycle()
                self._cycle_start_ms = timestamp_ms
                self._cycle_min = angle
                self._extreme = angle
                self._transition(RepPhase.DESCENDING, timestamp_ms)
                if self._track_dwell(angle, timestamp_ms):
                    self._enter_bottom(angle, timestamp_ms)

        elif phase is RepPhase.DESCENDING:
            self._cycle_min = min(self._cycle_min, angle)
            self._extreme = min(self._extreme, angle)
            if angle >= t.standing_threshold:
                event = self._finish_cycle(timestamp_ms)
            elif self._track_dwell(angle, timestamp_ms):
                self._enter_bottom(angle, timestamp_ms)
            elif trend > t.trend_epsilon_deg and angle - self._extreme > t.band_deg:
                self._dwell_start_ms = None
                self._extreme = angle
                self._transition(RepPhase.ASCENDING, timestamp_ms)

        elif phase is RepPhase.BOTTOM:
            self._cycle_min = min(self._cycle_min, angle)
            self._bottom_min = min(self._bottom_min, angle)
            if angle >= t.standing_threshold:
                event = self._finish_cycle(timestamp_ms)
            elif angle - self._bottom_min > t.band_deg:
                self._extreme = angle
                self._transition(RepPhase.ASCENDING, timestamp_ms)

        elif phase is RepPhase.ASCENDING:
            self._cycle_min = min(self._cycle_min, angle)
            self._extreme = max(self._extreme, angle)
            if angle >= t.standing_threshold:
                event = self._finish_cycle(timestamp_ms)
            elif trend < -t.trend_epsilon_deg and self._extreme - angle > t.band_deg:
                self._extreme = angle
                self._transition(RepPhase.DESCENDING, timestamp_ms)

        else:
            raise AssertionError(f"Unhandled rep phase: {phase}")

        return event

    def _track_dwell(self, angle: float, timestamp_ms: float) -> bool:
        """True once the angle has held at depth for min_dwell_ms."""
        t = self.thresholds
        if angle > t.bottom_threshold:
            self._dwell_start_ms = None
            return False

        if self._dwell_start_ms is None or abs(angle - self._dwell_ref) > t.band_deg:
            self._dwell_start_ms = timestamp_ms
            self._dwell_ref = angle
            self._dwell_min = angle
        else:
            self._dwell_min = min(self._dwell_min, angle)

        return timestamp_ms - self._dwell_start_ms >= t.min_dwell_ms

    def _enter_bottom(self, angle: float, timestamp_ms: float):
        self._bottom_reached = True
        depth = min(angle, self._dwell_min) if self._dwell_min is not None else angle
        self._bottom_min = depth if self._bottom_min is None else min(self._bottom_min, depth)
        self._transition(RepPhase.BOTTOM, timestamp_ms)

    def _transition(self, new_phase: RepPhase, timestamp_ms: float):
        previous = self.state.phase
        if previous is not RepPhase.STANDING and self.state.phase_entered_ms is not None:
            elapsed = timestamp_ms - self.state.phase_entered_ms
            self._durations[previous] = self._durations.get(previous, 0.0) + elapsed

        self.state.phase = new_phase
        self.state.phase_entered_ms = timestamp_ms
        logger.debug(f"Phase {previous.value} -> {new_phase.value} at {timestamp_ms:.0f}ms")

    def _finish_cycle(self, timestamp_ms: float) -> Optional[RepEvent]:
        t = self.thresholds
        self._transition(RepPhase.STANDING, timestamp_ms)

        if self._bottom_reached:
            self.state.reps += 1
            kind = RepEventType.FULL_REP
            depth = self._bottom_min
        elif t.standing_threshold - self._cycle_min >= t.band_deg:
            self.state.half_reps += 1
            kind = RepEventType.HALF_REP
            depth = self._cycle_min
        else:
            logger.debug(f"Ignoring shallow dip to {self._cycle_min:.1f}°")
            self._reset_cycle()
            return None

        event = RepEvent(
            kind=kind,
            rep_count=self.state.reps,
            half_rep_count=self.state.half_reps,
            depth=depth,
            phase_durations_ms={
                p.value: self._durations.get(p, 0.0)
                for p in (RepPhase.DESCENDING, RepPhase.BOTTOM, RepPhase.ASCENDING)
            },
            started_ms=self._cycle_start_ms,
            completed_ms=timestamp_ms,
        )
        logger.debug(
            f"{kind.value} #{event.rep_count if event.is_full_rep else event.half_rep_count} "
            f"depth={depth:.1f}°"
        )
        self._reset_cycle()
        return event
