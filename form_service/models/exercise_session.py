"""
FORMCOACH Form Service - Exercise Session

Explicit per-workout context: the active profile, the detector mapping, the
form analyzer and the session's own rep counter. submit() is the single
"next frame" operation; it never blocks and always returns a FrameResult.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Any

from .errors import DegenerateAngle, IncompletePose
from .form_analyzer import FormAnalyzer, FormResult
from .pose import (
    DetectorMapping,
    MIN_KEYPOINT_CONFIDENCE,
    MIN_VALID_KEYPOINTS,
    Pose,
    get_detector_mapping,
    normalize,
    visible_connections,
)
from .profiles import ExerciseProfile, ProfileRegistry
from .rep_counter import RepCounter, RepEvent, RepPhase

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Exercise session states."""
    ACTIVE = "active"
    COMPLETED = "completed"


class SessionLimitReached(RuntimeError):
    """Too many concurrent sessions for this handler."""


@dataclass
class RepRecord:
    """Record of a single repetition."""
    rep_number: int
    kind: str
    timestamp_ms: float
    depth: float
    duration_ms: float
    form_score: Optional[float]
    phase_durations_ms: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rep_number": self.rep_number,
            "kind": self.kind,
            "timestamp_ms": self.timestamp_ms,
            "depth": round(self.depth, 1),
            "duration_ms": round(self.duration_ms, 1),
            "form_score": None if self.form_score is None else round(self.form_score, 1),
        }


@dataclass
class FrameResult:
    """Outcome of one submitted frame."""
    session_id: str
    pose_detected: bool
    form: Optional[FormResult] = None
    rep_event: Optional[RepEvent] = None
    phase: Optional[RepPhase] = None
    reps: int = 0
    half_reps: int = 0
    error: Optional[str] = None
    pose: Optional[Pose] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "pose_detected": self.pose_detected,
            "pose_score": None if self.pose is None else round(self.pose.score, 3),
            "form": None if self.form is None else self.form.to_dict(),
            "rep_event": None if self.rep_event is None else self.rep_event.to_dict(),
            "phase": None if self.phase is None else self.phase.value,
            "reps": self.reps,
            "half_reps": self.half_reps,
            "error": self.error,
            "skeleton": [] if self.pose is None else visible_connections(self.pose),
        }


class ExerciseSession:
    """
    One workout of one exercise.

    Owns its rep-counting state; nothing is shared between sessions.
    """

    def __init__(
        self,
        session_id: str,
        user_id: str,
        profile: ExerciseProfile,
        mapping: DetectorMapping,
        analyzer: Optional[FormAnalyzer] = None,
        target_reps: int = 10,
        confidence_threshold: float = MIN_KEYPOINT_CONFIDENCE,
        min_valid_keypoints: int = MIN_VALID_KEYPOINTS,
    ):
        self.session_id = session_id
        self.user_id = user_id
        self.profile = profile
        self.mapping = mapping
        self.analyzer = analyzer or FormAnalyzer()
        self.target_reps = target_reps
        self.confidence_threshold = confidence_threshold
        self.min_valid_keypoints = min_valid_keypoints

        self.rep_counter: Optional[RepCounter] = (
            RepCounter(profile.rep_thresholds) if profile.counts_reps else None
        )
        self.state = SessionState.ACTIVE
        self.started_at = datetime.now()
        self.last_activity = time.monotonic()

        # Progress tracking
        self.frames_processed = 0
        self.frames_without_pose = 0
        self.frames_with_errors = 0
        self.rep_records: List[RepRecord] = []
        self.last_form: Optional[FormResult] = None
        self.first_timestamp_ms: Optional[float] = None
        self.last_timestamp_ms: Optional[float] = None

        self._score_sum = 0.0
        self._score_count = 0
        self._cycle_scores: List[float] = []

    @property
    def reps(self) -> int:
        return self.rep_counter.reps if self.rep_counter else 0

    @property
    def half_reps(self) -> int:
        return self.rep_counter.half_reps if self.rep_counter else 0

    @property
    def phase(self) -> Optional[RepPhase]:
        return self.rep_counter.phase if self.rep_counter else None

    @property
    def avg_form_score(self) -> float:
        return self._score_sum / self._score_count if self._score_count else 0.0

    def submit(
        self,
        raw_keypoints: Sequence[Any],
        timestamp_ms: float,
        frame_size: Optional[Tuple[float, float]] = None,
    ) -> FrameResult:
        """
        Normalize one raw detector frame and process it.

        Args:
            raw_keypoints: Detector-native keypoints for this frame
            timestamp_ms: Frame timestamp in milliseconds
            frame_size: (width, height) when coordinates are in pixels
        """
        pose = normalize(
            raw_keypoints,
            self.mapping,
            threshold=self.confidence_threshold,
            min_valid=self.min_valid_keypoints,
            timestamp_ms=timestamp_ms,
            frame_size=frame_size,
        )
        return self.submit_pose(pose)

    def submit_pose(self, pose: Optional[Pose]) -> FrameResult:
        """Process an already-normalized pose (None = no pose this frame)."""
        if self.state is not SessionState.ACTIVE:
            raise RuntimeError(f"Session {self.session_id} is {self.state.value}")

        self.frames_processed += 1
        self.last_activity = time.monotonic()

        if pose is None:
            self.frames_without_pose += 1
            return self._result(pose_detected=False, error="no_pose")

        if self.first_timestamp_ms is None:
            self.first_timestamp_ms = pose.timestamp_ms
        self.last_timestamp_ms = pose.timestamp_ms

        previous_phase = self.phase
        form: Optional[FormResult] = None
        error: Optional[str] = None

        try:
            form = self.analyzer.analyze(pose, self.profile, previous_phase)
        except IncompletePose as e:
            error = "incomplete_pose"
            logger.debug(f"[{self.session_id}] {e} (missing: {e.missing_metrics})")
        except DegenerateAngle as e:
            error = "degenerate_angle"
            logger.debug(f"[{self.session_id}] {e}")

        rep_event: Optional[RepEvent] = None
        if self.rep_counter is not None:
            try:
                rep_event = self.rep_counter.observe(pose)
            except DegenerateAngle as e:
                error = error or "degenerate_angle"
                logger.debug(f"[{self.session_id}] primary angle: {e}")

            if previous_phase is RepPhase.STANDING and self.phase is not RepPhase.STANDING:
                self._cycle_scores = []

        if form is not None:
            self.last_form = form
            self._score_sum += form.score
            self._score_count += 1
            self._cycle_scores.append(form.score)

        if error is not None:
            self.frames_with_errors += 1

        if rep_event is not None:
            self._record_rep(rep_event)

        return self._result(pose_detected=True, form=form, rep_event=rep_event, error=error, pose=pose)

    def _result(self, **kwargs) -> FrameResult:
        return FrameResult(
            session_id=self.session_id,
            phase=self.phase,
            reps=self.reps,
            half_reps=self.half_reps,
            **kwargs,
        )

    def _record_rep(self, event: RepEvent):
        """Record a completed repetition."""
        cycle_score = (
            sum(self._cycle_scores) / len(self._cycle_scores) if self._cycle_scores else None
        )
        record = RepRecord(
            rep_number=event.rep_count if event.is_full_rep else event.half_rep_count,
            kind=event.kind.value,
            timestamp_ms=event.completed_ms,
            depth=event.depth,
            duration_ms=event.duration_ms,
            form_score=cycle_score,
            phase_durations_ms=dict(event.phase_durations_ms),
        )
        self.rep_records.append(record)
        self._cycle_scores = []
        logger.info(
            f"[{self.session_id}] {record.kind} #{record.rep_number} "
            f"depth={record.depth:.0f}° form={cycle_score if cycle_score is not None else 0:.0f}"
        )

    def complete(self) -> Dict[str, Any]:
        """Close the session and generate the summary."""
        self.state = SessionState.COMPLETED
        return self._generate_summary()

    def _generate_summary(self) -> Dict[str, Any]:
        """Generate session summary."""
        full = [r for r in self.rep_records if r.kind == "full_rep"]
        rep_scores = [r.form_score for r in full if r.form_score is not None]
        avg_score = sum(rep_scores) / len(rep_scores) if rep_scores else self.avg_form_score

        if self.profile.counts_reps and self.target_reps > 0:
            completion_rate = min(100.0, self.reps / self.target_reps * 100)
        else:
            completion_rate = 100.0 if self._score_count else 0.0

        # Determine performance rating
        if completion_rate >= 100 and avg_score >= 85:
            performance = "excellent"
            message = "Outstanding performance!"
        elif completion_rate >= 80 and avg_score >= 70:
            performance = "good"
            message = "Great job! Keep it up!"
        elif completion_rate >= 60:
            performance = "fair"
            message = "Good effort! Room for improvement."
        else:
            performance = "needs_improvement"
            message = "Keep practicing! You'll get better."

        duration_ms = 0.0
        if self.first_timestamp_ms is not None and self.last_timestamp_ms is not None:
            duration_ms = self.last_timestamp_ms - self.first_timestamp_ms

        return {
            "status": self.state.value,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "exercise": self.profile.name,
            "summary": {
                "total_reps": self.reps,
                "half_reps": self.half_reps,
                "target_reps": self.target_reps,
                "completion_rate": round(completion_rate, 1),
                "avg_form_score": round(avg_score, 1),
                "duration_seconds": round(duration_ms / 1000.0, 1),
                "frames_processed": self.frames_processed,
                "frames_without_pose": self.frames_without_pose,
                "performance_rating": performance,
                "message": message,
            },
            "reps": [r.to_dict() for r in self.rep_records],
            "recommendations": self._get_recommendations(avg_score, completion_rate),
            "completed_at": datetime.now().isoformat(),
        }

    def _get_recommendations(self, avg_score: float, completion_rate: float) -> List[str]:
        """Generate recommendations based on session performance."""
        recommendations = []

        if self._score_count and avg_score < 70:
            recommendations.append("Focus on maintaining proper form over completing more reps")

        if self.half_reps > self.reps:
            recommendations.append("Work on range of motion: most reps stopped short of full depth")

        if self.frames_processed and self.frames_without_pose / self.frames_processed > 0.3:
            recommendations.append("Make sure your whole body stays visible to the camera")

        if self.profile.counts_reps:
            if completion_rate < 80:
                recommendations.append("Try reducing the number of reps in your next session")
            elif completion_rate >= 100 and avg_score >= 85:
                recommendations.append("You're ready to increase difficulty! Try more reps or add resistance")

        if not recommendations:
            recommendations.append("Great progress! Maintain this consistency")

        return recommendations

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "exercise": self.profile.name,
            "detector": self.mapping.name,
            "state": self.state.value,
            "phase": None if self.phase is None else self.phase.value,
            "reps": self.reps,
            "half_reps": self.half_reps,
            "target_reps": self.target_reps,
            "frames_processed": self.frames_processed,
            "frames_without_pose": self.frames_without_pose,
            "avg_form_score": round(self.avg_form_score, 1),
            "last_form": None if self.last_form is None else self.last_form.to_dict(),
        }


class ExerciseSessionHandler:
    """
    Creates and tracks exercise sessions for one application instance.
    """

    def __init__(
        self,
        registry: Optional[ProfileRegistry] = None,
        analyzer: Optional[FormAnalyzer] = None,
        confidence_threshold: float = MIN_KEYPOINT_CONFIDENCE,
        min_valid_keypoints: int = MIN_VALID_KEYPOINTS,
        max_sessions: int = 100,
        idle_timeout_s: Optional[float] = None,
    ):
        self.registry = registry or ProfileRegistry.with_builtins()
        self.analyzer = analyzer or FormAnalyzer()
        self.confidence_threshold = confidence_threshold
        self.min_valid_keypoints = min_valid_keypoints
        self.max_sessions = max_sessions
        self.idle_timeout_s = idle_timeout_s
        self.active_sessions: Dict[str, ExerciseSession] = {}

    def create_session(
        self,
        user_id: str,
        exercise_type: str,
        detector: str = "movenet",
        target_reps: int = 10,
    ) -> ExerciseSession:
        """
        Create a new exercise session.

        Raises:
            ValueError: unknown exercise type or detector
            SessionLimitReached: max_sessions already active
        """
        profile = self.registry.get(exercise_type)
        mapping = get_detector_mapping(detector)

        self.cleanup_idle_sessions()
        if len(self.active_sessions) >= self.max_sessions:
            raise SessionLimitReached(f"Maximum of {self.max_sessions} active sessions reached")

        session_id = str(uuid.uuid4())[:8]
        session = ExerciseSession(
            session_id=session_id,
            user_id=user_id,
            profile=profile,
            mapping=mapping,
            analyzer=self.analyzer,
            target_reps=target_reps,
            confidence_threshold=self.confidence_threshold,
            min_valid_keypoints=self.min_valid_keypoints,
        )
        self.active_sessions[session_id] = session
        logger.info(f"Session {session_id} created: {profile.name} via {mapping.name} for {user_id}")
        return session

    def get_session(self, session_id: str) -> Optional[ExerciseSession]:
        """Get session by ID."""
        return self.active_sessions.get(session_id)

    def complete_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Complete a session, drop it, and return its summary."""
        session = self.active_sessions.pop(session_id, None)
        if session is None:
            return None
        summary = session.complete()
        logger.info(f"Session {session_id} completed: {session.reps} reps, {session.half_reps} half reps")
        return summary

    def cleanup_session(self, session_id: str):
        """Remove session from active sessions."""
        self.active_sessions.pop(session_id, None)

    def cleanup_idle_sessions(self) -> List[str]:
        """Drop sessions with no frame for idle_timeout_s seconds; returns their IDs."""
        if self.idle_timeout_s is None:
            return []
        now = time.monotonic()
        stale = [
            sid for sid, s in self.active_sessions.items()
            if now - s.last_activity > self.idle_timeout_s
        ]
        for sid in stale:
            self.cleanup_session(sid)
            logger.info(f"Session {sid} dropped after {self.idle_timeout_s:.0f}s idle")
        return stale

    @property
    def session_count(self) -> int:
        return len(self.active_sessions)
