"""
FORMCOACH Form Service Router

Endpoints for exercise sessions: clients push raw keypoint frames from
their pose detector and receive form scores, coaching cues and rep events.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError, model_validator

from core.config import settings
from shared.utils import error_response, handle_exceptions, success_response

from .models import (
    DETECTOR_MAPPINGS,
    ExerciseSession,
    ExerciseSessionHandler,
    SessionLimitReached,
)

logger = logging.getLogger("formcoach.form_service")

router = APIRouter()


def get_session_handler(request: Request) -> ExerciseSessionHandler:
    """Session handler owned by the running application."""
    return request.app.state.session_handler


# ============= Pydantic Models =============

class KeypointIn(BaseModel):
    x: float
    y: float
    confidence: float = Field(ge=0.0, le=1.0)


class StartSessionRequest(BaseModel):
    user_id: str
    exercise_type: str
    detector: Optional[str] = None
    target_reps: int = Field(default=10, ge=0)


class FrameRequest(BaseModel):
    keypoints: List[KeypointIn]
    timestamp_ms: float
    frame_width: Optional[float] = Field(default=None, gt=0)
    frame_height: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_frame_size(self):
        if (self.frame_width is None) != (self.frame_height is None):
            raise ValueError("frame_width and frame_height must be given together")
        return self

    def frame_size(self):
        if self.frame_width is not None and self.frame_height is not None:
            return (self.frame_width, self.frame_height)
        return None


def _require_session(handler: ExerciseSessionHandler, session_id: str) -> ExerciseSession:
    session = handler.get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=404,
            detail=error_response(f"Session {session_id} not found", "session_not_found"),
        )
    return session


def _process_frame(session: ExerciseSession, frame: FrameRequest) -> Dict[str, Any]:
    result = session.submit(
        [(kp.x, kp.y, kp.confidence) for kp in frame.keypoints],
        timestamp_ms=frame.timestamp_ms,
        frame_size=frame.frame_size(),
    )
    return result.to_dict()


# ============= REST Endpoints =============

@router.get("/exercises")
async def get_exercises(request: Request):
    """List the exercise profiles this service can analyze."""
    handler = get_session_handler(request)
    return success_response([p.to_dict() for p in handler.registry])


@router.get("/detectors")
async def get_detectors():
    """List supported detector keypoint layouts."""
    return success_response([
        {"name": m.name, "num_keypoints": m.num_keypoints}
        for m in DETECTOR_MAPPINGS.values()
    ])


@router.post("/session/start")
@handle_exceptions
async def start_exercise_session(body: StartSessionRequest, request: Request):
    """Create a session for one exercise and one detector."""
    handler = get_session_handler(request)
    try:
        session = handler.create_session(
            user_id=body.user_id,
            exercise_type=body.exercise_type,
            detector=body.detector or settings.DEFAULT_DETECTOR,
            target_reps=body.target_reps,
        )
    except SessionLimitReached as e:
        raise HTTPException(status_code=503, detail=error_response(str(e), "session_limit"))

    return success_response(session.to_dict(), message="Session started")


@router.post("/session/{session_id}/frame")
@handle_exceptions
async def submit_frame(session_id: str, frame: FrameRequest, request: Request):
    """Submit one raw keypoint frame; returns form result and any rep event."""
    session = _require_session(get_session_handler(request), session_id)
    return _process_frame(session, frame)


@router.get("/session/{session_id}")
async def get_session_status(session_id: str, request: Request):
    """Current session status."""
    session = _require_session(get_session_handler(request), session_id)
    return success_response(session.to_dict())


@router.post("/session/{session_id}/complete")
async def complete_session(session_id: str, request: Request):
    """Close a session and return its summary."""
    handler = get_session_handler(request)
    _require_session(handler, session_id)
    summary = handler.complete_session(session_id)
    return success_response(summary, message="Session completed")


# ============= WebSocket Endpoints =============

@router.websocket("/ws/session/{session_id}")
async def exercise_session_stream(websocket: WebSocket, session_id: str):
    """
    Real-time session stream.

    Client sends JSON frames shaped like FrameRequest; server answers each
    with FRAME_RESULT and additionally REP_COMPLETED when a rep finishes.
    """
    await websocket.accept()
    handler: ExerciseSessionHandler = websocket.app.state.session_handler

    session = handler.get_session(session_id)
    if not session:
        await websocket.send_json({
            "type": "ERROR",
            "message": f"Session {session_id} not found"
        })
        await websocket.close()
        return

    await websocket.send_json({
        "type": "SESSION_STARTED",
        "session_id": session_id,
        "exercise_type": session.profile.name,
        "target_reps": session.target_reps,
    })

    try:
        while True:
            data = await websocket.receive_text()

            try:
                frame = FrameRequest.model_validate_json(data)
            except ValidationError as e:
                await websocket.send_json({
                    "type": "ERROR",
                    "message": f"Invalid frame: {e.error_count()} validation error(s)"
                })
                continue

            if handler.get_session(session_id) is not session:
                await websocket.send_json({
                    "type": "ERROR",
                    "message": f"Session {session_id} has ended"
                })
                await websocket.close()
                break

            try:
                result = _process_frame(session, frame)
            except Exception as e:
                logger.error(f"Session {session_id} frame failed: {type(e).__name__}: {e}")
                await websocket.send_json({
                    "type": "ERROR",
                    "message": str(e)
                })
                continue

            await websocket.send_json({"type": "FRAME_RESULT", **result})

            if result["rep_event"] is not None:
                await websocket.send_json({
                    "type": "REP_COMPLETED",
                    "session_id": session_id,
                    **result["rep_event"],
                })

    except WebSocketDisconnect:
        logger.info(f"Session {session_id} stream disconnected")
