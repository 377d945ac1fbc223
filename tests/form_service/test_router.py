"""
HTTP and WebSocket endpoints of the form service.
"""

import pytest
from fastapi.testclient import TestClient

from main import app

SQUAT_CYCLE = [170, 170, 150, 130, 110, 90] + [70] * 9 + [80, 100, 120, 140, 165, 170]


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def frame(squat_keypoints):
    def build(timestamp_ms=0.0, **kwargs):
        return {
            "keypoints": [
                {"x": x, "y": y, "confidence": c} for x, y, c in squat_keypoints(**kwargs)
            ],
            "timestamp_ms": timestamp_ms,
        }
    return build


def _start(client, exercise="squat", **extra):
    response = client.post(
        "/api/form/session/start",
        json={"user_id": "user-1", "exercise_type": exercise, **extra},
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]["session_id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_list_exercises(client):
    response = client.get("/api/form/exercises")
    assert response.status_code == 200
    names = {p["name"] for p in response.json()["data"]}
    assert names == {"squat", "pushup", "plank"}


def test_list_detectors(client):
    data = client.get("/api/form/detectors").json()["data"]
    assert {d["name"]: d["num_keypoints"] for d in data} == {"movenet": 17, "blazepose": 33}


def test_start_session(client):
    response = client.post(
        "/api/form/session/start",
        json={"user_id": "user-1", "exercise_type": "squat", "target_reps": 5},
    )
    body = response.json()

    assert response.status_code == 200
    assert body["success"] is True
    assert body["data"]["exercise"] == "squat"
    assert body["data"]["detector"] == "movenet"
    assert body["data"]["target_reps"] == 5
    assert body["data"]["state"] == "active"


def test_start_unknown_exercise_is_bad_request(client):
    response = client.post(
        "/api/form/session/start",
        json={"user_id": "user-1", "exercise_type": "burpee"},
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["success"] is False
    assert detail["error_code"] == "invalid_request"
    assert "Invalid exercise type" in detail["error"]


def test_start_unknown_detector_is_bad_request(client):
    response = client.post(
        "/api/form/session/start",
        json={"user_id": "user-1", "exercise_type": "squat", "detector": "openpose"},
    )
    assert response.status_code == 400
    assert "Unknown detector" in response.json()["detail"]["error"]


def test_frames_count_a_rep(client, frame):
    session_id = _start(client)

    results = []
    for i, angle in enumerate(SQUAT_CYCLE):
        response = client.post(
            f"/api/form/session/{session_id}/frame",
            json=frame(timestamp_ms=i * 33.0, hip_angle=angle),
        )
        assert response.status_code == 200
        results.append(response.json())

    events = [r["rep_event"] for r in results if r["rep_event"] is not None]
    assert len(events) == 1
    assert events[0]["kind"] == "full_rep"
    assert results[-1]["reps"] == 1
    assert results[0]["form"]["feedback"] == "Great form!"

    status = client.get(f"/api/form/session/{session_id}").json()["data"]
    assert status["reps"] == 1
    assert status["frames_processed"] == len(SQUAT_CYCLE)


def test_frame_without_pose(client, frame):
    session_id = _start(client)
    response = client.post(f"/api/form/session/{session_id}/frame", json=frame(confidence=0.1))

    assert response.status_code == 200
    assert response.json()["pose_detected"] is False
    assert response.json()["error"] == "no_pose"


def test_frame_validation_error(client, frame):
    session_id = _start(client)
    payload = frame()
    payload["keypoints"][0]["confidence"] = 1.5

    response = client.post(f"/api/form/session/{session_id}/frame", json=payload)
    assert response.status_code == 422


def test_frame_for_unknown_session(client, frame):
    response = client.post("/api/form/session/missing/frame", json=frame())
    assert response.status_code == 404
    assert response.json()["detail"]["error_code"] == "session_not_found"


def test_complete_session(client, frame):
    session_id = _start(client)
    client.post(f"/api/form/session/{session_id}/frame", json=frame())

    response = client.post(f"/api/form/session/{session_id}/complete")
    assert response.status_code == 200
    summary = response.json()["data"]
    assert summary["status"] == "completed"
    assert summary["summary"]["frames_processed"] == 1

    assert client.get(f"/api/form/session/{session_id}").status_code == 404
    assert client.post(f"/api/form/session/{session_id}/complete").status_code == 404


def test_websocket_stream(client, frame):
    session_id = _start(client)

    with client.websocket_connect(f"/api/form/ws/session/{session_id}") as ws:
        started = ws.receive_json()
        assert started["type"] == "SESSION_STARTED"
        assert started["exercise_type"] == "squat"

        rep_messages = []
        for i, angle in enumerate(SQUAT_CYCLE):
            ws.send_json(frame(timestamp_ms=i * 33.0, hip_angle=angle))
            message = ws.receive_json()
            assert message["type"] == "FRAME_RESULT"
            if message["rep_event"] is not None:
                rep_messages.append(ws.receive_json())

        assert len(rep_messages) == 1
        assert rep_messages[0]["type"] == "REP_COMPLETED"
        assert rep_messages[0]["rep_count"] == 1
        assert rep_messages[0]["session_id"] == session_id


def test_websocket_invalid_frame(client):
    session_id = _start(client)

    with client.websocket_connect(f"/api/form/ws/session/{session_id}") as ws:
        ws.receive_json()
        ws.send_json({"keypoints": "not a list"})
        message = ws.receive_json()
        assert message["type"] == "ERROR"
        assert "Invalid frame" in message["message"]


def test_websocket_non_json_frame(client):
    session_id = _start(client)

    with client.websocket_connect(f"/api/form/ws/session/{session_id}") as ws:
        ws.receive_json()
        ws.send_text("not json at all")
        assert ws.receive_json()["type"] == "ERROR"

        ws.send_text("[]")
        assert ws.receive_json()["type"] == "ERROR"


def test_websocket_frame_after_rest_complete(client, frame):
    session_id = _start(client)

    with client.websocket_connect(f"/api/form/ws/session/{session_id}") as ws:
        ws.receive_json()
        assert client.post(f"/api/form/session/{session_id}/complete").status_code == 200

        ws.send_json(frame())
        message = ws.receive_json()
        assert message["type"] == "ERROR"
        assert "has ended" in message["message"]


def test_partial_frame_size_rejected(client, frame):
    session_id = _start(client)
    payload = frame()
    payload["frame_width"] = 640

    response = client.post(f"/api/form/session/{session_id}/frame", json=payload)
    assert response.status_code == 422


def test_pixel_frame_accepted(client, frame):
    session_id = _start(client)
    payload = frame()
    for kp in payload["keypoints"]:
        kp["x"] *= 640
        kp["y"] *= 640
    payload["frame_width"] = 640
    payload["frame_height"] = 480

    response = client.post(f"/api/form/session/{session_id}/frame", json=payload)
    assert response.status_code == 200
    assert response.json()["form"]["feedback"] == "Great form!"


def test_websocket_unknown_session(client):
    with client.websocket_connect("/api/form/ws/session/missing") as ws:
        message = ws.receive_json()
        assert message["type"] == "ERROR"
