import base64

import pytest
from fastapi.testclient import TestClient

import web_app

from support import FakeEstimator, factory_for, squat_pose


@pytest.fixture
def estimator():
    est = FakeEstimator([squat_pose(170)])
    original = web_app.app.state.estimator_factory
    web_app.app.state.estimator_factory = factory_for(est)
    yield est
    web_app.app.state.estimator_factory = original


@pytest.fixture
def client():
    return TestClient(web_app.app)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_config_lists_defaults_and_views(client):
    body = client.get("/config").json()
    assert body["defaults"]["theta_down_deg"] == web_app.SETTINGS["config"].theta_down_deg
    assert body["bounds"]["debounce_ms"] == [200.0, 1000.0]
    assert body["views"]["side"]["ankle_symmetry_multiplier"] == 2.0
    assert body["target_fps_options"] == [24, 30]


def test_pose_socket_processes_raw_frames(client, estimator):
    pixels = base64.b64encode(bytes(4 * 4 * 4)).decode()
    with client.websocket_connect("/ws/pose") as ws:
        ws.send_json({"type": "INIT", "view": "front", "target_fps": 30})
        ws.send_json({"type": "FRAME_IMAGE_DATA", "data": pixels, "width": 4, "height": 4, "ts": 0})
        beat = ws.receive_json()
        assert beat["type"] == "HEARTBEAT"
        assert beat["backend"] == "fake"
        assert beat["ts"] == 0

        ws.send_json({"type": "FRAME", "image": "data:image/jpeg;base64,abc", "ts": 77})
        err = ws.receive_json()
        assert err == {"type": "ERROR", "ts": 77, "code": "FRAME_DECODE", "message": err["message"]}
    assert estimator.calls == 1
    assert estimator.closed


def test_pose_socket_survives_non_finite_numbers(client, estimator):
    pixels = base64.b64encode(bytes(4 * 4 * 4)).decode()
    with client.websocket_connect("/ws/pose") as ws:
        ws.send_text('{"type": "FRAME_IMAGE_DATA", "data": "AAAA", "width": 1e400, "height": 1, "ts": 0}')
        ws.send_text(f'{{"type": "FRAME_IMAGE_DATA", "data": "{pixels}", "width": 4, "height": 4, "ts": NaN}}')
        ws.send_json({"type": "FRAME_IMAGE_DATA", "data": pixels, "width": 4, "height": 4, "ts": 5})
        beat = ws.receive_json()
        assert beat["type"] == "HEARTBEAT"
        assert beat["ts"] == 5
    assert estimator.calls == 1
