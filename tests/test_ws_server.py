import pytest
from fastapi.testclient import TestClient

from convo_agent.application.websocket.ws_server import create_app
from convo_agent.domain.llm.model import ModelConfiguration
from convo_agent.domain.memory.storage.memory_storage import MemoryStorage
from convo_agent.domain.models.messages import PromptResponse, PromptResponseStatus

from conftest import EchoPlanner, ScriptedModel, ScriptedModelFactory, assistant


def build_client(steps):
    planner = EchoPlanner(ModelConfiguration(), ScriptedModelFactory(ScriptedModel(steps)))
    return TestClient(create_app(planner, MemoryStorage()))


def user_message(content="hi"):
    return {"type": "user_message", "content": content, "conversation_id": "c1", "user_id": "u1", "user_name": "Ada"}


def test_health():
    with build_client([]) as client:
        response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["active_connections"] == 0


def test_user_message_runs_a_turn():
    with build_client([assistant("Hello, Ada!")]) as client:
        with client.websocket_connect("/ws/agent/s1") as websocket:
            assert websocket.receive_json()["status"] == "connected"

            websocket.send_json(user_message())

            progress = websocket.receive_json()
            assert progress["type"] == "component"
            assert progress["payload"]["data"]["status"] == "Processing your request..."

            reply = websocket.receive_json()
            assert reply["type"] == "message"
            assert reply["text"] == "Hello, Ada!"
            assert reply["session_id"] == "s1"


def test_failed_turn_sends_error_event():
    failure = PromptResponse(status=PromptResponseStatus.ERROR, error=RuntimeError("down"))
    with build_client([failure]) as client:
        with client.websocket_connect("/ws/agent/s1") as websocket:
            websocket.receive_json()
            websocket.send_json(user_message())

            assert websocket.receive_json()["type"] == "component"
            error = websocket.receive_json()
            assert error["type"] == "error"
            assert error["payload"] == {"message": "AI request failed"}
            assert error["error_code"] == "ModelCallError"


@pytest.mark.parametrize("payload, code", [
    ({"type": "bogus"}, "unsupported_event"),
    ({"type": "user_message", "content": 42}, "invalid_message"),
])
def test_bad_events_are_reported(payload, code):
    with build_client([]) as client:
        with client.websocket_connect("/ws/agent/s1") as websocket:
            websocket.receive_json()
            websocket.send_json(payload)

            error = websocket.receive_json()
            assert error["type"] == "error"
            assert error["error_code"] == code
