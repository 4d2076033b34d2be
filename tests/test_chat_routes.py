"""
Tests for the chatbot HTTP routes.
"""
import pytest
from fastapi.testclient import TestClient

API = "/api/chatbot"


@pytest.fixture
def conversation_id(client: TestClient) -> str:
    response = client.post(f"{API}/initiate", json={"booking_id": "booking_1", "user_id": "user_1"})
    assert response.status_code == 201
    return response.json()["conversation_id"]


def _turn(conversation_id: str, **extra):
    return {"conversation_id": conversation_id, "booking_id": "booking_1", "user_id": "user_1", **extra}


class TestConversationRoutes:
    """Initiate, message and read routes."""

    def test_initiate(self, client: TestClient):
        """Starting a chat returns the greeting and booking context."""
        response = client.post(f"{API}/initiate", json={"booking_id": "booking_1", "user_id": "user_1"})

        assert response.status_code == 201
        data = response.json()
        assert data["conversation_id"]
        assert data["message"].startswith("Hi Jessica Lee!")
        assert "where_is_driver" in data["suggested_actions"]
        assert data["booking_context"]["driver_name"] == "Maria Garcia"

    def test_initiate_requires_ids(self, client: TestClient):
        """Missing ids are rejected with 422."""
        response = client.post(f"{API}/initiate", json={"booking_id": "", "user_id": "user_1"})

        assert response.status_code == 422

    def test_send_message(self, client: TestClient, conversation_id: str):
        """A rider message gets a bot reply."""
        response = client.post(f"{API}/message", json=_turn(conversation_id, message="Where is my driver?"))

        assert response.status_code == 200
        data = response.json()
        assert data["conversation_id"] == conversation_id
        assert data["requires_escalation"] is False
        assert data["escalation_type"] is None
        assert data["metadata"]["intent"] == "where_is_driver"

    def test_empty_message(self, client: TestClient, conversation_id: str):
        """Blank messages fail validation."""
        response = client.post(f"{API}/message", json=_turn(conversation_id, message=""))

        assert response.status_code == 422

    def test_unknown_conversation(self, client: TestClient):
        """Messages to an unknown conversation return 404."""
        response = client.post(f"{API}/message", json=_turn("missing", message="hello"))

        assert response.status_code == 404

    def test_quick_action(self, client: TestClient, conversation_id: str):
        """Quick actions run the bound flow."""
        response = client.post(f"{API}/quick-action", json=_turn(conversation_id, action="talk_to_agent"))

        assert response.status_code == 200
        data = response.json()
        assert data["requires_escalation"] is True
        assert data["escalation_type"] == "support"
        assert data["ticket_id"]

    def test_safety_message(self, client: TestClient, conversation_id: str):
        """Safety keywords escalate through the HTTP surface."""
        response = client.post(f"{API}/message", json=_turn(conversation_id, message="This is an emergency"))

        data = response.json()
        assert data["escalation_type"] == "safety"
        assert "1-800-SAFE-RIDE" in data["message"]

    def test_get_conversation(self, client: TestClient, conversation_id: str):
        """Conversation detail includes its messages."""
        client.post(f"{API}/quick-action", json=_turn(conversation_id, action="ok_thanks"))

        response = client.get(f"{API}/conversation/{conversation_id}")
        limited = client.get(f"{API}/conversation/{conversation_id}", params={"limit": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["conversation"]["status"] == "active"
        assert data["conversation"]["message_count"] == 3
        assert [m["sender"] for m in data["messages"]] == ["bot", "user", "bot"]
        assert len(limited.json()["messages"]) == 1

    def test_get_missing_conversation(self, client: TestClient):
        """Unknown conversation detail returns 404."""
        assert client.get(f"{API}/conversation/missing").status_code == 404

    def test_history(self, client: TestClient, conversation_id: str):
        """History lists the rider's conversations."""
        response = client.get(f"{API}/history/user_1")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["conversations"][0]["id"] == conversation_id
        assert data["conversations"][0]["escalated"] is False

    def test_health(self, client: TestClient):
        """Health check."""
        response = client.get(f"{API}/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestEscalationRoutes:
    """Escalation requests and tickets."""

    def test_escalate_and_read_back(self, client: TestClient, conversation_id: str):
        """Manual escalation can be read back with its ticket."""
        response = client.post(
            f"{API}/escalate",
            json={"conversation_id": conversation_id, "escalation_type": "support", "priority": "high"},
        )

        assert response.status_code == 200
        outcome = response.json()
        assert outcome["transcript_length"] == 1

        request = client.get(f"{API}/escalation/{outcome['escalation_request_id']}").json()
        assert request["priority"] == "high"
        assert len(request["context"]["chat_transcript"]) == 1

        ticket = client.get(f"{API}/ticket/{outcome['ticket_id']}").json()
        assert ticket["status"] == "open"
        assert ticket["priority"] == "high"

    def test_driver_escalation_has_no_ticket(self, client: TestClient, conversation_id: str):
        """Driver escalations open no ticket."""
        response = client.post(
            f"{API}/escalate", json={"conversation_id": conversation_id, "escalation_type": "driver"}
        )

        assert response.status_code == 200
        assert response.json()["ticket_id"] is None

    def test_invalid_escalation_type(self, client: TestClient, conversation_id: str):
        """Unknown escalation types are rejected."""
        response = client.post(
            f"{API}/escalate", json={"conversation_id": conversation_id, "escalation_type": "manager"}
        )

        assert response.status_code == 422

    def test_ticket_updates(self, client: TestClient, conversation_id: str):
        """Ticket status moves forward and rejects going back."""
        outcome = client.post(
            f"{API}/escalate", json={"conversation_id": conversation_id, "escalation_type": "support"}
        ).json()
        ticket_id = outcome["ticket_id"]

        updated = client.put(f"{API}/ticket/{ticket_id}", json={"status": "in_progress", "assigned_agent": "agent_7"})
        backwards = client.put(f"{API}/ticket/{ticket_id}", json={"status": "open"})

        assert updated.status_code == 200
        assert updated.json()["assigned_agent"] == "agent_7"
        assert backwards.status_code == 409

        conversation = client.get(f"{API}/conversation/{conversation_id}").json()["conversation"]
        assert conversation["support_agent_id"] == "agent_7"

    def test_open_tickets(self, client: TestClient, conversation_id: str):
        """Open tickets are listed."""
        client.post(f"{API}/escalate", json={"conversation_id": conversation_id, "escalation_type": "support"})

        data = client.get(f"{API}/tickets/user_1").json()

        assert data["total"] == 1
        assert data["tickets"][0]["conversation_id"] == conversation_id

    def test_missing_records(self, client: TestClient):
        """Unknown requests and tickets return 404."""
        assert client.get(f"{API}/escalation/esc_missing").status_code == 404
        assert client.get(f"{API}/ticket/missing").status_code == 404
        assert client.put(f"{API}/ticket/missing", json={"status": "closed"}).status_code == 404


class TestLifecycleRoutes:
    """Cancellation and closing."""

    def test_cancel(self, client: TestClient, conversation_id: str):
        """Confirming cancellation resolves the conversation."""
        response = client.post(f"{API}/cancel", json={"conversation_id": conversation_id})

        assert response.status_code == 200
        assert "has been cancelled" in response.json()["message"]
        conversation = client.get(f"{API}/conversation/{conversation_id}").json()["conversation"]
        assert conversation["status"] == "resolved"

    def test_close_then_message(self, client: TestClient, conversation_id: str):
        """A closed conversation rejects new messages."""
        closed = client.post(f"{API}/close", json={"conversation_id": conversation_id, "reason": "done"})
        again = client.post(f"{API}/close", json={"conversation_id": conversation_id})
        message = client.post(f"{API}/message", json=_turn(conversation_id, message="hello"))
        escalate = client.post(
            f"{API}/escalate", json={"conversation_id": conversation_id, "escalation_type": "support"}
        )

        assert closed.status_code == 200
        assert closed.json()["status"] == "closed"
        assert again.status_code == 200
        assert message.status_code == 409
        assert escalate.status_code == 409

    def test_close_missing(self, client: TestClient):
        """Closing an unknown conversation returns 404."""
        assert client.post(f"{API}/close", json={"conversation_id": "missing"}).status_code == 404
