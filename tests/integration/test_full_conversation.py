"""
Integration tests - complete conversations through the engine and the HTTP API.
"""
import pytest
from fastapi.testclient import TestClient

from zapflow.api.main import create_app
from zapflow.flow.result import StepStatus

TENANT_ID = "tenant-1"
CONTACT_ID = "5511999998888"
INSTANCE_TOKEN = "instance-token-1"


def webhook_message(text: str, token: str = INSTANCE_TOKEN, **message) -> dict:
    body = {
        "chatid": f"{CONTACT_ID}@s.whatsapp.net",
        "senderName": "Bob",
        "text": text,
        "messageType": "conversation",
        "fromMe": False,
        "isGroup": False,
    }
    body.update(message)
    return {"EventType": "messages", "token": token, "message": body}


@pytest.fixture
def support_flow(make_flow):
    """Menu with a sales branch that captures an email and a support branch that ends."""
    nodes = [
        {"id": "trigger", "type": "trigger"},
        {"id": "menu", "type": "buttonsMessage", "data": {
            "bodyText": "Hi {{contactName}}, how can we help?",
            "buttons": [{"id": "sales", "text": "Sales"}, {"id": "support", "text": "Support"}],
            "variableToStoreReply": "choice"
        }},
        {"id": "ask_email", "type": "question", "data": {
            "questionText": "Your email?",
            "variableToStoreAnswer": "email",
            "validationRegex": r"[^@\s]+@[^@\s]+",
            "errorMessage": "That does not look like an email"
        }},
        {"id": "tag", "type": "tagContact", "data": {"tagName": "lead", "tagOperation": "add"}},
        {"id": "thanks", "type": "textMessage", "data": {"message": "We will write to {{email}}"}},
        {"id": "support_end", "type": "end", "data": {"finalMessage": "Support will call you"}},
    ]
    edges = [
        {"id": "e1", "source": "trigger", "target": "menu"},
        {"id": "e2", "source": "menu", "target": "ask_email", "sourceHandle": "sales"},
        {"id": "e3", "source": "menu", "target": "support_end", "sourceHandle": "support"},
        {"id": "e4", "source": "ask_email", "target": "tag"},
        {"id": "e5", "source": "tag", "target": "thanks"},
    ]
    return make_flow(nodes, edges, keyword="help")


class TestConversation:
    """Complete conversations driven through FlowEngine."""

    async def test_greeting(self, engine, store, greeting_flow, inbound, transport):
        store.add_flow(greeting_flow)

        first = await engine.process_message(TENANT_ID, inbound("start"))
        assert first.status == StepStatus.AWAITING_INPUT
        assert transport.texts == ["Hi", "What is your name?"]

        transport.clear()
        second = await engine.process_message(TENANT_ID, inbound("Bob"))
        assert second.status == StepStatus.ENDED
        assert transport.texts == ["Hello Bob"]
        assert await store.get_state(TENANT_ID, CONTACT_ID) is None

        transport.clear()
        third = await engine.process_message(TENANT_ID, inbound("start"))
        assert third.is_new_session
        assert transport.texts == ["Hi", "What is your name?"]

    async def test_sales_branch(self, engine, store, support_flow, inbound, transport):
        store.add_flow(support_flow)

        await engine.process_message(TENANT_ID, inbound("help"))
        assert transport.texts == ["Hi Bob, how can we help?"]

        await engine.process_message(TENANT_ID, inbound("Sales", reply_id="sales"))
        await engine.process_message(TENANT_ID, inbound("not an email"))
        result = await engine.process_message(TENANT_ID, inbound("bob@example.com"))

        assert result.status == StepStatus.ENDED
        assert transport.texts[1:] == [
            "Your email?",
            "That does not look like an email",
            "We will write to bob@example.com",
        ]
        assert store.tags[(TENANT_ID, CONTACT_ID)] == {"lead"}

    async def test_support_branch(self, engine, store, support_flow, inbound, transport):
        store.add_flow(support_flow)

        await engine.process_message(TENANT_ID, inbound("help"))
        result = await engine.process_message(TENANT_ID, inbound("support"))

        assert result.status == StepStatus.ENDED
        assert transport.texts[-1] == "Support will call you"


class TestHttpApi:
    """Tests for the FastAPI surface."""

    @pytest.fixture
    def client(self, store, registry, api_client, ai_client, greeting_flow):
        store.add_flow(greeting_flow)
        app = create_app(
            store=store,
            registry=registry,
            api_client=api_client,
            ai_client=ai_client,
            start_scheduler=False
        )
        with TestClient(app) as client:
            yield client

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_webhook_runs_flow(self, client, transport):
        response = client.post("/webhook", json=webhook_message("start"))

        assert response.status_code == 200
        assert response.json() == {"status": "received", "tenant_id": TENANT_ID, "contact_id": CONTACT_ID}
        assert transport.texts == ["Hi", "What is your name?"]

    def test_webhook_unknown_token(self, client, transport):
        response = client.post("/webhook", json=webhook_message("start", token="other"))

        assert response.status_code == 401
        assert transport.sent == []

    def test_webhook_ignores_own_and_group_messages(self, client, transport):
        own = client.post("/webhook", json=webhook_message("start", fromMe=True))
        group = client.post("/webhook", json=webhook_message("start", isGroup=True))
        status = client.post("/webhook", json={"EventType": "connection", "token": INSTANCE_TOKEN})

        assert own.json()["reason"] == "outbound message"
        assert group.json()["reason"] == "group message"
        assert status.json()["reason"] == "not a message event"
        assert transport.sent == []

    def test_validate_flow(self, client, greeting_flow):
        response = client.post("/api/flows/validate", json=greeting_flow["elements"])

        assert response.status_code == 200
        assert response.json()["start_node_id"] == "trigger"

    def test_validate_invalid_flow(self, client):
        response = client.post("/api/flows/validate", json={
            "nodes": [{"id": "a", "type": "trigger"}],
            "edges": [{"id": "e", "source": "a", "target": "missing"}]
        })

        assert response.status_code == 422
        assert response.json()["detail"]["valid"] is False

    def test_end_conversation(self, client):
        client.post("/webhook", json=webhook_message("start"))

        ended = client.delete(f"/api/states/{TENANT_ID}/{CONTACT_ID}")
        again = client.delete(f"/api/states/{TENANT_ID}/{CONTACT_ID}")

        assert ended.status_code == 200
        assert ended.json()["status"] == "ended"
        assert again.status_code == 404
