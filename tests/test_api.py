"""
Tests for the HTTP/WebSocket API
"""

import pytest
from fastapi.testclient import TestClient

from canvas_backend.config import Settings
from canvas_backend.main import create_app
from canvas_backend.persistence import JsonFileDocumentStore

from conftest import FakeAssistant


@pytest.fixture
def fake_assistant():
    return FakeAssistant(suggestions={"Encryption": "TLS 1.3"})


@pytest.fixture
def client(tmp_path, fake_assistant):
    settings = Settings(data_dir=tmp_path, toast_interval=0)
    app = create_app(settings, store=JsonFileDocumentStore(tmp_path), assistant=fake_assistant)
    with TestClient(app) as test_client:
        yield test_client


def drop(client, stencil_id, x, y):
    response = client.post("/api/nodes/drop", json={"stencil_id": stencil_id, "x": x, "y": y})
    assert response.status_code == 200
    return response.json()["node"]


class TestSessionEndpoints:
    """Tests for new/load/save over HTTP"""

    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"

    def test_new_edit_save_reload(self, client, tmp_path):
        state = client.post("/api/session/new", json={"name": "Payments"}).json()["state"]
        assert state["phase"] == "new"

        web = drop(client, "server-1", 100, 100)
        db = drop(client, "database-1", 400, 100)
        edge = client.post("/api/edges", json={"source": web["id"], "target": db["id"]}).json()["edge"]
        assert edge["label"] == "Data Flow"

        client.patch(f"/api/elements/{web['id']}/properties", json={"properties": {"name": "Web"}})
        client.patch(f"/api/nodes/{web['id']}/geometry", json={"x": 120, "y": 140})

        saved = client.post("/api/session/save", json={}).json()
        document_id = saved["document_id"]
        assert saved["state"] == {"phase": "ready", "document_id": document_id, "message": None}
        assert (tmp_path / f"{document_id}.json").exists()

        client.post("/api/session/identity", json={"identity": "new"})
        assert client.get("/api/graph").json()["graph"]["nodes"] == []

        loaded = client.post(f"/api/session/load/{document_id}").json()
        assert loaded["success"] is True

        node = client.get(f"/api/nodes/{web['id']}").json()["node"]
        assert node["data"]["label"] == "Web"
        assert node["position"] == {"x": 120, "y": 140}

        listed = client.get("/api/documents").json()["documents"]
        assert [d["id"] for d in listed] == [document_id]

    def test_load_missing_reports_error_state(self, client):
        body = client.post("/api/session/load/model-missing").json()
        assert body["success"] is False
        assert body["state"]["phase"] == "error"
        assert "model-missing" in body["state"]["message"]

        notifications = client.get("/api/notifications").json()["notifications"]
        assert notifications[-1]["variant"] == "destructive"

    def test_blank_name_is_rejected(self, client):
        client.post("/api/session/new", json={"name": "Payments"})
        response = client.post("/api/session/save", json={"name": "  "})
        assert response.status_code == 400
        assert "name" in response.json()["detail"]

    def test_rename(self, client):
        client.post("/api/session/new", json={"name": "Payments"})
        session = client.patch("/api/session", json={"name": "Billing", "model_type": "process"}).json()
        assert session["session"]["name"] == "Billing"
        assert session["session"]["model_type"] == "process"


class TestGraphEndpoints:
    """Tests for graph edits, pointer and selection"""

    def test_unknown_ids_are_404(self, client):
        assert client.get("/api/nodes/nope").status_code == 404
        assert client.delete("/api/elements/nope").status_code == 404
        assert client.post("/api/nodes/drop", json={"stencil_id": "nope", "x": 0, "y": 0}).status_code == 404

    def test_connecting_a_container_is_400(self, client):
        client.post("/api/session/new", json={"name": "Payments"})
        zone = drop(client, "trust-boundary-1", 0, 0)
        web = drop(client, "server-1", 500, 500)
        response = client.post("/api/edges", json={"source": web["id"], "target": zone["id"]})
        assert response.status_code == 400

    def test_non_numeric_width_is_400(self, client):
        client.post("/api/session/new", json={"name": "Payments"})
        web = drop(client, "server-1", 500, 500)
        response = client.patch(f"/api/elements/{web['id']}/properties",
                                json={"properties": {"width": "wide"}})
        assert response.status_code == 400

        edit = client.post(f"/api/elements/{web['id']}/edit", json={"key": "width", "value": "wide"})
        assert edit.status_code == 400

    def test_pointer_selects_regular_node_inside_container(self, client):
        client.post("/api/session/new", json={"name": "Payments"})
        zone = drop(client, "trust-boundary-1", 0, 0)
        web = drop(client, "server-1", 50, 50)
        assert web["parent_id"] == zone["id"]

        body = client.post("/api/pointer", json={"x": 60, "y": 60}).json()
        assert body["hit"] == {"kind": "node", "id": web["id"]}

        body = client.post("/api/pointer", json={"x": 280, "y": 330}).json()
        assert body["selected_id"] == zone["id"]

        body = client.post("/api/pointer", json={"x": 5000, "y": 5000}).json()
        assert body["selected_id"] is None

    def test_pointer_rejects_unknown_space(self, client):
        response = client.post("/api/pointer", json={"x": 0, "y": 0, "space": "world"})
        assert response.status_code == 400

    def test_delete_clears_selection(self, client):
        client.post("/api/session/new", json={"name": "Payments"})
        web = drop(client, "server-1", 0, 0)
        client.put("/api/selection", json={"element_id": web["id"]})

        client.delete(f"/api/elements/{web['id']}")
        assert client.get("/api/session").json()["graph"]["selected_id"] is None

    def test_coalesced_edit_and_commit(self, client):
        client.post("/api/session/new", json={"name": "Payments"})
        web = drop(client, "server-1", 0, 0)

        pending = client.post(f"/api/elements/{web['id']}/edit", json={"key": "OS", "value": "Linux"}).json()
        assert pending["pending"] == {web["id"]: {"OS": "Linux"}}

        graph = client.post("/api/elements/commit").json()["graph"]
        assert graph["nodes"][0]["data"]["properties"]["OS"] == "Linux"

    def test_stencils_by_kind(self, client):
        stencils = client.get("/api/stencils", params={"kind": "process"}).json()["stencils"]
        assert stencils
        assert all(s["stencilType"] == "process" for s in stencils)


class TestAssistantEndpoints:
    """Tests for AI endpoints backed by a fake assistant"""

    def test_suggest_and_report(self, client, fake_assistant):
        client.post("/api/session/new", json={"name": "Payments"})
        web = drop(client, "server-1", 0, 0)

        body = client.post(f"/api/ai/suggest/{web['id']}").json()
        assert body["suggestions"] == {"Encryption": "TLS 1.3"}

        report = client.post("/api/ai/report").json()["report"]
        assert report["title"] == "Threat Report - Payments"
        assert len(client.get("/api/reports").json()["reports"]) == 1

    def test_report_on_empty_canvas_is_400(self, client):
        client.post("/api/session/new", json={"name": "Payments"})
        assert client.post("/api/ai/report").status_code == 400

    def test_validate_and_summary(self, client):
        client.post("/api/session/new", json={"name": "Payments"})
        drop(client, "server-1", 0, 0)
        summary = client.get("/api/document/validate").json()["summary"]
        assert summary["valid"] is True
        assert client.get("/api/document/summary").json()["summary"]["total_components"] == 1


class TestWebSocket:
    """Tests for real-time events"""

    def test_ping(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text("ping")
            assert websocket.receive_json() == {"type": "pong"}

    def test_session_state_is_broadcast(self, client):
        with client.websocket_connect("/ws") as websocket:
            client.post("/api/session/new", json={"name": "Payments"})

            types = []
            for _ in range(10):
                message = websocket.receive_json()
                types.append(message["type"])
                if message["type"] == "session_state":
                    assert message["state"]["phase"] == "new"
                    break
            assert "session_state" in types
