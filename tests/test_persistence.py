"""
Tests for the document store collaborators
"""

import json

import httpx
import pytest

from canvas_backend.persistence import HttpDocumentStore, JsonFileDocumentStore
from canvas_backend.session import SessionController, SessionPhase
from canvas_core.errors import PersistenceError
from canvas_core.models import Component, Connection, ModelKind, Viewport


def sample_parts():
    components = [
        Component(id="a", type="server", properties={"name": "Web", "position": {"x": 1, "y": 2}}),
        Component(id="b", type="database", properties={"name": "DB"}),
    ]
    connections = [Connection(id="e", source="a", target="b", source_handle="right", label="SQL",
                              properties={"name": "SQL"})]
    return components, connections


@pytest.fixture
def file_store(tmp_path):
    return JsonFileDocumentStore(tmp_path)


class TestJsonFileDocumentStore:
    """Tests for the directory-backed store"""

    @pytest.mark.asyncio
    async def test_save_assigns_id_and_round_trips(self, file_store, tmp_path):
        components, connections = sample_parts()
        document_id = await file_store.save_document(
            "alice", None, "Web App", ModelKind.INFRASTRUCTURE, components, connections,
            Viewport(x=1, y=2, zoom=1.5), [],
        )

        assert document_id.startswith("model-")
        assert (tmp_path / f"{document_id}.json").exists()

        data = await file_store.load_document(document_id)
        assert data["name"] == "Web App"
        assert data["ownerId"] == "alice"
        assert data["connections"][0]["sourceHandle"] == "right"
        assert data["viewport"] == {"x": 1, "y": 2, "zoom": 1.5}

    @pytest.mark.asyncio
    async def test_update_keeps_id(self, file_store):
        components, connections = sample_parts()
        first = await file_store.save_document(
            "alice", None, "v1", ModelKind.PROCESS, components, connections, None, []
        )
        second = await file_store.save_document(
            "alice", first, "v2", ModelKind.PROCESS, components, [], None, []
        )
        assert first == second
        assert (await file_store.load_document(first))["name"] == "v2"

    @pytest.mark.asyncio
    async def test_missing_document(self, file_store):
        assert await file_store.load_document("model-nope") is None

    @pytest.mark.asyncio
    async def test_corrupt_file(self, file_store, tmp_path):
        (tmp_path / "broken.json").write_text("{not json")
        with pytest.raises(PersistenceError):
            await file_store.load_document("broken")

    @pytest.mark.asyncio
    async def test_ids_cannot_escape_directory(self, file_store):
        with pytest.raises(PersistenceError):
            await file_store.load_document("../etc/passwd")

    @pytest.mark.asyncio
    async def test_list_filters_by_owner(self, file_store, tmp_path):
        await file_store.save_document("alice", "model-1", "Mine", ModelKind.INFRASTRUCTURE, [], [], None, [])
        await file_store.save_document("bob", "model-2", "Theirs", ModelKind.INFRASTRUCTURE, [], [], None, [])
        (tmp_path / "junk.json").write_text("[]")

        summaries = await file_store.list_documents("alice")
        assert [s.id for s in summaries] == ["model-1"]

    @pytest.mark.asyncio
    async def test_list_empty_directory(self, tmp_path):
        store = JsonFileDocumentStore(tmp_path / "missing")
        assert await store.list_documents("alice") == []


def http_store(handler):
    return HttpDocumentStore("http://store.test/api", transport=httpx.MockTransport(handler))


class TestHttpDocumentStore:
    """Tests for the REST-backed store"""

    @pytest.mark.asyncio
    async def test_load(self):
        def handler(request):
            assert request.url.path == "/api/models/model-1"
            return httpx.Response(200, json={"id": "model-1", "name": "Web"})

        assert (await http_store(handler).load_document("model-1"))["name"] == "Web"

    @pytest.mark.asyncio
    async def test_load_not_found(self):
        store = http_store(lambda request: httpx.Response(404, json={"detail": "nope"}))
        assert await store.load_document("model-1") is None

    @pytest.mark.asyncio
    async def test_create_posts_without_id(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "model-new"})

        components, connections = sample_parts()
        document_id = await http_store(handler).save_document(
            "alice", None, "Web", ModelKind.INFRASTRUCTURE, components, connections, None, []
        )
        assert document_id == "model-new"
        assert seen["method"] == "POST"
        assert "id" not in seen["body"]
        assert seen["body"]["components"][0]["id"] == "a"

    @pytest.mark.asyncio
    async def test_update_puts_to_document(self):
        def handler(request):
            assert request.method == "PUT"
            assert request.url.path == "/api/models/model-1"
            return httpx.Response(200, json={})

        document_id = await http_store(handler).save_document(
            "alice", "model-1", "Web", ModelKind.INFRASTRUCTURE, [], [], None, []
        )
        assert document_id == "model-1"

    @pytest.mark.asyncio
    async def test_server_error(self):
        store = http_store(lambda request: httpx.Response(500, json={"detail": "boom"}))
        with pytest.raises(PersistenceError, match="boom"):
            await store.load_document("model-1")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(PersistenceError, match="unreachable"):
            await http_store(handler).list_documents("alice")

    @pytest.mark.asyncio
    async def test_list_passes_owner(self):
        def handler(request):
            assert request.url.params["ownerId"] == "alice"
            return httpx.Response(200, json=[
                {"id": "model-1", "name": "Web", "modelType": "process",
                 "modifiedDate": "2024-05-01T10:00:00"},
            ])

        summaries = await http_store(handler).list_documents("alice")
        assert summaries[0].model_type == ModelKind.PROCESS

    @pytest.mark.asyncio
    async def test_load_non_json_body(self):
        store = http_store(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(PersistenceError, match="invalid JSON"):
            await store.load_document("model-1")

    @pytest.mark.asyncio
    async def test_load_non_object_body(self):
        store = http_store(lambda request: httpx.Response(200, json=["model-1"]))
        with pytest.raises(PersistenceError, match="expected a JSON object"):
            await store.load_document("model-1")

    @pytest.mark.asyncio
    async def test_update_with_empty_body_keeps_id(self):
        store = http_store(lambda request: httpx.Response(204))
        document_id = await store.save_document(
            "alice", "model-1", "Web", ModelKind.INFRASTRUCTURE, [], [], None, []
        )
        assert document_id == "model-1"

    @pytest.mark.asyncio
    async def test_list_non_array_body(self):
        store = http_store(lambda request: httpx.Response(200, json={"items": []}))
        with pytest.raises(PersistenceError, match="expected a JSON array"):
            await store.list_documents("alice")


class TestHttpStoreSession:
    """A session backed by the REST store"""

    @pytest.mark.asyncio
    async def test_bad_body_is_error_then_retry_loads(self, graph, assistant, notifier):
        bodies = [
            httpx.Response(200, text="<html>oops</html>"),
            httpx.Response(200, json={"id": "model-1", "name": "Web"}),
        ]
        session = SessionController(
            http_store(lambda request: bodies.pop(0)),
            graph=graph,
            assistant=assistant,
            notifier=notifier,
        )

        state = await session.request_load("model-1")
        assert state.phase == SessionPhase.ERROR
        assert "invalid JSON" in state.message

        state = await session.request_load("model-1")
        assert state.phase == SessionPhase.READY
        assert session.name == "Web"
