"""
Shared test fixtures for pytest
"""

import asyncio
import copy
import random
from typing import Any, Optional

import pytest

from canvas_backend.graph_model import GraphViewModel
from canvas_backend.logging_config import setup_logging
from canvas_backend.notifications import Notifier
from canvas_backend.persistence import build_payload
from canvas_backend.selection import SelectionCoordinator
from canvas_backend.session import SessionController
from canvas_core.models import Component, DocumentSummary, ModelKind


class ManualClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeDocumentStore:
    """
    In-memory DocumentStore whose calls can be held open.

    hold_load(id) / hold_save() return an asyncio.Event; the call blocks
    until the test sets it, which lets tests interleave operations.
    """

    def __init__(self):
        self.documents: dict[str, dict[str, Any]] = {}
        self.load_calls: list[str] = []
        self.save_calls = 0
        self.fail_load: Optional[Exception] = None
        self.fail_save: Optional[Exception] = None
        self.save_gate: Optional[asyncio.Event] = None
        self._load_gates: dict[str, asyncio.Event] = {}
        self._counter = 0

    def hold_load(self, document_id: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._load_gates[document_id] = gate
        return gate

    def hold_save(self) -> asyncio.Event:
        self.save_gate = asyncio.Event()
        return self.save_gate

    async def load_document(self, document_id):
        self.load_calls.append(document_id)
        gate = self._load_gates.get(document_id)
        if gate is not None:
            await gate.wait()
        if self.fail_load is not None:
            raise self.fail_load
        document = self.documents.get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def save_document(self, owner_id, document_id, name, kind, components,
                            connections, viewport, reports):
        self.save_calls += 1
        if self.save_gate is not None:
            await self.save_gate.wait()
        if self.fail_save is not None:
            raise self.fail_save
        if document_id is None:
            self._counter += 1
            document_id = f"model-{self._counter:04d}"
        self.documents[document_id] = build_payload(
            owner_id, document_id, name, kind, components, connections, viewport, reports
        )
        return document_id

    async def list_documents(self, owner_id):
        return [
            DocumentSummary.model_validate(doc)
            for doc in self.documents.values()
            if doc.get("ownerId") in (None, owner_id)
        ]


class FakeAssistant:
    """AssistantClient returning canned answers."""

    def __init__(self, suggestions=None, report="## Spoofing\nNo issues."):
        self.suggestions = suggestions if suggestions is not None else {}
        self.report = report
        self.error: Optional[Exception] = None
        self.suggest_calls: list[tuple[Component, Optional[str]]] = []
        self.report_calls: list[tuple[dict, str, ModelKind]] = []

    async def suggest_properties(self, component, description=None):
        self.suggest_calls.append((component, description))
        if self.error is not None:
            raise self.error
        return dict(self.suggestions)

    async def generate_report(self, document, name, kind):
        self.report_calls.append((document, name, kind))
        if self.error is not None:
            raise self.error
        return self.report


def make_component(component_id, x, y, width=150, height=80, type_tag="server",
                   name=None, **extra) -> dict:
    """Persisted component dict as the store returns it."""
    properties = {
        "name": name or component_id,
        "position": {"x": x, "y": y},
        "width": width,
        "height": height,
    }
    properties.update(extra)
    return {"id": component_id, "type": type_tag, "properties": properties}


def make_document(document_id, name="Sample", components=None, connections=None,
                  viewport=None, model_type="infrastructure") -> dict:
    return {
        "id": document_id,
        "name": name,
        "modelType": model_type,
        "components": components or [],
        "connections": connections or [],
        "viewport": viewport,
        "reports": [],
    }


@pytest.fixture(autouse=True, scope="session")
def setup_test_logging():
    """Setup logging for all tests"""
    setup_logging("DEBUG")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def selection():
    return SelectionCoordinator()


@pytest.fixture
def graph(selection, clock):
    """GraphViewModel driven by the manual clock"""
    return GraphViewModel(selection, commit_delay=0.5, clock=clock)


@pytest.fixture
def store():
    return FakeDocumentStore()


@pytest.fixture
def assistant():
    return FakeAssistant()


@pytest.fixture
def notifier(clock):
    return Notifier(confirm_interval=2.5, clock=clock)


@pytest.fixture
def identity_log():
    """Ids pushed to the external identity by first saves"""
    return []


@pytest.fixture
def session(store, graph, assistant, notifier, identity_log):
    return SessionController(
        store,
        graph=graph,
        assistant=assistant,
        notifier=notifier,
        identity_sink=identity_log.append,
        rng=random.Random(42),
    )


@pytest.fixture
def sample_document():
    """Two servers inside a trust boundary, connected by one data flow"""
    return make_document(
        "model-a",
        name="Web App",
        components=[
            make_component("boundary-1", 0, 0, 300, 350, type_tag="boundary", name="DMZ"),
            make_component("web", 20, 40, parentNode="boundary-1", OS="Linux"),
            make_component("db", 20, 200, type_tag="database", parentNode="boundary-1"),
        ],
        connections=[
            {
                "id": "flow-1",
                "source": "web",
                "target": "db",
                "label": "SQL",
                "properties": {"name": "SQL", "protocol": "TLS"},
            }
        ],
        viewport={"x": 10, "y": 20, "zoom": 1.5},
    )
