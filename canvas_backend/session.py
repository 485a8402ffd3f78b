"""
Session Controller - binds the live graph to a persisted document.

State Machine:
    UNINITIALIZED → NEW ─────────────┐
          │          ↑               │ save
          │          │ new           ↓
          └──→ LOADING(id) ──→ READY(id)
                   │   ↑             │
                   ↓   └──── load ───┘
                ERROR(message)

The external identity (a document id or "new") can change while a load
or save is in flight. Every load is tagged with a sequence number; a
result whose number is no longer current is discarded without touching
the graph or the state. Loads wait for a pending save to finish first.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from canvas_core.analysis import flatten_document, summarize_document
from canvas_core.errors import (
    AssistantError,
    CanvasError,
    DiagramValidationError,
    DocumentNotFoundError,
    ElementNotFoundError,
    MalformedDocumentError,
    OperationInProgressError,
    PersistenceError,
)
from canvas_core.models import (
    Component,
    Document,
    DocumentSummary,
    ElementRef,
    GraphEdge,
    GraphNode,
    ModelKind,
    Position,
    ReportEntry,
    Viewport,
)
from canvas_core.serialization import component_to_node, connection_to_edge, node_to_component
from canvas_core.validation import split_dangling_connections

from .assistant import AssistantClient
from .config import DEFAULT_MODEL_KIND, DEFAULT_MODEL_NAME, NEW_IDENTITY
from .graph_model import ChangeKind, GraphViewModel
from .notifications import Notifier
from .persistence import DocumentStore

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    """Lifecycle phase of the editing session."""
    UNINITIALIZED = "uninitialized"
    NEW = "new"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class SessionState:
    """Tagged session state: the phase plus its payload."""
    phase: SessionPhase
    document_id: Optional[str] = None   # Loading / Ready
    message: Optional[str] = None       # Error

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "document_id": self.document_id,
            "message": self.message,
        }


class SessionController:
    """
    Orchestrates new/load/save for the single open document.

    Usage:
        session = SessionController(store, graph=GraphViewModel(selection))
        session.on_state_change(lambda old, new: print(f"{old} -> {new}"))
        await session.on_identity_changed("model-1234")
        session.graph.edit_property("node-1", "name", "Web Server")
        await session.save()
    """

    def __init__(
        self,
        store: DocumentStore,
        graph: Optional[GraphViewModel] = None,
        assistant: Optional[AssistantClient] = None,
        notifier: Optional[Notifier] = None,
        owner_id: str = "local",
        default_name: str = DEFAULT_MODEL_NAME,
        default_kind: ModelKind = DEFAULT_MODEL_KIND,
        identity_sink: Optional[Callable[[str], None]] = None,
        rng: Optional[random.Random] = None,
    ):
        self._store = store
        self._graph = graph or GraphViewModel()
        self._assistant = assistant
        self._notifier = notifier or Notifier()
        self._owner_id = owner_id
        self._default_name = default_name
        self._default_kind = default_kind
        self._identity_sink = identity_sink
        self._rng = rng

        self._state = SessionState(SessionPhase.UNINITIALIZED)
        self._bound_id: Optional[str] = None
        self._name = default_name
        self._kind = default_kind
        self._reports: list[ReportEntry] = []

        # Load tagging
        self._load_seq = 0
        self._loading_id: Optional[str] = None
        # Bumped whenever the bound document changes underneath a save
        self._epoch = 0
        # Arguments of the last request_new, for idempotence
        self._new_args: Optional[tuple[str, ModelKind]] = None
        # Id assigned by our own save; the echo from the identity sink is ignored
        self._advanced_identity: Optional[str] = None

        self._saving = False
        self._save_gate = asyncio.Event()
        self._save_gate.set()

        self._flattened: Optional[dict[str, Any]] = None
        self._state_callbacks: list[Callable[[SessionState, SessionState], None]] = []

        self._graph.on_change(self._on_graph_change)

    # --- Properties ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def graph(self) -> GraphViewModel:
        return self._graph

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def bound_id(self) -> Optional[str]:
        """Id of the persisted document the canvas is bound to (None = unsaved)."""
        return self._bound_id

    @property
    def name(self) -> str:
        return self._name

    @property
    def model_kind(self) -> ModelKind:
        return self._kind

    @property
    def reports(self) -> list[ReportEntry]:
        return list(self._reports)

    @property
    def is_saving(self) -> bool:
        return self._saving

    @property
    def flattened_document(self) -> dict[str, Any]:
        """Plain-JSON snapshot of the current document, cached between graph changes."""
        if self._flattened is None:
            self._flattened = flatten_document(self.build_document())
        return self._flattened

    def info(self) -> dict:
        """Session summary for API responses."""
        return {
            "state": self._state.to_dict(),
            "document_id": self._bound_id,
            "name": self._name,
            "model_type": self._kind.value,
            "is_saving": self._saving,
            "report_count": len(self._reports),
        }

    # --- State Callbacks ---

    def on_state_change(self, callback: Callable[[SessionState, SessionState], None]):
        """Register a callback receiving (old_state, new_state)."""
        self._state_callbacks.append(callback)

    def _transition_to(self, new_state: SessionState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.info(f"Session state: {_describe(old_state)} -> {_describe(new_state)}")
        for callback in self._state_callbacks:
            callback(old_state, new_state)

    def _on_graph_change(self, kind: ChangeKind):
        if kind != ChangeKind.SELECTION:
            self._flattened = None

    # --- New ---

    def request_new(
        self,
        name: Optional[str] = None,
        kind: Optional[ModelKind] = None,
    ) -> SessionState:
        """
        Start a fresh unsaved document.

        Idempotent: a repeated call with the same arguments while already
        New does nothing. Supersedes any in-flight load.
        """
        name = self._default_name if name is None else name
        if not name or not name.strip():
            raise DiagramValidationError("Model name cannot be empty")
        kind = ModelKind(kind) if kind is not None else self._default_kind

        if self._state.phase == SessionPhase.NEW and self._new_args == (name, kind):
            return self._state

        # Any in-flight load result is now stale
        self._load_seq += 1
        self._loading_id = None
        self._epoch += 1

        self._graph.cancel_pending()
        self._graph.selection.clear()
        self._graph.clear()
        self._graph.selection.reset_viewport()

        self._bound_id = None
        self._name = name
        self._kind = kind
        self._reports = []
        self._advanced_identity = None
        self._new_args = (name, kind)
        self._flattened = None

        self._transition_to(SessionState(SessionPhase.NEW))
        return self._state

    # --- Load ---

    async def request_load(self, document_id: str) -> SessionState:
        """
        Load a persisted document into the canvas.

        Failures move the session to Error and leave the canvas untouched.
        Results of superseded loads are dropped silently.
        """
        if not document_id or not document_id.strip():
            raise DiagramValidationError("Document id cannot be empty")

        if self._state.phase == SessionPhase.LOADING and self._loading_id == document_id:
            return self._state

        self._load_seq += 1
        seq = self._load_seq
        self._loading_id = document_id
        self._new_args = None
        self._transition_to(SessionState(SessionPhase.LOADING, document_id=document_id))

        # Never interleave with a save
        await self._save_gate.wait()
        if seq != self._load_seq:
            logger.debug(f"Load of {document_id} superseded while waiting for save")
            return self._state

        try:
            raw = await self._store.load_document(document_id)
            if seq != self._load_seq:
                logger.warning(f"Discarding stale load result for {document_id}")
                return self._state
            if raw is None:
                raise DocumentNotFoundError(document_id)
            document = self._parse_document(raw, document_id)
            nodes, edges = self._build_graph(document, document_id)
        except CanvasError as e:
            if seq != self._load_seq:
                logger.warning(f"Discarding stale load failure for {document_id}: {e}")
                return self._state
            logger.error(f"Failed to load document {document_id}: {e}")
            self._loading_id = None
            self._transition_to(SessionState(SessionPhase.ERROR, message=str(e)))
            self._notifier.error("Error Loading Model", str(e))
            return self._state
        except Exception as e:
            logger.exception(f"Unexpected error loading document {document_id}")
            if seq == self._load_seq:
                # Never leave the session parked in Loading
                self._loading_id = None
                message = f"Model {document_id} couldn't be loaded: {e}"
                self._transition_to(SessionState(SessionPhase.ERROR, message=message))
                self._notifier.error("Error Loading Model", message)
            raise

        self._apply_document(document_id, document, nodes, edges)
        return self._state

    @staticmethod
    def _parse_document(raw: Any, document_id: str) -> Document:
        if not isinstance(raw, dict):
            raise MalformedDocumentError(
                f"Model {document_id} is malformed: expected an object, got {type(raw).__name__}"
            )
        data = dict(raw)
        data.setdefault("id", document_id)
        try:
            return Document.model_validate(data)
        except ValidationError as e:
            raise MalformedDocumentError(
                f"Model {document_id} is malformed: {_first_error(e)}"
            ) from e

    def _build_graph(
        self, document: Document, document_id: str
    ) -> tuple[list[GraphNode], list[GraphEdge]]:
        """Live nodes and edges for a parsed document; bad property values are malformed."""
        kept, violations = split_dangling_connections(document)
        for violation in violations:
            logger.warning(f"Dropping connection on load: {violation}")

        component_id = None
        try:
            nodes = []
            for component in document.components:
                component_id = component.id
                nodes.append(component_to_node(component, selected=False, rng=self._rng))
            component_id = None
            edges = [connection_to_edge(c, selected=False) for c in kept]
        except (TypeError, ValueError) as e:
            # pydantic.ValidationError is a ValueError
            detail = _first_error(e) if isinstance(e, ValidationError) else str(e)
            where = f" component {component_id}" if component_id else ""
            raise MalformedDocumentError(f"Model {document_id} is malformed:{where} {detail}") from e
        return nodes, edges

    def _apply_document(
        self,
        document_id: str,
        document: Document,
        nodes: list[GraphNode],
        edges: list[GraphEdge],
    ):
        self._graph.cancel_pending()
        self._graph.selection.clear()
        self._graph.replace(nodes, edges)
        self._graph.selection.reset_viewport(document.viewport)

        self._bound_id = document_id
        self._name = document.name
        self._kind = document.model_type
        self._reports = list(document.reports)
        self._advanced_identity = None
        self._loading_id = None
        self._epoch += 1
        self._flattened = None

        self._transition_to(SessionState(SessionPhase.READY, document_id=document_id))
        self._notifier.confirm("Model Loaded", f"Successfully loaded '{document.name}'.")
        logger.info(
            f"Loaded document {document_id}: {len(nodes)} components, {len(edges)} connections"
        )

    # --- Save ---

    async def save(
        self,
        name: Optional[str] = None,
        kind: Optional[ModelKind] = None,
        viewport: Optional[Viewport] = None,
    ) -> str:
        """
        Persist the live graph.

        Creates the document on first save and advances the external
        identity to the new id without reloading. On failure the session
        keeps its last known-good state and the error is re-raised.

        Returns:
            The persisted document id
        """
        name = self._name if name is None else name
        if not name or not name.strip():
            raise DiagramValidationError("Please enter a name for the model.")
        if self._state.phase == SessionPhase.LOADING:
            raise OperationInProgressError("Cannot save while a model is loading")
        if self._saving:
            raise OperationInProgressError("A save is already in progress")

        kind = ModelKind(kind) if kind is not None else self._kind
        if viewport is not None:
            self._graph.selection.update_viewport(viewport)

        # Pending coalesced edits belong in this save
        self._graph.commit()
        components = self._graph.to_components()
        connections = self._graph.to_connections()
        epoch = self._epoch

        self._saving = True
        self._save_gate.clear()
        try:
            saved_id = await self._store.save_document(
                self._owner_id,
                self._bound_id,
                name,
                kind,
                components,
                connections,
                self._graph.selection.viewport,
                list(self._reports),
            )
        except PersistenceError as e:
            logger.error(f"Failed to save document {self._bound_id or '(new)'}: {e}")
            self._notifier.error("Save Failed", str(e))
            raise
        finally:
            self._saving = False
            self._save_gate.set()

        if epoch != self._epoch or self._loading_id is not None:
            logger.warning(f"Save of {saved_id} finished after the session moved on")
            return saved_id

        previous_id = self._bound_id
        self._bound_id = saved_id
        self._name = name
        self._kind = kind
        self._new_args = None
        self._flattened = None

        self._transition_to(SessionState(SessionPhase.READY, document_id=saved_id))
        if previous_id != saved_id:
            self._advanced_identity = saved_id
            if self._identity_sink:
                self._identity_sink(saved_id)

        self._notifier.confirm("Model Saved", f"'{name}' saved successfully.")
        return saved_id

    # --- External Identity ---

    async def on_identity_changed(self, identity: Optional[str]) -> SessionState:
        """
        React to the external identity (route parameter) changing.

        The "new" sentinel while already New is a no-op whatever name or
        kind the canvas was started with, so an unsaved canvas is never
        wiped by the route catching up.
        """
        if identity in (None, "", NEW_IDENTITY):
            if self._state.phase == SessionPhase.NEW:
                return self._state
            return self.request_new()

        if self._state.phase == SessionPhase.LOADING and self._loading_id == identity:
            return self._state

        if (
            self._state.phase == SessionPhase.READY
            and identity == self._bound_id
            and (not self._graph.is_empty() or identity == self._advanced_identity)
        ):
            return self._state

        return await self.request_load(identity)

    # --- Document Info ---

    def update_info(self, name: Optional[str] = None, kind: Optional[ModelKind] = None) -> dict:
        """Rename the document or change its kind. Takes effect on next save."""
        if name is not None:
            if not name.strip():
                raise DiagramValidationError("Model name cannot be empty")
            self._name = name
        if kind is not None:
            self._kind = ModelKind(kind)
        self._flattened = None
        return self.info()

    async def list_documents(self) -> list[DocumentSummary]:
        try:
            return await self._store.list_documents(self._owner_id)
        except PersistenceError as e:
            self._notifier.error("Error Loading Models", str(e))
            raise

    def build_document(self) -> Document:
        """The live session as a persisted Document (not written anywhere)."""
        return Document(
            id=self._bound_id,
            name=self._name,
            model_type=self._kind,
            components=self._graph.to_components(),
            connections=self._graph.to_connections(),
            viewport=self._graph.selection.viewport,
            reports=list(self._reports),
            owner_id=self._owner_id,
        )

    # --- Pointer ---

    def click(self, pointer: Position, screen: bool = False) -> Optional[ElementRef]:
        """Select whatever the pointer hits; empty canvas clears the selection."""
        selection = self._graph.selection
        if screen:
            pointer = selection.viewport.screen_to_canvas(pointer)
        snapshot = self._graph.snapshot()
        return selection.select_at(pointer, snapshot.nodes, snapshot.edges)

    # --- AI Assistant ---

    def _require_assistant(self) -> AssistantClient:
        if self._assistant is None:
            raise AssistantError("No AI assistant is configured")
        return self._assistant

    async def suggest_properties(
        self, element_id: str, description: Optional[str] = None
    ) -> dict[str, Any]:
        """Ask the assistant for extra properties and merge them into the element."""
        assistant = self._require_assistant()

        node = self._graph.get_node(element_id)
        if node is not None:
            component = node_to_component(node)
        else:
            edge = self._graph.get_edge(element_id)
            if edge is None:
                raise ElementNotFoundError(element_id)
            component = Component(id=edge.id, type="connection", properties=edge.data.properties)

        if description is None:
            description = summarize_document(self.build_document()).describe()

        try:
            suggestions = await assistant.suggest_properties(component, description)
        except AssistantError as e:
            self._notifier.error("AI Suggestion Failed", str(e))
            raise

        if not self._graph.has_element(element_id):
            logger.info(f"Element {element_id} was removed before suggestions arrived")
            return suggestions

        self._graph.apply_suggestions(element_id, suggestions)
        if suggestions:
            self._notifier.notify(
                "AI Suggestions Applied", f"{len(suggestions)} properties suggested."
            )
        return suggestions

    async def generate_report(self) -> ReportEntry:
        """Generate a threat report for the current canvas and store it with the session."""
        assistant = self._require_assistant()
        if self._graph.is_empty():
            raise DiagramValidationError("Add components to the model before generating a report.")

        try:
            content = await assistant.generate_report(self.flattened_document, self._name, self._kind)
        except AssistantError as e:
            self._notifier.error("Report Generation Failed", str(e))
            raise

        entry = ReportEntry(title=f"Threat Report - {self._name}", content=content)
        self.add_report(entry)
        self._notifier.notify("Report Generated", "The threat report is ready.")
        return entry

    def add_report(self, entry: ReportEntry) -> ReportEntry:
        """Attach a report; it is persisted with the next save."""
        self._reports.append(entry)
        return entry


def _describe(state: SessionState) -> str:
    if state.phase in (SessionPhase.LOADING, SessionPhase.READY):
        return f"{state.phase.value}({state.document_id})"
    if state.phase == SessionPhase.ERROR:
        return f"{state.phase.value}({state.message})"
    return state.phase.value


def _first_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location} {first.get('msg', '')}".strip()
