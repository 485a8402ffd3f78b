"""
Threat Canvas Backend - FastAPI Application

This is the main entry point for the diagram session engine.
It provides:
- REST API for session operations (new/load/save), graph edits, pointer
  resolution, selection and viewport, AI assistance and validation
- WebSocket endpoint for real-time updates
- CORS configuration for local frontend development

Engine errors are mapped to HTTP status codes in one place:
400 rejected input, 404 unknown id, 409 conflicting operation,
502 failing collaborator.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from canvas_core import (
    CanvasError,
    CollaboratorError,
    DiagramValidationError,
    DocumentNotFoundError,
    ElementNotFoundError,
    OperationInProgressError,
    Position,
    Viewport,
)
from canvas_core.analysis import summarize_document
from canvas_core.models import (
    ConnectRequest,
    DropStencilRequest,
    GeometryRequest,
    IdentityRequest,
    NewDocumentRequest,
    ParentRequest,
    PointerRequest,
    PropertyEditRequest,
    PropertyPatchRequest,
    SaveDocumentRequest,
    SelectionRequest,
    SessionInfoRequest,
)
from canvas_core.validation import validate_document, validation_summary

from .assistant import AssistantClient, HttpAssistantClient
from .config import Settings
from .graph_model import ChangeKind, GraphViewModel
from .notifications import Notification, Notifier
from .persistence import DocumentStore, HttpDocumentStore, JsonFileDocumentStore
from .selection import SelectionCoordinator
from .session import SessionController, SessionState
from .stencils import StencilCatalog, StencilKind
from .websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1


# --- Async change notification ---
# Bridge between sync engine callbacks and async WebSocket broadcasts

class ChangeRelay:
    """Collects engine events and wakes the broadcaster task."""

    def __init__(self):
        self._event = asyncio.Event()
        self._messages: list[dict] = []
        self._graph_change: Optional[ChangeKind] = None

    def graph_changed(self, kind: ChangeKind):
        # Bursts of graph changes collapse into one diagram_updated
        self._graph_change = kind
        self._event.set()

    def push(self, message: dict):
        self._messages.append(message)
        self._event.set()

    async def run(self, ws_manager: WebSocketManager, session: SessionController):
        """Background task that broadcasts changes to WebSocket clients."""
        while True:
            await self._event.wait()
            self._event.clear()

            change, self._graph_change = self._graph_change, None
            messages, self._messages = self._messages, []

            for message in messages:
                await ws_manager.broadcast(message)
            if change is not None:
                await ws_manager.notify_diagram_updated(session.bound_id, change.value)


async def poll_pending_edits(graph: GraphViewModel):
    """Background task applying coalesced property edits once they are due."""
    while True:
        await asyncio.sleep(POLL_INTERVAL)
        try:
            graph.poll_pending()
        except CanvasError as e:
            logger.warning(f"Coalesced edit failed: {e}")
        except Exception:
            # Keep polling; later edits must still apply
            logger.exception("Unexpected error applying coalesced edits")


def build_store(settings: Settings) -> DocumentStore:
    if settings.store_url:
        logger.info(f"Using remote document store at {settings.store_url}")
        return HttpDocumentStore(settings.store_url)
    logger.info(f"Using JSON document store in {settings.data_dir}")
    return JsonFileDocumentStore(settings.data_dir)


def build_assistant(settings: Settings) -> Optional[AssistantClient]:
    if not settings.assistant_url:
        return None
    return HttpAssistantClient(settings.assistant_url, settings.assistant_model)


def _status_for(error: CanvasError) -> int:
    if isinstance(error, (ElementNotFoundError, DocumentNotFoundError)):
        return 404
    if isinstance(error, OperationInProgressError):
        return 409
    if isinstance(error, CollaboratorError):
        return 502
    return 400


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    assistant: Optional[AssistantClient] = None,
    catalog: Optional[StencilCatalog] = None,
) -> FastAPI:
    """
    Build the application with its own session.

    Collaborators default to what the settings describe; tests pass fakes.
    """
    settings = settings or Settings.from_env()
    store = store or build_store(settings)
    if assistant is None:
        assistant = build_assistant(settings)
    if catalog is None:
        catalog = (
            StencilCatalog.from_json_file(settings.stencil_file)
            if settings.stencil_file else StencilCatalog()
        )

    relay = ChangeRelay()
    ws_manager = WebSocketManager()
    notifier = Notifier(confirm_interval=settings.toast_interval)
    selection = SelectionCoordinator()
    graph = GraphViewModel(selection, commit_delay=settings.commit_delay)
    session = SessionController(
        store,
        graph=graph,
        assistant=assistant,
        notifier=notifier,
        owner_id=settings.owner_id,
        identity_sink=lambda document_id: relay.push(
            {"type": "identity_changed", "document_id": document_id}
        ),
    )

    # Register engine callbacks
    graph.on_change(relay.graph_changed)

    def on_session_state(old: SessionState, new: SessionState):
        relay.push({"type": "session_state", "state": new.to_dict()})

    def on_notification(notification: Notification):
        relay.push({"type": "notification", "notification": notification.to_dict()})

    def on_viewport_reset(viewport: Viewport):
        relay.push({"type": "viewport_reset", "viewport": viewport.model_dump()})

    session.on_state_change(on_session_state)
    notifier.on_notify(on_notification)
    selection.on_viewport_reset(on_viewport_reset)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan handler for startup/shutdown tasks."""
        broadcaster_task = asyncio.create_task(relay.run(ws_manager, session))
        poller_task = asyncio.create_task(poll_pending_edits(graph))

        yield

        # Cleanup
        for task in (broadcaster_task, poller_task):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    app = FastAPI(
        title="Threat Canvas API",
        description="Diagram session engine for the threat-model editor",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session = session
    app.state.ws_manager = ws_manager
    app.state.catalog = catalog

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CanvasError)
    async def canvas_error_handler(request: Request, exc: CanvasError):
        status = _status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    # --- Health Check ---

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok", "connections": ws_manager.connection_count}

    # --- Session ---

    @app.get("/api/session")
    async def get_session():
        """Session state plus the current graph and viewport."""
        return {
            "success": True,
            "session": session.info(),
            "graph": graph.snapshot().to_json_dict(),
            "viewport": selection.viewport.model_dump(),
        }

    @app.patch("/api/session")
    async def update_session(request: SessionInfoRequest):
        """Rename the document or change its kind."""
        return {"success": True, "session": session.update_info(request.name, request.model_type)}

    @app.post("/api/session/new")
    async def new_document(request: NewDocumentRequest):
        """Start a new, unsaved document."""
        state = session.request_new(request.name, request.model_type)
        return {"success": True, "state": state.to_dict()}

    @app.post("/api/session/load/{document_id}")
    async def load_document(document_id: str):
        """Load a persisted document. Failures are reported in the returned state."""
        state = await session.request_load(document_id)
        return {"success": state.message is None, "state": state.to_dict()}

    @app.post("/api/session/identity")
    async def identity_changed(request: IdentityRequest):
        """The route parameter changed: an id, or "new"."""
        state = await session.on_identity_changed(request.identity)
        return {"success": state.message is None, "state": state.to_dict()}

    @app.post("/api/session/save")
    async def save_document(request: SaveDocumentRequest):
        """Persist the canvas."""
        document_id = await session.save(request.name, request.model_type, request.viewport)
        return {"success": True, "document_id": document_id, "state": session.state.to_dict()}

    @app.get("/api/documents")
    async def list_documents():
        """List the owner's persisted documents."""
        documents = await session.list_documents()
        return {
            "success": True,
            "documents": [d.model_dump(mode="json", by_alias=True) for d in documents],
        }

    # --- Graph ---

    @app.get("/api/graph")
    async def get_graph():
        return {"success": True, "graph": graph.snapshot().to_json_dict()}

    @app.post("/api/nodes/drop")
    async def drop_stencil(request: DropStencilRequest):
        """Instantiate a stencil at a canvas position."""
        stencil = catalog.get(request.stencil_id)
        if stencil is None:
            raise ElementNotFoundError(request.stencil_id)
        node = graph.drop_stencil(stencil, Position(x=request.x, y=request.y))
        return {"success": True, "node": node.model_dump(mode="json")}

    @app.get("/api/nodes/{node_id}")
    async def get_node(node_id: str):
        node = graph.get_node(node_id)
        if node is None:
            raise ElementNotFoundError(node_id)
        return {"success": True, "node": node.model_dump(mode="json")}

    @app.patch("/api/nodes/{node_id}/geometry")
    async def update_geometry(node_id: str, request: GeometryRequest):
        """Apply a drag and/or resize gesture."""
        node = graph.get_node(node_id)
        if node is None:
            raise ElementNotFoundError(node_id)

        if request.x is not None or request.y is not None:
            graph.move_node(
                node_id,
                request.x if request.x is not None else node.position.x,
                request.y if request.y is not None else node.position.y,
            )
        if request.width is not None or request.height is not None:
            graph.resize_node(
                node_id,
                request.width if request.width is not None else node.width,
                request.height if request.height is not None else node.height,
            )
        return {"success": True, "node": graph.get_node(node_id).model_dump(mode="json")}

    @app.put("/api/nodes/{node_id}/parent")
    async def set_parent(node_id: str, request: ParentRequest):
        graph.set_parent(node_id, request.parent_id)
        return {"success": True, "node": graph.get_node(node_id).model_dump(mode="json")}

    @app.post("/api/edges")
    async def connect(request: ConnectRequest):
        """Connect two nodes with a data flow."""
        snapshot = graph.connect(
            request.source, request.target, request.source_handle, request.target_handle
        )
        return {"success": True, "edge": snapshot.edges[-1].model_dump(mode="json")}

    @app.get("/api/edges/{edge_id}")
    async def get_edge(edge_id: str):
        edge = graph.get_edge(edge_id)
        if edge is None:
            raise ElementNotFoundError(edge_id)
        return {"success": True, "edge": edge.model_dump(mode="json")}

    @app.patch("/api/elements/{element_id}/properties")
    async def update_properties(element_id: str, request: PropertyPatchRequest):
        """Merge a property patch immediately."""
        snapshot = graph.update_properties(element_id, request.properties)
        return {"success": True, "graph": snapshot.to_json_dict()}

    @app.post("/api/elements/{element_id}/edit")
    async def edit_property(element_id: str, request: PropertyEditRequest):
        """Keystroke-level edit; non-name keys are coalesced."""
        graph.edit_property(element_id, request.key, request.value)
        return {"success": True, "pending": graph.pending_edits}

    @app.post("/api/elements/commit")
    async def commit_edits(element_id: Optional[str] = Query(default=None)):
        """Apply pending edits now (field blur)."""
        snapshot = graph.commit(element_id)
        return {"success": True, "graph": snapshot.to_json_dict()}

    @app.delete("/api/elements/{element_id}")
    async def delete_element(element_id: str):
        """Delete a node (with its edges) or an edge."""
        graph.remove_element(element_id)
        return {"success": True}

    # --- Pointer, Selection, Viewport ---

    @app.post("/api/pointer")
    async def pointer_click(request: PointerRequest):
        """Resolve a click to the element under it and select it."""
        if request.space not in ("canvas", "screen"):
            raise DiagramValidationError(f"Unknown coordinate space: {request.space}")
        hit = session.click(Position(x=request.x, y=request.y), screen=request.space == "screen")
        return {
            "success": True,
            "hit": hit.model_dump() if hit else None,
            "selected_id": selection.selected_id,
        }

    @app.put("/api/selection")
    async def set_selection(request: SelectionRequest):
        if request.element_id is not None and not graph.has_element(request.element_id):
            raise ElementNotFoundError(request.element_id)
        selection.select(request.element_id)
        return {"success": True, "selected_id": selection.selected_id}

    @app.put("/api/viewport")
    async def update_viewport(viewport: Viewport):
        """Cache a camera move."""
        selection.update_viewport(viewport)
        return {"success": True, "viewport": selection.viewport.model_dump()}

    # --- AI Assistant ---

    @app.post("/api/ai/suggest/{element_id}")
    async def suggest_properties(element_id: str):
        suggestions = await session.suggest_properties(element_id)
        return {"success": True, "suggestions": suggestions}

    @app.post("/api/ai/report")
    async def generate_report():
        entry = await session.generate_report()
        return {"success": True, "report": entry.model_dump(mode="json", by_alias=True)}

    @app.get("/api/reports")
    async def list_reports():
        return {
            "success": True,
            "reports": [r.model_dump(mode="json", by_alias=True) for r in session.reports],
        }

    # --- Stencils ---

    @app.get("/api/stencils")
    async def list_stencils(kind: Optional[StencilKind] = Query(default=None)):
        return {
            "success": True,
            "stencils": [s.model_dump(mode="json", by_alias=True) for s in catalog.list(kind)],
        }

    # --- Validation & Analysis ---

    @app.get("/api/document/validate")
    async def validate_current_document():
        """
        Validate the live document for structural issues.

        Returns a list of issues (errors, warnings, info) and a summary.
        """
        issues = validate_document(session.build_document())
        return {
            "success": True,
            "issues": [issue.to_dict() for issue in issues],
            "summary": validation_summary(issues),
        }

    @app.get("/api/document/summary")
    async def summarize_current_document():
        """Structural summary of the live document."""
        summary = summarize_document(session.build_document())
        return {"success": True, "summary": summary.to_dict()}

    # --- Notifications ---

    @app.get("/api/notifications")
    async def list_notifications():
        return {"success": True, "notifications": [n.to_dict() for n in notifier.active]}

    @app.delete("/api/notifications/{notification_id}")
    async def dismiss_notification(notification_id: str):
        if not notifier.dismiss(notification_id):
            raise ElementNotFoundError(notification_id)
        return {"success": True}

    # --- WebSocket ---

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        WebSocket endpoint for real-time updates.

        Clients connect here to receive diagram_updated, session_state,
        identity_changed, viewport_reset and notification events.
        """
        await ws_manager.connect(websocket)

        try:
            while True:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text('{"type": "pong"}')
        except WebSocketDisconnect:
            await ws_manager.disconnect(websocket)

    return app


app = create_app()


# --- Run with uvicorn ---

if __name__ == "__main__":
    import uvicorn

    from .logging_config import setup_logging

    setup_logging(app.state.settings.log_level, app.state.settings.log_file)
    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)
