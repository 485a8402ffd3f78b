"""
Core data models for threat-model diagrams.

Two families of models live here:
- Persisted document schema: Document, Component, Connection, Viewport,
  ReportEntry. Components and connections carry flat property bags; layout
  (position, width, height) lives inside the component's properties.
- Live graph view-model: GraphNode, GraphEdge and the GraphSnapshot handed
  out after every mutation. These add transient renderer data (derived
  label, min sizes, resizability) that is never persisted.

Field Naming Convention:
- Persisted JSON uses camelCase keys (modelType, sourceHandle, ownerId)
- Python attributes are snake_case; models accept either on input
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
import uuid

from .shapes import is_container_type


class ModelKind(str, Enum):
    """Kind of threat model a document describes."""
    INFRASTRUCTURE = "infrastructure"
    PROCESS = "process"


class ElementKind(str, Enum):
    """Which collection an element id belongs to."""
    NODE = "node"
    EDGE = "edge"


def generate_node_id() -> str:
    """Generate a unique node ID."""
    return f"n{uuid.uuid4().hex[:8]}"


def generate_edge_id() -> str:
    """Generate a unique edge ID."""
    return f"e{uuid.uuid4().hex[:8]}"


def generate_report_id() -> str:
    """Generate a unique report ID."""
    return f"report-{uuid.uuid4().hex[:8]}"


class Position(BaseModel):
    """A point in canvas coordinates."""
    x: float = 0
    y: float = 0

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}


class Viewport(BaseModel):
    """Camera state: pan offset in screen pixels and zoom factor."""
    x: float = 0
    y: float = 0
    zoom: float = 1

    def screen_to_canvas(self, point: Position) -> Position:
        """Project a screen-space point into canvas coordinates."""
        zoom = self.zoom or 1
        return Position(x=(point.x - self.x) / zoom, y=(point.y - self.y) / zoom)


# --- Persisted document schema ---

class Component(BaseModel):
    """A persisted diagram component with its flat property bag."""
    id: str
    type: str = "default"
    properties: dict[str, Any] = Field(default_factory=dict)


class Connection(BaseModel):
    """
    A persisted connection between two components.

    Uses `source` and `target` as canonical field names. The label is
    mirrored into properties["name"] on save.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_edge_id)
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    target_handle: Optional[str] = Field(default=None, alias="targetHandle")
    label: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)
    selected: bool = False

    @field_validator("label", mode="before")
    @classmethod
    def none_label_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class ReportEntry(BaseModel):
    """An AI-generated report stored verbatim with the document."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_report_id)
    title: str = "Threat Report"
    content: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="createdAt")


class Document(BaseModel):
    """
    The complete persisted threat model.
    This is what the document store reads and writes.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str
    model_type: ModelKind = Field(default=ModelKind.INFRASTRUCTURE, alias="modelType")
    components: list[Component] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    viewport: Optional[Viewport] = None
    reports: list[ReportEntry] = Field(default_factory=list)
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    modified_at: Optional[datetime] = Field(default=None, alias="modifiedDate")

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Model name cannot be empty")
        return value

    @field_validator("model_type", mode="before")
    @classmethod
    def default_model_type(cls, value: Any) -> Any:
        # Older documents were saved without a model kind
        return ModelKind.INFRASTRUCTURE if value in (None, "") else value

    @field_validator("components", "connections", "reports", mode="before")
    @classmethod
    def default_lists(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_json_dict(self) -> dict:
        """Convert to JSON-serializable dict with persisted field names."""
        return self.model_dump(mode="json", by_alias=True)

    def component_ids(self) -> set[str]:
        return {c.id for c in self.components}


class DocumentSummary(BaseModel):
    """Listing entry returned by the document store."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    model_type: ModelKind = Field(default=ModelKind.INFRASTRUCTURE, alias="modelType")
    modified_at: Optional[datetime] = Field(default=None, alias="modifiedDate")


# --- Live graph view-model ---

class NodeData(BaseModel):
    """Node payload: the persisted property bag plus renderer-only metadata."""
    label: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)
    type: str = "default"
    # Renderer metadata, never persisted
    resizable: bool = True
    min_width: float = 0
    min_height: float = 0
    connectable: bool = True
    icon: Optional[str] = None
    color: Optional[str] = None


class GraphNode(BaseModel):
    """A node on the live canvas. Position is in absolute canvas coordinates."""
    id: str = Field(default_factory=generate_node_id)
    type: str = "default"
    position: Position = Field(default_factory=Position)
    width: float = 150
    height: float = 80
    parent_id: Optional[str] = None
    selected: bool = False
    data: NodeData = Field(default_factory=NodeData)

    @property
    def is_container(self) -> bool:
        return is_container_type(self.data.type or self.type)

    @property
    def area(self) -> float:
        return self.width * self.height

    def center(self) -> tuple[float, float]:
        """Get the center point of the node."""
        return (self.position.x + self.width / 2, self.position.y + self.height / 2)

    def bounds(self) -> tuple[float, float, float, float]:
        """Get the bounding box (x, y, right, bottom)."""
        return (
            self.position.x,
            self.position.y,
            self.position.x + self.width,
            self.position.y + self.height,
        )


class EdgeData(BaseModel):
    """Edge payload: label copy plus the persisted property bag."""
    label: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)


class GraphEdge(BaseModel):
    """An edge on the live canvas."""
    id: str = Field(default_factory=generate_edge_id)
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    label: str = ""
    selected: bool = False
    data: EdgeData = Field(default_factory=EdgeData)


class ElementRef(BaseModel):
    """Reference to a single node or edge, e.g. the result of a hit test."""
    kind: ElementKind
    id: str


class GraphSnapshot(BaseModel):
    """Immutable copy of the graph handed out after each mutation."""
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    selected_id: Optional[str] = None

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, edge_id: str) -> Optional[GraphEdge]:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json")


# --- API Request/Response Models ---

class NewDocumentRequest(BaseModel):
    """Request to start a new, unsaved document."""
    name: str = "Untitled Model"
    model_type: ModelKind = ModelKind.INFRASTRUCTURE


class IdentityRequest(BaseModel):
    """External identity changed (route parameter): an id or "new"."""
    identity: Optional[str] = None


class SessionInfoRequest(BaseModel):
    """Request to rename the document or change its kind."""
    name: Optional[str] = None
    model_type: Optional[ModelKind] = None


class SaveDocumentRequest(BaseModel):
    """Request to save; omitted fields use the session's current values."""
    name: Optional[str] = None
    model_type: Optional[ModelKind] = None
    viewport: Optional[Viewport] = None


class DropStencilRequest(BaseModel):
    """Request to instantiate a stencil at a canvas position."""
    stencil_id: str
    x: float
    y: float


class PropertyPatchRequest(BaseModel):
    """Request to merge a patch into an element's property bag."""
    properties: dict[str, Any]


class PropertyEditRequest(BaseModel):
    """A single keystroke-level edit from the properties panel."""
    key: str
    value: Any = None


class ConnectRequest(BaseModel):
    """Request to connect two nodes."""
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class GeometryRequest(BaseModel):
    """Drag or resize gesture result (partial update)."""
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class ParentRequest(BaseModel):
    """Request to nest a node inside a container (or detach it)."""
    parent_id: Optional[str] = None


class PointerRequest(BaseModel):
    """A click on the canvas, in screen or canvas coordinates."""
    x: float
    y: float
    space: str = "canvas"  # "canvas" or "screen"


class SelectionRequest(BaseModel):
    """Request to select an element directly (or clear with null)."""
    element_id: Optional[str] = None
