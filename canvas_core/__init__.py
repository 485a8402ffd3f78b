"""
Threat Canvas Core - Shared models, serialization, hit-testing and validation.

This package holds the I/O-free pieces of the diagram session engine, used
by the backend session, the HTTP API and the CLI.
"""

from .models import (
    # Enums
    ModelKind,
    ElementKind,
    # Persisted schema
    Position,
    Viewport,
    Component,
    Connection,
    ReportEntry,
    Document,
    DocumentSummary,
    # Live graph
    NodeData,
    GraphNode,
    EdgeData,
    GraphEdge,
    ElementRef,
    GraphSnapshot,
)

from .errors import (
    CanvasError,
    DiagramValidationError,
    ElementNotFoundError,
    DocumentNotFoundError,
    MalformedDocumentError,
    IntegrityError,
    OperationInProgressError,
    CollaboratorError,
    PersistenceError,
    AssistantError,
)
from .shapes import ShapeCategory, ShapeSpec, shape_for, is_container_type
from .serialization import (
    component_to_node,
    node_to_component,
    connection_to_edge,
    edge_to_connection,
)
from .spatial import resolve, effective_z_index, container_at
from .coalescer import CoalescingTimer
from .validation import validate_document, validation_summary, ValidationIssue, IssueSeverity
from .analysis import summarize_document, flatten_document

__all__ = [
    # Enums
    "ModelKind",
    "ElementKind",
    # Models
    "Position",
    "Viewport",
    "Component",
    "Connection",
    "ReportEntry",
    "Document",
    "DocumentSummary",
    "NodeData",
    "GraphNode",
    "EdgeData",
    "GraphEdge",
    "ElementRef",
    "GraphSnapshot",
    # Errors
    "CanvasError",
    "DiagramValidationError",
    "ElementNotFoundError",
    "DocumentNotFoundError",
    "MalformedDocumentError",
    "IntegrityError",
    "OperationInProgressError",
    "CollaboratorError",
    "PersistenceError",
    "AssistantError",
    # Shapes
    "ShapeCategory",
    "ShapeSpec",
    "shape_for",
    "is_container_type",
    # Serialization
    "component_to_node",
    "node_to_component",
    "connection_to_edge",
    "edge_to_connection",
    # Spatial
    "resolve",
    "effective_z_index",
    "container_at",
    # Timers
    "CoalescingTimer",
    # Validation
    "validate_document",
    "validation_summary",
    "ValidationIssue",
    "IssueSeverity",
    # Analysis
    "summarize_document",
    "flatten_document",
]
