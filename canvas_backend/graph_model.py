"""
Graph View-Model - the authoritative in-memory graph of the open document.

This module implements:
- Node/edge storage with O(1) lookups and an edges-by-node index
- Property edits, immediate for `name` and coalesced for everything else
- Deletion cascade (edges of a removed node go with it, children detach)
- Selection flags derived from the SelectionCoordinator by equality
- Change callbacks so the session and the WebSocket layer can react

Every public mutation returns a fresh GraphSnapshot; callers never hold
references into the live dictionaries.
"""

import copy
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, Union

from canvas_core.coalescer import DEFAULT_DELAY, CoalescingTimer
from canvas_core.errors import DiagramValidationError, ElementNotFoundError
from canvas_core.models import (
    Component,
    Connection,
    EdgeData,
    GraphEdge,
    GraphNode,
    GraphSnapshot,
    Position,
)
from canvas_core.serialization import (
    DEFAULT_CONNECTION_PROPERTIES,
    HEIGHT_KEY,
    LABEL_KEY,
    NAME_KEY,
    PARENT_KEY,
    POSITION_KEY,
    SELECTED_KEY,
    WIDTH_KEY,
    edges_to_connections,
    nodes_to_components,
)
from canvas_core.spatial import container_at

from .selection import SelectionCoordinator
from .stencils import Stencil, instantiate_node

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """What a mutation touched."""
    MEMBERSHIP = "membership"    # elements added or removed
    PROPERTIES = "properties"    # property bags or labels
    GEOMETRY = "geometry"        # position, size, parent
    SELECTION = "selection"      # selected flags only
    RESET = "reset"              # whole graph replaced or cleared


# Owned by the graph itself; edited through set_parent and the selection
RESERVED_KEYS = (PARENT_KEY, SELECTED_KEY, LABEL_KEY)
GEOMETRY_KEYS = (POSITION_KEY, WIDTH_KEY, HEIGHT_KEY)


def _check_reserved(patch: dict[str, Any]):
    reserved = [key for key in RESERVED_KEYS if key in patch]
    if reserved:
        raise DiagramValidationError(
            f"Properties {', '.join(reserved)} cannot be edited directly"
        )


def _to_number(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise DiagramValidationError(f"{key} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise DiagramValidationError(f"{key} must be a number, got {value!r}")


def _read_geometry(patch: dict[str, Any]) -> dict[str, Any]:
    """Validated geometry values from a patch; raises before anything is applied."""
    geometry: dict[str, Any] = {}
    if POSITION_KEY in patch:
        position = patch[POSITION_KEY]
        if not isinstance(position, dict) or "x" not in position or "y" not in position:
            raise DiagramValidationError("position needs both x and y")
        geometry[POSITION_KEY] = Position(
            x=_to_number("position.x", position["x"]),
            y=_to_number("position.y", position["y"]),
        )
    for key in (WIDTH_KEY, HEIGHT_KEY):
        if patch.get(key) is not None:
            geometry[key] = _to_number(key, patch[key])
    return geometry


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def merge_suggestions(existing: dict[str, Any], suggestions: dict[str, Any]) -> dict[str, Any]:
    """
    Merge AI-suggested properties into a property bag.

    Keys that already hold a non-empty value are kept; only missing or
    blank keys are filled in.
    """
    merged = copy.deepcopy(existing)
    for key, value in suggestions.items():
        if _is_blank(merged.get(key)):
            merged[key] = value
    return merged


class GraphViewModel:
    """
    Holds the live nodes and edges of one document.

    Usage:
        selection = SelectionCoordinator()
        graph = GraphViewModel(selection)
        graph.on_change(lambda kind: print(kind))
        graph.add_element(GraphNode(id="a"))
    """

    def __init__(
        self,
        selection: Optional[SelectionCoordinator] = None,
        commit_delay: float = DEFAULT_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._selection = selection or SelectionCoordinator()
        self._nodes: dict[str, GraphNode] = {}
        self._edges: dict[str, GraphEdge] = {}
        self._edges_by_node: dict[str, set[str]] = {}  # node_id -> set of edge_ids
        self._on_change_callbacks: list[Callable[[ChangeKind], None]] = []
        self._timer = CoalescingTimer(self._apply_coalesced, delay=commit_delay, clock=clock)

        self._selection.on_selection_change(self._sync_selection)

    # --- Index Management ---

    def _index_edge(self, edge: GraphEdge):
        self._edges[edge.id] = edge
        self._edges_by_node.setdefault(edge.source, set()).add(edge.id)
        self._edges_by_node.setdefault(edge.target, set()).add(edge.id)

    def _unindex_edge(self, edge: GraphEdge):
        self._edges.pop(edge.id, None)
        if edge.source in self._edges_by_node:
            self._edges_by_node[edge.source].discard(edge.id)
        if edge.target in self._edges_by_node:
            self._edges_by_node[edge.target].discard(edge.id)

    def _rebuild(self, nodes: list[GraphNode], edges: list[GraphEdge]):
        self._nodes.clear()
        self._edges.clear()
        self._edges_by_node.clear()

        container_ids = {n.id for n in nodes if n.is_container}
        for node in nodes:
            node = node.model_copy(deep=True)
            if node.is_container:
                node.parent_id = None
            elif node.parent_id is not None and node.parent_id not in container_ids:
                logger.warning(
                    f"Detaching {node.id}: parent {node.parent_id} is not a container on this canvas"
                )
                node.parent_id = None
            self._nodes[node.id] = node
        for edge in edges:
            self._index_edge(edge.model_copy(deep=True))

        self._apply_selection_flags(self._selection.selected_id)

    # --- Properties ---

    @property
    def selection(self) -> SelectionCoordinator:
        return self._selection

    @property
    def selected_id(self) -> Optional[str]:
        return self._selection.selected_id

    @property
    def pending_edits(self) -> dict[str, dict[str, Any]]:
        """Coalesced property patches not yet applied, keyed by element id."""
        return self._timer.pending

    def is_empty(self) -> bool:
        return not self._nodes and not self._edges

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        node = self._nodes.get(node_id)
        return node.model_copy(deep=True) if node else None

    def get_edge(self, edge_id: str) -> Optional[GraphEdge]:
        edge = self._edges.get(edge_id)
        return edge.model_copy(deep=True) if edge else None

    def has_element(self, element_id: str) -> bool:
        return element_id in self._nodes or element_id in self._edges

    def get_edges_for_node(self, node_id: str) -> list[GraphEdge]:
        """All edges touching a node (O(1) index lookup)."""
        return [
            self._edges[eid].model_copy(deep=True)
            for eid in self._edges_by_node.get(node_id, set())
            if eid in self._edges
        ]

    def snapshot(self) -> GraphSnapshot:
        """Copy of the current graph."""
        return GraphSnapshot(
            nodes=[n.model_copy(deep=True) for n in self._nodes.values()],
            edges=[e.model_copy(deep=True) for e in self._edges.values()],
            selected_id=self._selection.selected_id,
        )

    # --- Change Callbacks ---

    def on_change(self, callback: Callable[[ChangeKind], None]):
        """Register a callback for graph changes."""
        self._on_change_callbacks.append(callback)

    def _notify_change(self, kind: ChangeKind):
        for callback in self._on_change_callbacks:
            callback(kind)

    # --- Selection ---

    def _apply_selection_flags(self, selected_id: Optional[str]):
        for node in self._nodes.values():
            node.selected = selected_id is not None and node.id == selected_id
        for edge in self._edges.values():
            edge.selected = selected_id is not None and edge.id == selected_id

    def _sync_selection(self, selected_id: Optional[str]):
        self._apply_selection_flags(selected_id)
        self._notify_change(ChangeKind.SELECTION)

    # --- Whole-graph Operations ---

    def replace(self, nodes: list[GraphNode], edges: list[GraphEdge]) -> GraphSnapshot:
        """Swap the whole graph in one step (a single RESET notification)."""
        self._timer.cancel()
        self._rebuild(nodes, edges)
        self._notify_change(ChangeKind.RESET)
        return self.snapshot()

    def clear(self) -> GraphSnapshot:
        """Remove every node and edge."""
        return self.replace([], [])

    # --- Membership ---

    def add_element(self, element: Union[GraphNode, GraphEdge]) -> GraphSnapshot:
        """Add a node or an edge. Edge endpoints must already exist."""
        if self.has_element(element.id):
            raise DiagramValidationError(f"Element already exists: {element.id}")

        if isinstance(element, GraphEdge):
            for endpoint in (element.source, element.target):
                if endpoint not in self._nodes:
                    raise DiagramValidationError(f"Edge endpoint not found: {endpoint}")
            edge = element.model_copy(deep=True)
            edge.selected = edge.id == self._selection.selected_id
            self._index_edge(edge)
        else:
            node = element.model_copy(deep=True)
            if node.is_container:
                node.parent_id = None
            elif node.parent_id is not None:
                parent = self._nodes.get(node.parent_id)
                if parent is None or not parent.is_container:
                    raise DiagramValidationError(
                        f"Parent {node.parent_id} is not a trust boundary on this canvas"
                    )
            node.selected = node.id == self._selection.selected_id
            self._nodes[node.id] = node

        self._notify_change(ChangeKind.MEMBERSHIP)
        return self.snapshot()

    def drop_stencil(self, stencil: Stencil, position: Position) -> GraphNode:
        """
        Instantiate a stencil at a canvas position.

        A regular node dropped inside a trust boundary becomes its child;
        a dropped container never gets a parent.
        """
        parent_id = None
        if not stencil.is_container:
            container = container_at(
                position, list(self._nodes.values()), self._selection.selected_id
            )
            parent_id = container.id if container else None

        node = instantiate_node(stencil, position, parent_id)
        self.add_element(node)
        logger.info(f"Dropped stencil {stencil.id} as node {node.id} (parent={parent_id})")
        return node.model_copy(deep=True)

    def remove_element(self, element_id: str) -> GraphSnapshot:
        """
        Remove a node or an edge.

        Removing a node also removes every edge touching it and detaches
        its child nodes. The selection is cleared if it pointed at any
        removed element.
        """
        removed: list[str] = []

        node = self._nodes.get(element_id)
        if node is not None:
            for edge_id in list(self._edges_by_node.get(element_id, set())):
                edge = self._edges.get(edge_id)
                if edge:
                    self._unindex_edge(edge)
                    removed.append(edge_id)
            self._edges_by_node.pop(element_id, None)

            for child in self._nodes.values():
                if child.parent_id == element_id:
                    child.parent_id = None

            del self._nodes[element_id]
            removed.append(element_id)
        elif element_id in self._edges:
            self._unindex_edge(self._edges[element_id])
            removed.append(element_id)
        else:
            raise ElementNotFoundError(element_id)

        for rid in removed:
            self._timer.cancel(rid)

        self._notify_change(ChangeKind.MEMBERSHIP)
        for rid in removed:
            self._selection.clear_if(rid)

        logger.debug(f"Removed {element_id} ({len(removed) - 1} dependent edges)")
        return self.snapshot()

    def connect(
        self,
        source_id: str,
        target_id: str,
        source_handle: Optional[str] = None,
        target_handle: Optional[str] = None,
    ) -> GraphSnapshot:
        """Create a data-flow edge between two regular nodes."""
        for endpoint in (source_id, target_id):
            node = self._nodes.get(endpoint)
            if node is None:
                raise DiagramValidationError(f"Node not found: {endpoint}")
            if node.is_container or not node.data.connectable:
                raise DiagramValidationError(f"Trust boundaries cannot be connected: {endpoint}")

        properties = copy.deepcopy(DEFAULT_CONNECTION_PROPERTIES)
        label = properties[NAME_KEY]
        edge = GraphEdge(
            source=source_id,
            target=target_id,
            source_handle=source_handle,
            target_handle=target_handle,
            label=label,
            data=EdgeData(label=label, properties=properties),
        )
        return self.add_element(edge)

    # --- Property Operations ---

    def update_properties(self, element_id: str, patch: dict[str, Any]) -> GraphSnapshot:
        """
        Merge a patch into an element's property bag.

        Patch keys overwrite, absent keys are kept. A `name` in the patch
        re-derives the rendered label. Geometry keys on a node also move or
        resize it. parentNode, selected and label are rejected, as are
        non-numeric geometry values; nothing is applied in that case.
        """
        node = self._nodes.get(element_id)
        edge = self._edges.get(element_id)
        if node is None and edge is None:
            raise ElementNotFoundError(element_id)

        _check_reserved(patch)
        patch = copy.deepcopy(patch)
        if node is not None:
            geometry = _read_geometry(patch)
            node.data.properties.update(patch)
            if NAME_KEY in patch:
                node.data.label = str(patch[NAME_KEY] or "") or node.id
            self._apply_geometry(node, geometry)
        else:
            edge.data.properties.update(patch)
            if NAME_KEY in patch:
                label = str(patch[NAME_KEY] or "")
                edge.label = label
                edge.data.label = label

        self._notify_change(ChangeKind.PROPERTIES)
        return self.snapshot()

    def _apply_geometry(self, node: GraphNode, geometry: dict[str, Any]):
        if POSITION_KEY in geometry:
            node.position = geometry[POSITION_KEY]
        if WIDTH_KEY in geometry:
            node.width = max(geometry[WIDTH_KEY], node.data.min_width)
        if HEIGHT_KEY in geometry:
            node.height = max(geometry[HEIGHT_KEY], node.data.min_height)

    def edit_property(self, element_id: str, key: str, value: Any) -> GraphSnapshot:
        """
        Keystroke-level edit from the properties panel.

        `name` is applied immediately so the label follows the typing; any
        other key is coalesced and applied once the element is quiet.
        """
        if not self.has_element(element_id):
            raise ElementNotFoundError(element_id)
        if not key or not key.strip():
            raise DiagramValidationError("Property key cannot be empty")
        _check_reserved({key: value})
        if key in GEOMETRY_KEYS and element_id in self._nodes:
            _read_geometry({key: value})

        if key == NAME_KEY:
            # Flush older edits of other elements first so ordering holds
            for other in list(self._timer.pending):
                if other != element_id:
                    self._timer.flush(other)
            return self.update_properties(element_id, {key: value})

        self._timer.schedule(element_id, {key: value})
        return self.snapshot()

    def commit(self, element_id: Optional[str] = None) -> GraphSnapshot:
        """Apply pending coalesced edits now (blur / explicit commit)."""
        self._timer.flush(element_id)
        return self.snapshot()

    def cancel_pending(self, element_id: Optional[str] = None):
        """Drop pending coalesced edits without applying them."""
        self._timer.cancel(element_id)

    def poll_pending(self) -> int:
        """Apply coalesced edits whose quiet period has elapsed."""
        return self._timer.poll()

    def _apply_coalesced(self, element_id: str, patch: dict[str, Any]):
        if not self.has_element(element_id):
            logger.debug(f"Dropping coalesced edit for removed element {element_id}")
            return
        try:
            self.update_properties(element_id, patch)
        except DiagramValidationError as e:
            logger.warning(f"Dropping coalesced edit for {element_id}: {e}")

    def apply_suggestions(self, element_id: str, suggestions: dict[str, Any]) -> GraphSnapshot:
        """Fill in missing properties from AI suggestions without overwriting."""
        node = self._nodes.get(element_id)
        edge = self._edges.get(element_id)
        if node is None and edge is None:
            raise ElementNotFoundError(element_id)

        current = (node or edge).data.properties
        ignored = [k for k in suggestions if k in RESERVED_KEYS or k in GEOMETRY_KEYS]
        if ignored:
            logger.debug(f"Ignoring suggested keys {ignored} for {element_id}")
        suggestions = {k: v for k, v in suggestions.items() if k not in ignored}
        merged = merge_suggestions(current, suggestions)
        patch = {k: v for k, v in merged.items() if k not in current or current[k] != v}
        if not patch:
            return self.snapshot()
        return self.update_properties(element_id, patch)

    # --- Geometry Operations ---

    def move_node(self, node_id: str, x: float, y: float, reparent: bool = True) -> GraphSnapshot:
        """
        Move a node to an absolute canvas position.

        Moving a trust boundary moves its children by the same offset. A
        regular node is re-parented to the boundary under its center.
        """
        node = self._nodes.get(node_id)
        if node is None:
            raise ElementNotFoundError(node_id)

        dx = x - node.position.x
        dy = y - node.position.y
        node.position = Position(x=x, y=y)

        if node.is_container:
            for child in self._nodes.values():
                if child.parent_id == node_id:
                    child.position = Position(x=child.position.x + dx, y=child.position.y + dy)
        elif reparent:
            cx, cy = node.center()
            container = container_at(
                Position(x=cx, y=cy),
                list(self._nodes.values()),
                self._selection.selected_id,
                exclude_id=node_id,
            )
            node.parent_id = container.id if container else None

        self._notify_change(ChangeKind.GEOMETRY)
        return self.snapshot()

    def resize_node(self, node_id: str, width: float, height: float) -> GraphSnapshot:
        """Resize a node, clamped to its type's minimum size."""
        node = self._nodes.get(node_id)
        if node is None:
            raise ElementNotFoundError(node_id)
        if not node.data.resizable:
            raise DiagramValidationError(f"Node {node_id} is not resizable")

        node.width = max(width, node.data.min_width)
        node.height = max(height, node.data.min_height)

        self._notify_change(ChangeKind.GEOMETRY)
        return self.snapshot()

    def set_parent(self, node_id: str, parent_id: Optional[str]) -> GraphSnapshot:
        """Nest a regular node inside a trust boundary, or detach it with None."""
        node = self._nodes.get(node_id)
        if node is None:
            raise ElementNotFoundError(node_id)

        if parent_id is not None:
            if node.is_container:
                raise DiagramValidationError("Trust boundaries cannot be nested")
            if parent_id == node_id:
                raise DiagramValidationError("A node cannot be its own parent")
            parent = self._nodes.get(parent_id)
            if parent is None:
                raise ElementNotFoundError(parent_id)
            if not parent.is_container:
                raise DiagramValidationError(f"Parent {parent_id} is not a trust boundary")

        node.parent_id = parent_id
        self._notify_change(ChangeKind.GEOMETRY)
        return self.snapshot()

    # --- Conversion ---

    def to_components(self) -> list[Component]:
        """Live nodes as persisted components (captures current geometry)."""
        return nodes_to_components(list(self._nodes.values()))

    def to_connections(self) -> list[Connection]:
        return edges_to_connections(list(self._edges.values()))
