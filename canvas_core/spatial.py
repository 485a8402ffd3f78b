"""
Spatial resolver - turns a pointer position into the single element it hits.

Resolution order:
1. Regular (connectable) nodes under the pointer. If any match, edges are
   not considered at all.
2. Edges within EDGE_HIT_TOLERANCE of the segment joining their endpoint
   node centers (first match wins).
3. Container nodes under the pointer.
4. Nothing: the pointer is on empty canvas.

Within a category, candidates are ranked by effective stacking order
(higher first), then by bounding-box area (smaller first, i.e. the most
specific shape). Stacking order is derived from the current selection on
every call and never cached.

Note: edges are tested before containers. When a click lands on both an
edge and a container, the edge wins.

All coordinates are canvas coordinates; callers project screen points with
Viewport.screen_to_canvas first.
"""

import math
from typing import Iterable, Optional

from .models import ElementKind, ElementRef, GraphEdge, GraphNode, Position

# Stacking levels, lowest first
CONTAINER_DEFAULT_Z = 0
CONTAINER_SELECTED_Z = 1  # above other containers, still below every regular node
NODE_DEFAULT_Z = 2
NODE_SELECTED_Z = 3

EDGE_HIT_TOLERANCE = 10.0


def effective_z_index(node: GraphNode, selected_id: Optional[str]) -> int:
    """Stacking order of a node given the globally selected element id."""
    is_selected = selected_id is not None and node.id == selected_id
    if node.is_container:
        return CONTAINER_SELECTED_Z if is_selected else CONTAINER_DEFAULT_Z
    return NODE_SELECTED_Z if is_selected else NODE_DEFAULT_Z


def node_contains(node: GraphNode, point: Position) -> bool:
    """True if the point lies inside (or on the border of) the node's bounds."""
    left, top, right, bottom = node.bounds()
    return left <= point.x <= right and top <= point.y <= bottom


def distance_to_segment(point: Position, a: tuple[float, float], b: tuple[float, float]) -> float:
    """Shortest distance from a point to the segment a-b."""
    ax, ay = a
    bx, by = b
    dx = bx - ax
    dy = by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return math.hypot(point.x - ax, point.y - ay)

    # Project onto the segment and clamp to its ends
    t = ((point.x - ax) * dx + (point.y - ay) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    nearest_x = ax + t * dx
    nearest_y = ay + t * dy
    return math.hypot(point.x - nearest_x, point.y - nearest_y)


def edge_hit(
    edge: GraphEdge,
    nodes_by_id: dict[str, GraphNode],
    point: Position,
    tolerance: float = EDGE_HIT_TOLERANCE,
) -> bool:
    """True if the point is within tolerance of the edge's center-to-center segment."""
    source = nodes_by_id.get(edge.source)
    target = nodes_by_id.get(edge.target)
    if source is None or target is None:
        return False

    a = source.center()
    b = target.center()

    # Cheap bounding-box rejection before the distance computation
    if not (
        min(a[0], b[0]) - tolerance <= point.x <= max(a[0], b[0]) + tolerance
        and min(a[1], b[1]) - tolerance <= point.y <= max(a[1], b[1]) + tolerance
    ):
        return False

    return distance_to_segment(point, a, b) <= tolerance


def rank_nodes(candidates: Iterable[GraphNode], selected_id: Optional[str]) -> list[GraphNode]:
    """Sort nodes front-most first: higher z, then smaller area, then input order."""
    return sorted(
        candidates,
        key=lambda n: (-effective_z_index(n, selected_id), n.area),
    )


def nodes_at(point: Position, nodes: Iterable[GraphNode]) -> list[GraphNode]:
    return [n for n in nodes if node_contains(n, point)]


def container_at(
    point: Position,
    nodes: Iterable[GraphNode],
    selected_id: Optional[str] = None,
    exclude_id: Optional[str] = None,
) -> Optional[GraphNode]:
    """Best-ranked container under the point, used to parent dropped nodes."""
    containers = [
        n for n in nodes_at(point, nodes)
        if n.is_container and n.id != exclude_id
    ]
    ranked = rank_nodes(containers, selected_id)
    return ranked[0] if ranked else None


def resolve(
    pointer: Position,
    nodes: list[GraphNode],
    edges: list[GraphEdge],
    selected_id: Optional[str] = None,
    tolerance: float = EDGE_HIT_TOLERANCE,
) -> Optional[ElementRef]:
    """
    Find the single topmost interactive element under the pointer.

    Args:
        pointer: Click position in canvas coordinates
        nodes: All nodes on the canvas
        edges: All edges on the canvas
        selected_id: Currently selected element id (affects stacking)
        tolerance: Edge hit distance in canvas units

    Returns:
        ElementRef for the hit node or edge, or None for empty canvas
    """
    hits = nodes_at(pointer, nodes)
    regular = [n for n in hits if not n.is_container]
    containers = [n for n in hits if n.is_container]

    if regular:
        best = rank_nodes(regular, selected_id)[0]
        return ElementRef(kind=ElementKind.NODE, id=best.id)

    nodes_by_id = {n.id: n for n in nodes}
    for edge in edges:
        if edge_hit(edge, nodes_by_id, pointer, tolerance):
            return ElementRef(kind=ElementKind.EDGE, id=edge.id)

    if containers:
        best = rank_nodes(containers, selected_id)[0]
        return ElementRef(kind=ElementKind.NODE, id=best.id)

    return None
