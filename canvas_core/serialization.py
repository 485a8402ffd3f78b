"""
Mappers between the persisted document schema and the live graph.

component_to_node / node_to_component and connection_to_edge /
edge_to_connection are inverses: a component converted to a node and back
comes out equal to the original, except for renderer-only data (derived
label, resizability, min sizes) that never enters the property bag.

Persisted property keys:
- position: {"x", "y"} in canvas coordinates
- width / height: node size
- name: display name, also the node's rendered label
- parentNode: id of the enclosing container (regular nodes only)
- selected: persisted selection flag
"""

import copy
import random
from typing import Optional

from .models import (
    Component,
    Connection,
    EdgeData,
    GraphEdge,
    GraphNode,
    NodeData,
    Position,
)
from .shapes import shape_for

POSITION_KEY = "position"
WIDTH_KEY = "width"
HEIGHT_KEY = "height"
NAME_KEY = "name"
PARENT_KEY = "parentNode"
SELECTED_KEY = "selected"
LABEL_KEY = "label"

# Applied when a connection arrives without any properties
DEFAULT_CONNECTION_PROPERTIES = {
    "name": "Data Flow",
    "description": "A data flow connection.",
    "dataType": "Generic",
    "protocol": "TCP/IP",
    "securityConsiderations": "Needs review",
}


def random_position(rng: Optional[random.Random] = None) -> Position:
    """Scatter position for components saved without layout."""
    rng = rng or random
    return Position(x=rng.random() * 400 + 50, y=rng.random() * 200 + 50)


def _read_position(value) -> Optional[Position]:
    if isinstance(value, dict) and "x" in value and "y" in value:
        return Position(x=value["x"], y=value["y"])
    return None


def component_to_node(
    component: Component,
    selected: Optional[bool] = None,
    rng: Optional[random.Random] = None,
) -> GraphNode:
    """
    Convert a persisted Component into a live GraphNode.

    Missing geometry is defaulted from the shape table (containers get a
    larger default and minimum size). The property bag is copied verbatim.

    Args:
        component: The persisted component
        selected: Overrides the persisted selection flag when given
        rng: Random source for default placement (tests pass a seeded one)
    """
    spec = shape_for(component.type)
    properties = copy.deepcopy(component.properties)

    position = _read_position(properties.get(POSITION_KEY)) or random_position(rng)
    width = properties.get(WIDTH_KEY)
    height = properties.get(HEIGHT_KEY)

    # Containers never nest through the parent field
    parent_id = None if spec.is_container else properties.get(PARENT_KEY)

    if selected is None:
        selected = bool(properties.get(SELECTED_KEY, False))

    return GraphNode(
        id=component.id,
        type=component.type,
        position=position,
        width=width if width is not None else spec.default_width,
        height=height if height is not None else spec.default_height,
        parent_id=parent_id,
        selected=selected,
        data=NodeData(
            label=properties.get(NAME_KEY) or component.id,
            properties=properties,
            type=component.type,
            resizable=spec.resizable,
            min_width=spec.min_width,
            min_height=spec.min_height,
            connectable=spec.connectable,
        ),
    )


def node_to_component(node: GraphNode) -> Component:
    """
    Convert a live GraphNode back into a persisted Component.

    Geometry is taken from the node's current position and size, so drags
    and resizes since load are captured.
    """
    properties = copy.deepcopy(node.data.properties)

    properties[POSITION_KEY] = node.position.to_dict()
    properties[WIDTH_KEY] = node.width
    properties[HEIGHT_KEY] = node.height
    properties[NAME_KEY] = node.data.label or properties.get(NAME_KEY) or node.id

    if node.parent_id and not node.is_container:
        properties[PARENT_KEY] = node.parent_id
    else:
        # Drop stale parent references (dragged out, or a container)
        properties.pop(PARENT_KEY, None)

    if node.selected or SELECTED_KEY in properties:
        properties[SELECTED_KEY] = node.selected

    # The rendered label is derived from name, never stored
    properties.pop(LABEL_KEY, None)

    return Component(
        id=node.id,
        type=node.data.type or node.type or "default",
        properties=properties,
    )


def connection_to_edge(connection: Connection, selected: Optional[bool] = None) -> GraphEdge:
    """Convert a persisted Connection into a live GraphEdge."""
    if connection.properties:
        properties = copy.deepcopy(connection.properties)
    else:
        properties = copy.deepcopy(DEFAULT_CONNECTION_PROPERTIES)

    label = connection.label or properties.get(NAME_KEY) or ""
    if selected is None:
        selected = connection.selected

    return GraphEdge(
        id=connection.id,
        source=connection.source,
        target=connection.target,
        source_handle=connection.source_handle,
        target_handle=connection.target_handle,
        label=label,
        selected=selected,
        data=EdgeData(label=label, properties=properties),
    )


def edge_to_connection(edge: GraphEdge) -> Connection:
    """
    Convert a live GraphEdge back into a persisted Connection.

    The label is written both to the top-level label and to
    properties["name"], so either can be trusted on reload.
    """
    label = edge.data.label or edge.label or edge.id
    properties = copy.deepcopy(edge.data.properties)
    properties[NAME_KEY] = label

    return Connection(
        id=edge.id,
        source=edge.source,
        target=edge.target,
        source_handle=edge.source_handle,
        target_handle=edge.target_handle,
        label=label,
        properties=properties,
        selected=edge.selected,
    )


def nodes_to_components(nodes: list[GraphNode]) -> list[Component]:
    return [node_to_component(n) for n in nodes]


def edges_to_connections(edges: list[GraphEdge]) -> list[Connection]:
    return [edge_to_connection(e) for e in edges]
