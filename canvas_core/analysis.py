"""
Document analysis - Graph summarization and the flattened AI snapshot.

The summary gives the AI assistant (and the API) a quick structural view
of a threat model; flatten_document builds the plain-JSON document the
assistant consumes.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .shapes import is_container_type

if TYPE_CHECKING:
    from .models import Document


@dataclass
class ConnectedGroup:
    """A set of components reachable from each other through connections."""
    component_ids: list[str] = field(default_factory=list)
    connection_count: int = 0

    @property
    def size(self) -> int:
        return len(self.component_ids)


@dataclass
class ComponentConnectionInfo:
    """Connection counts for a single component."""
    component_id: str
    name: str
    incoming: int = 0   # Connections pointing to this component
    outgoing: int = 0   # Connections pointing from this component

    @property
    def total(self) -> int:
        return self.incoming + self.outgoing


@dataclass
class ModelSummary:
    """Structural summary of a threat model."""
    name: str
    model_type: str
    total_components: int
    total_connections: int
    total_containers: int
    components_by_type: dict[str, int]
    connected_groups: int
    most_connected: list[ComponentConnectionInfo]
    orphan_count: int
    report_count: int

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "model_type": self.model_type,
            "total_components": self.total_components,
            "total_connections": self.total_connections,
            "total_containers": self.total_containers,
            "components_by_type": self.components_by_type,
            "connected_groups": self.connected_groups,
            "most_connected": [
                {
                    "id": c.component_id,
                    "name": c.name,
                    "connections": c.total,
                    "incoming": c.incoming,
                    "outgoing": c.outgoing
                }
                for c in self.most_connected
            ],
            "orphan_count": self.orphan_count,
            "report_count": self.report_count,
        }

    def describe(self) -> str:
        """One-paragraph description handed to the AI assistant as context."""
        types = ", ".join(f"{count} {kind}" for kind, count in sorted(self.components_by_type.items()))
        return (
            f"{self.model_type.capitalize()} threat model '{self.name}' with "
            f"{self.total_components} components ({types or 'none'}), "
            f"{self.total_connections} connections and {self.total_containers} trust boundaries."
        )


def find_connected_groups(document: "Document") -> list[ConnectedGroup]:
    """
    Find connected groups of regular components using BFS.

    Containers are skipped: they group visually but are never connected.

    Args:
        document: The document to analyze

    Returns:
        List of ConnectedGroup objects
    """
    ids = [c.id for c in document.components if not is_container_type(c.type)]
    if not ids:
        return []

    # Undirected adjacency
    adjacency: dict[str, set[str]] = {cid: set() for cid in ids}
    for connection in document.connections:
        if connection.source in adjacency and connection.target in adjacency:
            adjacency[connection.source].add(connection.target)
            adjacency[connection.target].add(connection.source)

    visited: set[str] = set()
    groups: list[ConnectedGroup] = []

    for start in ids:
        if start in visited:
            continue

        members: list[str] = []
        edge_count = 0
        queue = [start]

        while queue:
            current = queue.pop(0)
            if current in visited:
                continue

            visited.add(current)
            members.append(current)

            for neighbor in adjacency[current]:
                if neighbor not in visited:
                    queue.append(neighbor)
                    edge_count += 1

        groups.append(ConnectedGroup(component_ids=members, connection_count=edge_count))

    return groups


def calculate_connections(document: "Document") -> dict[str, ComponentConnectionInfo]:
    """Connection counts for every component, keyed by component id."""
    connections: dict[str, ComponentConnectionInfo] = {}
    for component in document.components:
        connections[component.id] = ComponentConnectionInfo(
            component_id=component.id,
            name=str(component.properties.get("name") or component.id)
        )

    for connection in document.connections:
        if connection.source in connections:
            connections[connection.source].outgoing += 1
        if connection.target in connections:
            connections[connection.target].incoming += 1

    return connections


def summarize_document(document: "Document", top_n: int = 5) -> ModelSummary:
    """
    Generate a structural summary of a document.

    Args:
        document: The document to summarize
        top_n: Number of most connected components to include

    Returns:
        ModelSummary object with all analysis results
    """
    type_counts: dict[str, int] = defaultdict(int)
    container_count = 0
    for component in document.components:
        if is_container_type(component.type):
            container_count += 1
        else:
            type_counts[component.type] += 1

    regular_ids = {c.id for c in document.components if not is_container_type(c.type)}
    connections = calculate_connections(document)
    regular = [info for cid, info in connections.items() if cid in regular_ids]

    most_connected = sorted(regular, key=lambda x: x.total, reverse=True)
    most_connected = [c for c in most_connected[:top_n] if c.total > 0]

    return ModelSummary(
        name=document.name,
        model_type=document.model_type.value,
        total_components=len(document.components),
        total_connections=len(document.connections),
        total_containers=container_count,
        components_by_type=dict(type_counts),
        connected_groups=len(find_connected_groups(document)),
        most_connected=most_connected,
        orphan_count=sum(1 for c in regular if c.total == 0),
        report_count=len(document.reports),
    )


def flatten_document(document: "Document") -> dict:
    """
    Plain-JSON snapshot of a document for the AI assistant.

    Carries components, connections, viewport, name and kind; stored
    reports are left out since they are the assistant's own output.
    """
    data = document.to_json_dict()
    return {
        "id": data.get("id"),
        "name": data["name"],
        "modelType": data["modelType"],
        "components": data["components"],
        "connections": data["connections"],
        "viewport": data.get("viewport"),
    }
