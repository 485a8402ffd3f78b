"""
Stencil catalog - the palette of component templates users drop on the canvas.

The catalog itself is managed elsewhere; the engine only reads records and
trusts their values. A container stencil (trust boundary) always produces a
node of type "boundary", whatever its icon.
"""

import copy
import json
import logging
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from canvas_core.models import GraphNode, NodeData, Position
from canvas_core.shapes import CONTAINER_TYPE, shape_for

logger = logging.getLogger(__name__)


class StencilKind(str, Enum):
    """Which palette a stencil belongs to."""
    INFRASTRUCTURE = "infrastructure"
    PROCESS = "process"


class Stencil(BaseModel):
    """A catalog record: type tag, default properties and display hints."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    type_tag: str = Field(alias="typeTag")
    stencil_type: StencilKind = Field(default=StencilKind.INFRASTRUCTURE, alias="stencilType")
    icon: Optional[str] = Field(default=None, alias="iconName")
    color: Optional[str] = Field(default=None, alias="textColor")
    properties: dict[str, Any] = Field(default_factory=dict)
    is_container: bool = Field(default=False, alias="isBoundary")

    @property
    def node_type(self) -> str:
        return CONTAINER_TYPE if self.is_container else self.type_tag


def instantiate_node(
    stencil: Stencil,
    position: Position,
    parent_id: Optional[str] = None,
) -> GraphNode:
    """
    Build a new node from a stencil at a canvas position.

    The parent is ignored for container stencils: containers never nest.
    """
    node_type = stencil.node_type
    spec = shape_for(node_type)
    properties = copy.deepcopy(stencil.properties)
    properties["name"] = stencil.name

    return GraphNode(
        id=f"{stencil.id}-{uuid.uuid4().hex[:9]}",
        type=node_type,
        position=position,
        width=spec.default_width,
        height=spec.default_height,
        parent_id=None if spec.is_container else parent_id,
        data=NodeData(
            label=stencil.name,
            properties=properties,
            type=node_type,
            resizable=spec.resizable,
            min_width=spec.min_width,
            min_height=spec.min_height,
            connectable=spec.connectable,
            icon=stencil.icon,
            color=stencil.color,
        ),
    )


DEFAULT_STENCILS = [
    Stencil(id="server-1", name="Server", type_tag="server", icon="HardDrive", color="#3B82F6",
            properties={"OS": "Linux", "Version": "Ubuntu 22.04", "IPAddress": "192.168.1.10"}),
    Stencil(id="database-1", name="Database", type_tag="database", icon="Database", color="#10B981",
            properties={"Type": "PostgreSQL", "Version": "14", "Replication": "Enabled"}),
    Stencil(id="cloud-service-1", name="Cloud Service", type_tag="cloud", icon="Cloud", color="#0EA5E9",
            properties={"Provider": "AWS", "Service": "S3", "Region": "us-east-1"}),
    Stencil(id="router-1", name="Router", type_tag="router", icon="Router", color="#F59E0B",
            properties={"Model": "Cisco ISR 4000", "Firmware": "17.3.4a"}),
    Stencil(id="firewall-1", name="Firewall", type_tag="firewall", icon="ShieldCheck", color="#DC2626",
            properties={"Vendor": "Palo Alto", "Mode": "Stateful"}),
    Stencil(id="user-generic-1", name="User", type_tag="user", icon="User", color="#EF4444",
            properties={"Role": "End User", "Department": "Sales"}),
    Stencil(id="trust-boundary-1", name="Trust Boundary", type_tag="boundary", icon="ShieldCheck",
            color="#4F46E5", is_container=True,
            properties={"Description": "Internal Network", "AccessControl": "Strict"}),
    Stencil(id="process-step-1", name="Process Step", type_tag="Rectangle", icon="Rectangle",
            stencil_type=StencilKind.PROCESS, properties={"Owner": ""}),
    Stencil(id="decision-1", name="Decision", type_tag="Diamond", icon="Diamond",
            stencil_type=StencilKind.PROCESS, properties={"Condition": ""}),
    Stencil(id="start-end-1", name="Start / End", type_tag="Circle", icon="Circle",
            stencil_type=StencilKind.PROCESS),
    Stencil(id="data-store-1", name="Data Store", type_tag="ArchiveBox", icon="ArchiveBox",
            stencil_type=StencilKind.PROCESS, properties={"Retention": ""}),
]


class StencilCatalog:
    """Read-only lookup of stencil records by id."""

    def __init__(self, stencils: Optional[list[Stencil]] = None):
        self._stencils: dict[str, Stencil] = {}
        for stencil in stencils if stencils is not None else DEFAULT_STENCILS:
            self._stencils[stencil.id] = stencil

    def get(self, stencil_id: str) -> Optional[Stencil]:
        return self._stencils.get(stencil_id)

    def list(self, kind: Optional[StencilKind] = None) -> list[Stencil]:
        stencils = list(self._stencils.values())
        if kind is not None:
            stencils = [s for s in stencils if s.stencil_type == kind]
        return stencils

    def add(self, stencil: Stencil) -> None:
        self._stencils[stencil.id] = stencil

    @classmethod
    def from_json_file(cls, path: Path) -> "StencilCatalog":
        """Load a catalog from a JSON list of stencil records."""
        with open(path, "r") as f:
            data = json.load(f)
        stencils = [Stencil.model_validate(item) for item in data]
        logger.info(f"Loaded {len(stencils)} stencils from {path}")
        return cls(stencils)
