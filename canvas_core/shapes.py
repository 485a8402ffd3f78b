"""
Shape table - maps a component's free-form type tag to its shape category.

Type tags come from the stencil catalog and persisted documents ("server",
"database", "boundary", "Circle", ...). They are resolved through a closed
lookup table; anything unknown falls back to the generic shape so an
unfamiliar tag still renders and behaves as a regular, connectable node.
"""

from dataclasses import dataclass
from enum import Enum


class ShapeCategory(str, Enum):
    """Closed set of shape families the engine knows how to size and hit-test."""
    GENERIC = "generic"
    INFRASTRUCTURE = "infrastructure"
    PROCESS_ROUND = "process_round"      # circle, diamond
    PROCESS_BLOCK = "process_block"      # rectangle, parallelogram
    PROCESS_ARROW = "process_arrow"
    PROCESS_NOTE = "process_note"
    CONTAINER = "container"              # trust boundary / grouping zone


@dataclass(frozen=True)
class ShapeSpec:
    """Sizing and interaction rules for one shape category."""
    category: ShapeCategory
    default_width: float
    default_height: float
    min_width: float
    min_height: float
    connectable: bool = True
    resizable: bool = True

    @property
    def is_container(self) -> bool:
        return self.category == ShapeCategory.CONTAINER


CONTAINER_TYPE = "boundary"

SHAPE_SPECS: dict[ShapeCategory, ShapeSpec] = {
    ShapeCategory.GENERIC: ShapeSpec(ShapeCategory.GENERIC, 150, 80, 100, 50),
    ShapeCategory.INFRASTRUCTURE: ShapeSpec(ShapeCategory.INFRASTRUCTURE, 150, 80, 100, 50),
    ShapeCategory.PROCESS_ROUND: ShapeSpec(ShapeCategory.PROCESS_ROUND, 100, 100, 60, 60),
    ShapeCategory.PROCESS_BLOCK: ShapeSpec(ShapeCategory.PROCESS_BLOCK, 160, 70, 100, 50),
    ShapeCategory.PROCESS_ARROW: ShapeSpec(ShapeCategory.PROCESS_ARROW, 120, 50, 80, 30),
    ShapeCategory.PROCESS_NOTE: ShapeSpec(ShapeCategory.PROCESS_NOTE, 80, 80, 40, 40),
    # Containers must stay large enough to hold nested nodes
    ShapeCategory.CONTAINER: ShapeSpec(
        ShapeCategory.CONTAINER, 300, 350, 200, 150, connectable=False
    ),
}

# Keys are lower-cased type tags
TYPE_TAGS: dict[str, ShapeCategory] = {
    # Infrastructure
    "server": ShapeCategory.INFRASTRUCTURE,
    "harddrive": ShapeCategory.INFRASTRUCTURE,
    "harddrives": ShapeCategory.INFRASTRUCTURE,
    "database": ShapeCategory.INFRASTRUCTURE,
    "db": ShapeCategory.INFRASTRUCTURE,
    "cloud": ShapeCategory.INFRASTRUCTURE,
    "service": ShapeCategory.INFRASTRUCTURE,
    "router": ShapeCategory.INFRASTRUCTURE,
    "firewall": ShapeCategory.INFRASTRUCTURE,
    "shieldcheck": ShapeCategory.INFRASTRUCTURE,
    "user": ShapeCategory.INFRASTRUCTURE,
    # Process shapes
    "circle": ShapeCategory.PROCESS_ROUND,
    "diamond": ShapeCategory.PROCESS_ROUND,
    "rectangle": ShapeCategory.PROCESS_BLOCK,
    "parallelogram": ShapeCategory.PROCESS_BLOCK,
    "arrowright": ShapeCategory.PROCESS_ARROW,
    "archivebox": ShapeCategory.PROCESS_NOTE,
    "filetext": ShapeCategory.PROCESS_NOTE,
    "pencilsimpleline": ShapeCategory.PROCESS_NOTE,
    "stickynote": ShapeCategory.PROCESS_NOTE,
    # Containers
    CONTAINER_TYPE: ShapeCategory.CONTAINER,
}


def shape_for(type_tag: str | None) -> ShapeSpec:
    """Look up the shape rules for a type tag, falling back to GENERIC."""
    if not type_tag:
        return SHAPE_SPECS[ShapeCategory.GENERIC]
    category = TYPE_TAGS.get(type_tag.lower(), ShapeCategory.GENERIC)
    return SHAPE_SPECS[category]


def is_container_type(type_tag: str | None) -> bool:
    """True if the type tag names a non-interactive container (boundary)."""
    return shape_for(type_tag).is_container
