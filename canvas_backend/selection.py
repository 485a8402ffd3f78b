"""
Viewport & Selection Coordinator.

Holds the single globally selected element id and the cached camera.
The graph view-model derives each element's `selected` flag from
`selected_id` by equality; the flags never feed back into the selection.
"""

import logging
from typing import Callable, Optional

from canvas_core.models import ElementRef, GraphEdge, GraphNode, Position, Viewport
from canvas_core.spatial import EDGE_HIT_TOLERANCE, resolve

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = Viewport(x=0, y=0, zoom=1)


class SelectionCoordinator:
    """
    One nullable selected id plus the last known viewport.

    Listeners:
    - on_selection_change(selected_id) after every change of the selected id
    - on_viewport_reset(viewport) when the camera must jump to the canonical
      viewport (new document, or a loaded document without a viewport)
    """

    def __init__(self):
        self._selected_id: Optional[str] = None
        self._viewport: Viewport = DEFAULT_VIEWPORT.model_copy()
        self._selection_callbacks: list[Callable[[Optional[str]], None]] = []
        self._viewport_callbacks: list[Callable[[Viewport], None]] = []

    # --- Properties ---

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def viewport(self) -> Viewport:
        return self._viewport.model_copy()

    # --- Callbacks ---

    def on_selection_change(self, callback: Callable[[Optional[str]], None]):
        """Register a callback for selection changes."""
        self._selection_callbacks.append(callback)

    def on_viewport_reset(self, callback: Callable[[Viewport], None]):
        """Register a callback for viewport resets."""
        self._viewport_callbacks.append(callback)

    # --- Selection ---

    def select(self, element_id: Optional[str]) -> Optional[str]:
        """Select an element by id, or clear with None."""
        if element_id == self._selected_id:
            return self._selected_id

        self._selected_id = element_id
        logger.debug(f"Selection changed to {element_id}")
        for callback in self._selection_callbacks:
            callback(element_id)
        return self._selected_id

    def clear(self) -> None:
        self.select(None)

    def clear_if(self, element_id: str) -> bool:
        """Clear the selection only if it points at element_id."""
        if self._selected_id is not None and self._selected_id == element_id:
            self.select(None)
            return True
        return False

    def select_at(
        self,
        pointer: Position,
        nodes: list[GraphNode],
        edges: list[GraphEdge],
        tolerance: float = EDGE_HIT_TOLERANCE,
    ) -> Optional[ElementRef]:
        """
        Resolve a click and select what it hit; empty canvas clears.

        The pointer must already be in canvas coordinates.
        """
        hit = resolve(pointer, nodes, edges, self._selected_id, tolerance)
        self.select(hit.id if hit else None)
        return hit

    # --- Viewport ---

    def update_viewport(self, viewport: Viewport) -> None:
        """Cache a camera move. Does not emit a reset."""
        self._viewport = viewport.model_copy()

    def reset_viewport(self, viewport: Optional[Viewport] = None) -> Viewport:
        """Jump to the given viewport (default {0, 0, 1}) and emit a reset."""
        self._viewport = (viewport or DEFAULT_VIEWPORT).model_copy()
        for callback in self._viewport_callbacks:
            callback(self._viewport.model_copy())
        return self._viewport.model_copy()
