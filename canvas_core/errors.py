"""
Error taxonomy for the diagram session engine.

Every failure raised by the engine derives from CanvasError so callers
(HTTP layer, CLI) can map the whole family in one place:

- DiagramValidationError: rejected input, raised before any I/O
- DocumentNotFoundError / MalformedDocumentError: a load could not be applied
- CollaboratorError (PersistenceError, AssistantError): an external call failed
- IntegrityError: a persisted document references something that is not there
- OperationInProgressError: a conflicting async operation is pending
- ElementNotFoundError: an element id is not on the canvas
"""


class CanvasError(Exception):
    """Base class for all engine errors."""


class DiagramValidationError(CanvasError):
    """Input rejected before touching state or I/O (empty name, bad edit)."""


class ElementNotFoundError(CanvasError):
    """The requested node or edge is not part of the current graph."""

    def __init__(self, element_id: str):
        super().__init__(f"Element not found: {element_id}")
        self.element_id = element_id


class DocumentNotFoundError(CanvasError):
    """The persistence collaborator has no document with this id."""

    def __init__(self, document_id: str):
        super().__init__(f"Model with ID {document_id} not found or couldn't be loaded.")
        self.document_id = document_id


class MalformedDocumentError(CanvasError):
    """A stored document is missing required fields that cannot be defaulted."""


class IntegrityError(CanvasError):
    """A connection references a component that is not in the document."""

    def __init__(self, connection_id: str, missing_component_id: str):
        super().__init__(
            f"Connection {connection_id} references missing component {missing_component_id}"
        )
        self.connection_id = connection_id
        self.missing_component_id = missing_component_id


class OperationInProgressError(CanvasError):
    """A save or load is pending and the new request would interleave with it."""


class CollaboratorError(CanvasError):
    """An external collaborator (document store, AI assistant) failed."""


class PersistenceError(CollaboratorError):
    """The document store failed to read or write."""


class AssistantError(CollaboratorError):
    """The AI assistant failed or returned something unusable."""
