"""
Document validation - Check threat models for structural issues.

Provides validation used by the session (on load, to drop dangling
connections), the HTTP API and the CLI.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .errors import IntegrityError
from .shapes import is_container_type

if TYPE_CHECKING:
    from .models import Connection, Document


PARENT_KEY = "parentNode"


class IssueSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Invalid state, must be fixed
    WARNING = "warning"  # Potential problem, should review
    INFO = "info"        # Informational, may be intentional


@dataclass
class ValidationIssue:
    """A single validation issue found in a document."""
    severity: IssueSeverity
    message: str
    component_id: str | None = None
    connection_id: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.severity.value,
            "message": self.message
        }
        if self.component_id:
            result["component_id"] = self.component_id
        if self.connection_id:
            result["connection_id"] = self.connection_id
        return result


def split_dangling_connections(
    document: "Document",
) -> tuple[list["Connection"], list[IntegrityError]]:
    """
    Separate connections whose endpoints exist from dangling ones.

    Returns:
        (kept connections, one IntegrityError per dropped connection)
    """
    component_ids = document.component_ids()
    kept: list["Connection"] = []
    dropped: list[IntegrityError] = []

    for connection in document.connections:
        missing = next(
            (ref for ref in (connection.source, connection.target) if ref not in component_ids),
            None,
        )
        if missing is None:
            kept.append(connection)
        else:
            dropped.append(IntegrityError(connection.id, missing))

    return kept, dropped


def validate_document(document: "Document") -> list[ValidationIssue]:
    """
    Validate a document and return a list of issues.

    Checks for:
    - Empty document - INFO
    - Duplicate component ids - ERROR
    - Connections referencing missing components - ERROR
    - Connections touching a container - ERROR
    - Containers with a parent reference - ERROR
    - Parent references to missing or non-container components - WARNING
    - Components without a name - WARNING
    - Self-referencing connections - WARNING
    - Orphan components (no connections, containers excluded) - INFO

    Args:
        document: The document to validate

    Returns:
        List of ValidationIssue objects
    """
    issues: list[ValidationIssue] = []

    components = document.components
    connections = document.connections

    if not components:
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message="Model has no components"
        ))
        return issues

    types_by_id: dict[str, str] = {}
    for component in components:
        if component.id in types_by_id:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Duplicate component id: {component.id}",
                component_id=component.id
            ))
        types_by_id[component.id] = component.type

    # Parent linkage
    for component in components:
        parent = component.properties.get(PARENT_KEY)
        if not parent:
            continue
        if is_container_type(component.type):
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message="Container has a parent reference; containers cannot nest",
                component_id=component.id
            ))
        elif parent not in types_by_id:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Parent component not found: {parent}",
                component_id=component.id
            ))
        elif not is_container_type(types_by_id[parent]):
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Parent component {parent} is not a container",
                component_id=component.id
            ))

    # Missing names
    for component in components:
        name = component.properties.get("name")
        if not name or not str(name).strip():
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message="Component has no name",
                component_id=component.id
            ))

    # Connection references
    _, dangling = split_dangling_connections(document)
    for error in dangling:
        issues.append(ValidationIssue(
            severity=IssueSeverity.ERROR,
            message=str(error),
            connection_id=error.connection_id
        ))

    connected: set[str] = set()
    for connection in connections:
        connected.add(connection.source)
        connected.add(connection.target)

        for endpoint in (connection.source, connection.target):
            if endpoint in types_by_id and is_container_type(types_by_id[endpoint]):
                issues.append(ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Connection attached to container {endpoint}",
                    connection_id=connection.id,
                    component_id=endpoint
                ))

        if connection.source == connection.target:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message="Self-referencing connection (component points to itself)",
                connection_id=connection.id,
                component_id=connection.source
            ))

    orphans = [
        c for c in components
        if c.id not in connected and not is_container_type(c.type)
    ]
    if orphans:
        labels = [f"{c.properties.get('name') or c.id} ({c.id})" for c in orphans]
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message=f"Unconnected components: {', '.join(labels)}"
        ))

    return issues


def validation_summary(issues: list[ValidationIssue]) -> dict:
    """
    Create a summary of validation issues.

    Args:
        issues: List of validation issues

    Returns:
        Dictionary with counts by severity
    """
    errors = len([i for i in issues if i.severity == IssueSeverity.ERROR])
    return {
        "total": len(issues),
        "errors": errors,
        "warnings": len([i for i in issues if i.severity == IssueSeverity.WARNING]),
        "info": len([i for i in issues if i.severity == IssueSeverity.INFO]),
        "valid": errors == 0
    }
