"""
Threat Canvas Backend - the stateful diagram session engine.

The graph view-model, selection coordinator and session controller live
here, together with the document store and AI assistant collaborators
and the FastAPI application that exposes them.
"""

from .graph_model import ChangeKind, GraphViewModel
from .selection import SelectionCoordinator
from .session import SessionController, SessionPhase, SessionState
from .notifications import Notifier

__all__ = [
    "ChangeKind",
    "GraphViewModel",
    "SelectionCoordinator",
    "SessionController",
    "SessionPhase",
    "SessionState",
    "Notifier",
]
