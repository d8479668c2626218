"""
Engine package - Workflow data model, graph and decision components.

The engine, action executor and folder watcher depend on the
integrations package and are imported from their own modules:

    from visaflow.engine.engine import WorkflowEngine
    from visaflow.engine.watcher import FolderWatcher
"""

from visaflow.engine.errors import (
    ActionFailed,
    CollaboratorUnavailable,
    DefinitionInvalid,
    DefinitionNotFound,
    InstanceNotFound,
    WorkflowError,
)
from visaflow.engine.models import (
    ActionType,
    NodeType,
    ReviewDecision,
    ReviewSubmission,
    ValidationDocument,
    WorkflowDefinition,
    WorkflowInstance,
)
from visaflow.engine.graph import WorkflowGraph
from visaflow.engine.decision import DecisionResult, evaluate_condition, evaluate_decision
from visaflow.engine.events import Event, EventBus

__all__ = [
    "ActionFailed",
    "CollaboratorUnavailable",
    "DefinitionInvalid",
    "DefinitionNotFound",
    "InstanceNotFound",
    "WorkflowError",
    "ActionType",
    "NodeType",
    "ReviewDecision",
    "ReviewSubmission",
    "ValidationDocument",
    "WorkflowDefinition",
    "WorkflowInstance",
    "WorkflowGraph",
    "DecisionResult",
    "evaluate_condition",
    "evaluate_decision",
    "Event",
    "EventBus",
]
