"""
Document Validation Workflow Template.

The built-in review circuit for documents dropped in a project folder:
1. Document enters as "pending"
2. One reviewer gives a visa
3. The decision node routes on the visa:
   approved -> move to the validated folder, end
   commented -> notify the uploader, end
   rejected -> notify the uploader, end
"""

from typing import List, Optional
import logging

from visaflow.engine.graph import WorkflowGraph
from visaflow.engine.models import (
    ActionType,
    NodePosition,
    NodeType,
    WorkflowAutoAction,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowNodeData,
    WorkflowSettings,
    WorkflowStatus,
)
from visaflow.storage.base import WorkflowStore


logger = logging.getLogger(__name__)


TEMPLATE_ID = "document-validation-default"


# ============================================================
# Statuses
# ============================================================

DOCUMENT_VALIDATION_STATUSES: List[WorkflowStatus] = [
    WorkflowStatus(
        id="pending", name="En attente", color="#6a6e79", icon="clock",
        description="Document uploaded, waiting to be processed",
        is_default=True, order=0,
    ),
    WorkflowStatus(
        id="approved", name="Approuvé", color="#1e8a44", icon="check-circle",
        description="Document validated without reservation",
        is_final=True, order=1,
    ),
    WorkflowStatus(
        id="commented", name="Commenté", color="#e49325", icon="message-circle",
        description="Document commented, changes expected",
        order=2,
    ),
    WorkflowStatus(
        id="rejected", name="Rejeté", color="#da212c", icon="x-circle",
        description="Document rejected",
        is_final=True, order=3,
    ),
    WorkflowStatus(
        id="vao", name="VAO", color="#f0c040", icon="alert-circle",
        description="Validated with observations",
        is_final=True, order=4,
    ),
    WorkflowStatus(
        id="vao_blocking", name="VAO Bloquantes", color="#d4760a", icon="alert-triangle",
        description="Visa with blocking observations",
        order=5,
    ),
    WorkflowStatus(
        id="vso", name="VSO", color="#4caf50", icon="check",
        description="Visa without observation",
        is_final=True, order=6,
    ),
    WorkflowStatus(
        id="refused", name="Refusé", color="#8b0000", icon="ban",
        description="Definitively refused",
        is_final=True, order=7,
    ),
]


def _node(node_id: str, node_type: NodeType, x: float, y: float, **data) -> WorkflowNode:
    return WorkflowNode(
        id=node_id,
        type=node_type,
        position=NodePosition(x=x, y=y),
        data=WorkflowNodeData(**data),
    )


def _edge(source: str, target: str, label: Optional[str] = None) -> WorkflowEdge:
    return WorkflowEdge(id=f"e-{source}-{target}", source=source, target=target, label=label)


# ============================================================
# Workflow Definition
# ============================================================

def create_document_validation_workflow(
    project_id: str = "",
    created_by: str = "",
    source_folder_id: Optional[str] = None,
    target_folder_id: Optional[str] = None,
    rejected_folder_id: Optional[str] = None,
    definition_id: str = TEMPLATE_ID,
) -> WorkflowDefinition:
    """
    Build the standard single-reviewer validation workflow.

    Graph structure:

        start -> pending -> review -> decision
        decision -[Approuvé]-> approved -> move -> end_approved
        decision -[Commenté]-> commented -> notify -> end_commented
        decision -[Rejeté]-> rejected -> notify -> end_rejected

    Returns:
        The workflow definition, active, with auto-start enabled when a
        source folder is given.
    """
    nodes = [
        _node("start", NodeType.START, 0, 200, label="Dépôt"),
        _node("status_pending", NodeType.STATUS, 150, 200, label="En attente", status_id="pending"),
        _node("review", NodeType.REVIEW, 300, 200, label="Visa", required_approvals=1),
        _node("decision", NodeType.DECISION, 450, 200, label="Résultat du visa"),

        _node("status_approved", NodeType.STATUS, 600, 50, label="Approuvé", status_id="approved"),
        _node(
            "action_move", NodeType.ACTION, 750, 50, label="Classement",
            auto_actions=[WorkflowAutoAction(
                id="move-validated", type=ActionType.MOVE_FILE.value,
                label="Move to validated folder",
            )],
        ),
        _node("end_approved", NodeType.END, 900, 50, label="Validé"),

        _node("status_commented", NodeType.STATUS, 600, 200, label="Commenté", status_id="commented"),
        _node(
            "action_notify_commented", NodeType.ACTION, 750, 200, label="Retour au déposant",
            auto_actions=[WorkflowAutoAction(
                id="send-comments", type=ActionType.SEND_COMMENT.value,
                label="Send reviewer comments",
            )],
        ),
        _node("end_commented", NodeType.END, 900, 200, label="À reprendre"),

        _node("status_rejected", NodeType.STATUS, 600, 350, label="Rejeté", status_id="rejected"),
        _node(
            "action_notify_rejected", NodeType.ACTION, 750, 350, label="Notification du rejet",
            auto_actions=[WorkflowAutoAction(
                id="notify-rejected", type=ActionType.NOTIFY_USER.value,
                label="Notify uploader",
                config={"messageTemplate": "{fileName} was rejected"},
            )],
        ),
        _node("end_rejected", NodeType.END, 900, 350, label="Rejeté"),
    ]

    edges = [
        _edge("start", "status_pending"),
        _edge("status_pending", "review"),
        _edge("review", "decision"),
        _edge("decision", "status_approved", "Approuvé"),
        _edge("decision", "status_commented", "Commenté"),
        _edge("decision", "status_rejected", "Rejeté"),
        _edge("status_approved", "action_move"),
        _edge("action_move", "end_approved"),
        _edge("status_commented", "action_notify_commented"),
        _edge("action_notify_commented", "end_commented"),
        _edge("status_rejected", "action_notify_rejected"),
        _edge("action_notify_rejected", "end_rejected"),
    ]

    return WorkflowDefinition(
        id=definition_id,
        name="Validation documentaire",
        description="Single visa review with automatic filing of validated documents",
        project_id=project_id,
        created_by=created_by,
        statuses=[s.model_copy() for s in DOCUMENT_VALIDATION_STATUSES],
        nodes=nodes,
        edges=edges,
        settings=WorkflowSettings(
            source_folder_id=source_folder_id,
            target_folder_id=target_folder_id,
            rejected_folder_id=rejected_folder_id,
            auto_start_on_upload=source_folder_id is not None,
        ),
    )


async def register_document_validation_workflow(
    store: WorkflowStore,
    project_id: str = "",
) -> WorkflowDefinition:
    """
    Register the built-in validation workflow in a store.

    This makes the template available immediately via the API
    without needing to create it first.
    """
    definition = create_document_validation_workflow(project_id=project_id)

    errors = WorkflowGraph(definition).validate()
    if errors:
        logger.warning(f"Built-in workflow has validation errors: {errors}")

    await store.save_definition(definition)

    logger.info(f"Registered document validation workflow with ID: {definition.id}")
    return definition
