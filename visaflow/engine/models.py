"""
Data Model for the Workflow Engine.

Definitions are the reusable templates (graph of nodes, edges, statuses and
settings); instances track one document's progress through a definition.
Field names are snake_case in Python and camelCase on the wire, so a
definition saved by the graph editor loads unchanged.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from enum import Enum
import uuid


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================
# Enums
# ============================================================

class NodeType(str, Enum):
    """Types of nodes in a workflow graph."""
    START = "start"
    STATUS = "status"
    REVIEW = "review"
    DECISION = "decision"
    ACTION = "action"
    END = "end"
    TIMER = "timer"        # Reserved, pass-through
    PARALLEL = "parallel"  # Reserved, pass-through


class ReviewDecision(str, Enum):
    """A reviewer's decision (visa)."""
    PENDING = "pending"
    APPROVED = "approved"
    APPROVED_WITH_COMMENTS = "approved_with_comments"
    REJECTED = "rejected"
    VAO = "vao"                    # Visa avec observations
    VAO_BLOCKING = "vao_blocking"  # Visa avec observations bloquantes
    VSO = "vso"                    # Visa sans observation
    REFUSED = "refused"


class ActionType(str, Enum):
    """Automated actions an action node can run."""
    MOVE_FILE = "move_file"
    COPY_FILE = "copy_file"
    NOTIFY_USER = "notify_user"
    SEND_COMMENT = "send_comment"
    UPDATE_METADATA = "update_metadata"
    WEBHOOK = "webhook"


# Decision groups used for routing and counting
APPROVAL_DECISIONS = frozenset({ReviewDecision.APPROVED, ReviewDecision.VSO})
COMMENT_DECISIONS = frozenset({ReviewDecision.APPROVED_WITH_COMMENTS, ReviewDecision.VAO})
REJECTION_DECISIONS = frozenset({
    ReviewDecision.REJECTED,
    ReviewDecision.REFUSED,
    ReviewDecision.VAO_BLOCKING,
})


# ============================================================
# Definition
# ============================================================

class WorkflowStatus(CamelModel):
    """A status a document can display while in the workflow."""
    id: str
    name: str
    description: str = ""
    color: str = "#6a6e79"
    icon: Optional[str] = None
    is_final: bool = False
    is_default: bool = False
    visible_in_resolution: bool = True
    order: int = 0


class NodePosition(BaseModel):
    x: float = 0
    y: float = 0


class WorkflowCondition(CamelModel):
    """Explicit rule on an edge, evaluated against completed reviews."""
    id: str = Field(default_factory=new_id)
    field: str
    operator: str
    value: Any = None
    label: Optional[str] = None


class WorkflowAutoAction(CamelModel):
    """A side-effecting action attached to an action node."""
    id: str = Field(default_factory=new_id)
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    label: Optional[str] = None


class WorkflowNodeData(CamelModel):
    """Type-specific payload of a node. Unknown editor keys are kept."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    label: str = ""
    description: Optional[str] = None
    status_id: Optional[str] = None
    color: Optional[str] = None
    assignees: List[str] = Field(default_factory=list)
    required_approvals: Optional[int] = None
    auto_actions: List[WorkflowAutoAction] = Field(default_factory=list)
    conditions: List[WorkflowCondition] = Field(default_factory=list)
    timer_duration: Optional[float] = None
    timer_unit: Optional[str] = None


class WorkflowNode(CamelModel):
    id: str
    type: NodeType
    position: NodePosition = Field(default_factory=NodePosition)
    data: WorkflowNodeData = Field(default_factory=WorkflowNodeData)

    @property
    def label(self) -> str:
        """Display label, falling back to the node type."""
        return self.data.label or self.type.value


class WorkflowEdge(CamelModel):
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    label: Optional[str] = None
    condition: Optional[WorkflowCondition] = None
    animated: bool = False


class WorkflowSettings(CamelModel):
    source_folder_id: Optional[str] = None
    target_folder_id: Optional[str] = None
    rejected_folder_id: Optional[str] = None
    auto_start_on_upload: bool = False
    notify_on_status_change: bool = True
    allow_resubmission: bool = True
    max_review_days: Optional[int] = None
    parallel_review: bool = False


class WorkflowDefinition(CamelModel):
    """
    Reusable workflow template.

    Versioned by replacement: running instances keep pointing at the
    definition id they were started with.
    """
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    version: int = 1
    type: str = "document_validation"
    project_id: str = ""
    created_by: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    is_active: bool = True
    statuses: List[WorkflowStatus] = Field(default_factory=list)
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)


# ============================================================
# Instance
# ============================================================

class WorkflowHistoryEntry(CamelModel):
    """Immutable audit record of one transition."""
    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    from_node_id: str = ""
    to_node_id: str
    from_status_id: str = ""
    to_status_id: str
    user_id: str
    user_name: str
    action: str
    comment: Optional[str] = None


class WorkflowReview(CamelModel):
    """One reviewer's recorded decision. Never mutated after creation."""
    id: str = Field(default_factory=new_id)
    instance_id: str
    reviewer_id: str
    reviewer_name: str = ""
    reviewer_email: str = ""
    status_id: str = ""
    decision: ReviewDecision
    comment: Optional[str] = None
    observations: List[str] = Field(default_factory=list)
    attachments: List[str] = Field(default_factory=list)
    requested_at: datetime = Field(default_factory=utc_now)
    reviewed_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    is_completed: bool = False


class ReviewSubmission(CamelModel):
    """A human decision handed to the engine."""
    reviewer_id: str
    reviewer_name: str = ""
    reviewer_email: str = ""
    decision: ReviewDecision
    comment: Optional[str] = None
    observations: List[str] = Field(default_factory=list)


class WorkflowInstance(CamelModel):
    """One document's live progress through a workflow definition."""
    id: str = Field(default_factory=new_id)
    workflow_definition_id: str
    project_id: str = ""
    document_id: str
    document_name: str = ""
    current_node_id: str
    current_status_id: str
    started_by: str = ""
    started_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    history: List[WorkflowHistoryEntry] = Field(default_factory=list)
    reviews: List[WorkflowReview] = Field(default_factory=list)

    @property
    def completed_reviews(self) -> List[WorkflowReview]:
        return [r for r in self.reviews if r.is_completed]

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


# ============================================================
# Documents and files
# ============================================================

class DocumentStatus(CamelModel):
    """Status currently displayed on a document."""
    id: str
    name: str
    color: str = "#6a6e79"
    changed_at: datetime = Field(default_factory=utc_now)
    changed_by: str = ""


class DocumentComment(CamelModel):
    id: str = Field(default_factory=new_id)
    document_id: str = ""
    author_id: str
    author_name: str
    content: str
    created_at: datetime = Field(default_factory=utc_now)
    is_system_message: bool = False


class DocumentVersion(CamelModel):
    version_number: int
    version_id: str
    file_name: str
    file_size: int = 0
    uploaded_by: str = ""
    uploaded_by_name: str = ""
    uploaded_at: datetime = Field(default_factory=utc_now)
    comment: Optional[str] = None


class ValidationDocument(CamelModel):
    """A host file under validation."""
    id: str = Field(default_factory=new_id)
    file_id: str
    file_name: str
    file_extension: str = ""
    file_size: int = 0
    file_path: str = ""
    uploaded_by: str = ""
    uploaded_by_name: str = ""
    uploaded_by_email: str = ""
    uploaded_at: datetime = Field(default_factory=utc_now)
    last_modified: datetime = Field(default_factory=utc_now)
    version_number: int = 1
    project_id: str = ""
    workflow_instance_id: Optional[str] = None
    current_status: DocumentStatus = Field(
        default_factory=lambda: DocumentStatus(id="pending", name="Pending")
    )
    comments: List[DocumentComment] = Field(default_factory=list)
    version_history: List[DocumentVersion] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)


class FolderItem(CamelModel):
    """An entry of a host folder listing."""
    id: str
    name: str
    type: str = "FILE"
    extension: Optional[str] = None
    size: Optional[int] = None
    path: Optional[str] = None
    uploaded_by: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    last_modified: Optional[datetime] = None

    @property
    def is_file(self) -> bool:
        return self.type.upper() == "FILE"
