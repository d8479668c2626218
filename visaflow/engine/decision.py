"""
Decision Evaluation for Workflow Branch Points.

Chooses which outgoing edge a decision node follows, given the reviews
an instance has accumulated. Pure: no I/O, no mutation.

Two modes, tried in order:
1. Explicit conditions on edges (the recommended mechanism).
2. Label/status matching when no edge carries a condition. This is a
   heuristic over human-readable (French) labels, kept as a fallback.
"""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
import logging
import re

from visaflow.engine.models import (
    APPROVAL_DECISIONS,
    COMMENT_DECISIONS,
    REJECTION_DECISIONS,
    WorkflowCondition,
    WorkflowEdge,
    WorkflowInstance,
    WorkflowNode,
    WorkflowReview,
)


logger = logging.getLogger(__name__)


@dataclass
class DecisionResult:
    """The edge a decision node should follow."""
    edge_id: str
    target_node_id: str
    label: Optional[str] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "edge_id": self.edge_id,
            "target_node_id": self.target_node_id,
            "label": self.label,
            "reason": self.reason,
        }


INTENT_APPROVED = "approved"
INTENT_COMMENTED = "commented"
INTENT_REJECTED = "rejected"

_LABEL_PATTERNS = {
    INTENT_APPROVED: re.compile(r"approu|valid|accept|vso|visa\s*sans", re.IGNORECASE),
    INTENT_COMMENTED: re.compile(r"comment|observ|vao(?!\s*bloq)|revoir", re.IGNORECASE),
    INTENT_REJECTED: re.compile(r"rejet|refus|bloq|denied", re.IGNORECASE),
}

_STATUS_IDS = {
    INTENT_APPROVED: {"approved", "vso"},
    INTENT_COMMENTED: {"commented", "vao"},
    INTENT_REJECTED: {"rejected", "refused", "vao_blocking"},
}


# ============================================================
# Condition fields and operators
# ============================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any) -> Optional[float]:
    if _is_number(value):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _same(field_value: Any, value: Any) -> bool:
    # Booleans only equal booleans, never 0 or 1
    if isinstance(field_value, bool) or isinstance(value, bool):
        return type(field_value) is type(value) and field_value == value
    return field_value == value


_FIELDS: Dict[str, Callable[[List[WorkflowReview]], Any]] = {
    "approvalCount": lambda reviews: sum(
        1 for r in reviews if r.decision in APPROVAL_DECISIONS
    ),
    "rejectionCount": lambda reviews: sum(
        1 for r in reviews if r.decision in REJECTION_DECISIONS
    ),
    "reviewCount": len,
    "lastDecision": lambda reviews: reviews[-1].decision.value if reviews else None,
    "hasObservations": lambda reviews: any(r.observations for r in reviews),
}


def _greater_than(field_value: Any, value: Any) -> bool:
    other = _as_number(value)
    return _is_number(field_value) and other is not None and field_value > other


def _less_than(field_value: Any, value: Any) -> bool:
    other = _as_number(value)
    return _is_number(field_value) and other is not None and field_value < other


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": _same,
    "not_equals": lambda field_value, value: not _same(field_value, value),
    "greater_than": _greater_than,
    "less_than": _less_than,
    "contains": lambda field_value, value: (
        isinstance(field_value, str) and isinstance(value, str) and value in field_value
    ),
    "in": lambda field_value, value: (
        isinstance(value, list) and any(_same(field_value, v) for v in value)
    ),
}


def evaluate_condition(condition: WorkflowCondition, reviews: List[WorkflowReview]) -> bool:
    """
    Evaluate one explicit edge condition.

    Unknown fields read as None; unknown operators never match.
    """
    reader = _FIELDS.get(condition.field)
    field_value = reader(reviews) if reader else None

    operator = _OPERATORS.get(condition.operator)
    if operator is None:
        logger.warning(f"Unknown condition operator '{condition.operator}'")
        return False
    return operator(field_value, condition.value)


# ============================================================
# Evaluation
# ============================================================

def evaluate_decision(
    decision_node: WorkflowNode,
    outgoing_edges: List[WorkflowEdge],
    instance: WorkflowInstance,
    all_nodes: List[WorkflowNode],
) -> Optional[DecisionResult]:
    """
    Choose the outgoing edge for a decision node.

    Args:
        decision_node: The decision node being evaluated
        outgoing_edges: Its outgoing edges, in definition order
        instance: The instance whose completed reviews drive the choice
        all_nodes: Every node of the definition (to inspect edge targets)

    Returns:
        The chosen edge, or None when there is no edge to follow or, in
        label-matching mode, no completed review yet.
    """
    if not outgoing_edges:
        return None

    reviews = instance.completed_reviews

    if any(edge.condition for edge in outgoing_edges):
        return _evaluate_with_conditions(outgoing_edges, reviews)

    return _evaluate_by_labels(outgoing_edges, reviews, all_nodes)


def _evaluate_with_conditions(
    edges: List[WorkflowEdge],
    reviews: List[WorkflowReview],
) -> Optional[DecisionResult]:
    for edge in edges:
        if edge.condition and evaluate_condition(edge.condition, reviews):
            name = edge.condition.label or edge.condition.field
            return DecisionResult(
                edge_id=edge.id,
                target_node_id=edge.target,
                label=edge.label,
                reason=f'Condition "{name}" satisfied',
            )

    fallback = next((e for e in edges if not e.condition), None)
    if fallback:
        return DecisionResult(
            edge_id=fallback.id,
            target_node_id=fallback.target,
            label=fallback.label,
            reason="No condition satisfied, fallback",
        )

    return None


def _evaluate_by_labels(
    edges: List[WorkflowEdge],
    reviews: List[WorkflowReview],
    all_nodes: List[WorkflowNode],
) -> Optional[DecisionResult]:
    if not reviews:
        # No review yet, do not guess
        return None

    decisions = [r.decision for r in reviews]
    has_rejection = any(d in REJECTION_DECISIONS for d in decisions)
    all_approved = all(d in APPROVAL_DECISIONS for d in decisions)
    has_comment = any(d in COMMENT_DECISIONS for d in decisions)

    if has_rejection:
        target = _find_edge_by_intent(edges, all_nodes, INTENT_REJECTED)
        rejected = ", ".join(d.value for d in decisions if d in REJECTION_DECISIONS)
        reason = f"Rejected: {rejected}"
    elif all_approved:
        target = _find_edge_by_intent(edges, all_nodes, INTENT_APPROVED)
        reason = "All reviews approved"
    elif has_comment:
        target = _find_edge_by_intent(edges, all_nodes, INTENT_COMMENTED)
        commented = ", ".join(d.value for d in decisions if d in COMMENT_DECISIONS)
        reason = f"Commented: {commented}"
    else:
        target = edges[0]
        reason = "Default result"

    if target is None:
        target = edges[0]
        reason = "No matching transition found, fallback"

    return DecisionResult(
        edge_id=target.id,
        target_node_id=target.target,
        label=target.label,
        reason=reason,
    )


def _find_edge_by_intent(
    edges: List[WorkflowEdge],
    all_nodes: List[WorkflowNode],
    intent: str,
) -> Optional[WorkflowEdge]:
    """Match by edge label, then target status id, then target node label."""
    pattern = _LABEL_PATTERNS[intent]
    status_ids = _STATUS_IDS[intent]
    nodes = {n.id: n for n in all_nodes}

    for edge in edges:
        if edge.label and pattern.search(edge.label):
            return edge

    for edge in edges:
        target = nodes.get(edge.target)
        if target and target.data.status_id in status_ids:
            return edge

    for edge in edges:
        target = nodes.get(edge.target)
        if target and target.data.label and pattern.search(target.data.label):
            return edge

    return None
