"""
Workflow Engine.

Interprets a workflow definition against a running instance. Each
external trigger (start_workflow, submit_review) places the instance on
a node and auto-advances through non-blocking nodes until it reaches a
review node (which waits for visas) or an end node (which terminates).

Per node type, on entry:
- start:     follow the single outgoing edge
- status:    update the document status, notify, follow the edge
- review:    block until enough completed reviews, then follow the edge
- decision:  ask the decision evaluator which edge to follow
- action:    run every auto-action (failures do not halt), follow the edge
- end:       set completed_at, notify, stop
- timer, parallel: not implemented, pass through with a warning

A trigger is one transaction: history, instance fields, document status,
events and notifications are committed together, or the instance and
document are restored and the error is raised to the caller.
"""

from typing import Any, Callable, Dict, List, Optional, Set
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
import asyncio
import logging

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from visaflow.config import settings
from visaflow.engine.actions import ActionContext, ActionExecutor, ActionResult
from visaflow.engine.decision import DecisionResult, evaluate_decision
from visaflow.engine.errors import (
    CollaboratorUnavailable,
    DefinitionInvalid,
    DefinitionNotFound,
    InstanceNotFound,
    WorkflowError,
)
from visaflow.engine.events import Event, EventBus
from visaflow.engine.graph import WorkflowGraph
from visaflow.engine.models import (
    DocumentStatus,
    NodeType,
    ReviewDecision,
    ReviewSubmission,
    ValidationDocument,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowHistoryEntry,
    WorkflowInstance,
    WorkflowNode,
    WorkflowReview,
    WorkflowStatus,
    utc_now,
)
from visaflow.integrations.files import FileService
from visaflow.integrations.notifications import Notification, Notifier, notify_safely
from visaflow.storage.base import DocumentStore, WorkflowStore


logger = logging.getLogger(__name__)


STARTED_ACTION = "Workflow démarré"

# Fixed review decision -> status id mapping for the document display
DECISION_STATUS_MAP: Dict[ReviewDecision, str] = {
    ReviewDecision.APPROVED: "approved",
    ReviewDecision.VSO: "vso",
    ReviewDecision.VAO: "vao",
    ReviewDecision.APPROVED_WITH_COMMENTS: "commented",
    ReviewDecision.VAO_BLOCKING: "vao_blocking",
    ReviewDecision.REJECTED: "rejected",
    ReviewDecision.REFUSED: "refused",
    ReviewDecision.PENDING: "pending",
}

# Node types where traversal stops and may legitimately be re-entered
BLOCKING_NODE_TYPES = frozenset({NodeType.REVIEW, NodeType.END})

# Errors worth retrying on a collaborator call
TRANSIENT_ERRORS = (CollaboratorUnavailable, OSError, asyncio.TimeoutError)


@dataclass
class _InstanceLock:
    """A per-instance lock and the number of triggers holding or awaiting it."""
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass
class _Run:
    """Working state of one external trigger."""
    graph: WorkflowGraph
    instance: WorkflowInstance
    visited: Set[str] = field(default_factory=set)
    depth: int = 0
    events: List[Event] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)
    action_results: List[ActionResult] = field(default_factory=list)

    @property
    def definition(self) -> WorkflowDefinition:
        return self.graph.definition

    def emit(self, event_type: str, data: Dict[str, Any]) -> None:
        self.events.append(Event(
            type=event_type,
            source="engine",
            instance_id=self.instance.id,
            data=data,
        ))


class WorkflowEngine:
    """
    Workflow execution engine.

    Constructed with its collaborators; holds no global state.

    Usage:
        engine = WorkflowEngine(store, documents, files=file_service)
        instance = await engine.start_workflow(definition, document)
        instance = await engine.submit_review(instance.id, ReviewSubmission(
            reviewer_id="u1", decision=ReviewDecision.APPROVED,
        ))
    """

    def __init__(
        self,
        store: WorkflowStore,
        documents: DocumentStore,
        files: Optional[FileService] = None,
        notifier: Optional[Notifier] = None,
        executor: Optional[ActionExecutor] = None,
        events: Optional[EventBus] = None,
        evaluator: Callable[..., Optional[DecisionResult]] = evaluate_decision,
        max_traversal_depth: Optional[int] = None,
        collaborator_timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_wait: Optional[float] = None,
    ):
        if executor is None:
            if files is None:
                raise ValueError("WorkflowEngine needs either an executor or a file service")
            executor = ActionExecutor(files=files, notifier=notifier)

        self.store = store
        self.documents = documents
        self.notifier = notifier
        self.executor = executor
        self.events = events if events is not None else EventBus()
        self.evaluator = evaluator
        self.max_traversal_depth = max_traversal_depth or settings.MAX_TRAVERSAL_DEPTH
        self.collaborator_timeout = collaborator_timeout or settings.COLLABORATOR_TIMEOUT
        self.retry_attempts = retry_attempts or settings.COLLABORATOR_RETRY_ATTEMPTS
        self.retry_wait = settings.COLLABORATOR_RETRY_WAIT if retry_wait is None else retry_wait

        self._locks: Dict[str, _InstanceLock] = {}
        self._advancing: Set[str] = set()

    # ============================================================
    # Public operations
    # ============================================================

    async def start_workflow(
        self,
        definition: WorkflowDefinition,
        document: ValidationDocument,
    ) -> WorkflowInstance:
        """
        Start a new workflow instance for a document.

        Places the instance on the start node, records the first history
        entry and auto-advances until a review or end node.

        Raises:
            DefinitionInvalid: No start node, no status, or a cyclic
                non-blocking path
            CollaboratorUnavailable: A store call failed; nothing is kept
        """
        graph = WorkflowGraph(definition)
        start_node = graph.start_node
        if start_node is None:
            raise DefinitionInvalid(f'No start node in workflow "{definition.name}"')

        default_status = graph.default_status
        if default_status is None:
            raise DefinitionInvalid(f'No status defined in workflow "{definition.name}"')

        now = utc_now()
        instance = WorkflowInstance(
            workflow_definition_id=definition.id,
            project_id=document.project_id or definition.project_id,
            document_id=document.id,
            document_name=document.file_name,
            current_node_id=start_node.id,
            current_status_id=default_status.id,
            started_by=document.uploaded_by,
            started_at=now,
            updated_at=now,
            history=[
                WorkflowHistoryEntry(
                    timestamp=now,
                    from_node_id="",
                    to_node_id=start_node.id,
                    from_status_id="",
                    to_status_id=default_status.id,
                    user_id=document.uploaded_by or settings.SYSTEM_USER_ID,
                    user_name=document.uploaded_by_name or settings.SYSTEM_USER_NAME,
                    action=STARTED_ACTION,
                )
            ],
        )

        run = _Run(graph=graph, instance=instance, visited={start_node.id})

        async with self._transaction(run, created=True):
            run.instance = await self._call(self.store.create_instance, instance)
            await self._set_document_status(
                run, default_status, settings.SYSTEM_USER_NAME, link_instance=True
            )
            run.emit("started", {
                "document_name": document.file_name,
                "workflow_name": definition.name,
            })
            logger.info(
                f"Started workflow '{definition.name}' for '{document.file_name}' "
                f"(instance {instance.id})"
            )

            await self._process_node(run, start_node)

        return run.instance

    async def submit_review(
        self,
        instance_id: str,
        submission: ReviewSubmission,
    ) -> WorkflowInstance:
        """
        Record a review (visa) and resume the workflow if its quota is met.

        Raises:
            InstanceNotFound: Unknown instance id
            DefinitionNotFound: The instance's definition is gone
            CollaboratorUnavailable: A store call failed; the review is
                not kept
        """
        if await self._call(self.store.get_instance, instance_id) is None:
            raise InstanceNotFound(f'Workflow instance "{instance_id}" not found')

        async with self._instance_lock(instance_id):
            instance = await self._call(self.store.get_instance, instance_id)
            if instance is None:
                raise InstanceNotFound(f'Workflow instance "{instance_id}" not found')

            definition = await self._call(
                self.store.get_definition, instance.workflow_definition_id
            )
            if definition is None:
                raise DefinitionNotFound(
                    f'Workflow definition "{instance.workflow_definition_id}" not found'
                )

            graph = WorkflowGraph(definition)
            now = utc_now()
            review = WorkflowReview(
                instance_id=instance_id,
                reviewer_id=submission.reviewer_id,
                reviewer_name=submission.reviewer_name,
                reviewer_email=submission.reviewer_email,
                status_id=submission.decision.value,
                decision=submission.decision,
                comment=submission.comment,
                observations=list(submission.observations),
                requested_at=instance.started_at,
                reviewed_at=now,
                is_completed=True,
            )

            current_node = graph.get_node(instance.current_node_id)
            run = _Run(graph=graph, instance=instance)

            async with self._transaction(run):
                saved = await self._call(self.store.submit_review_record, instance_id, review)
                if saved is None:
                    raise InstanceNotFound(f'Workflow instance "{instance_id}" not found')
                run.instance = saved

                status = self.map_decision_to_status(submission.decision, definition)
                if status is not None:
                    await self._set_document_status(
                        run, status, submission.reviewer_name or submission.reviewer_id
                    )

                run.emit("review_submitted", {
                    "reviewer": submission.reviewer_name or submission.reviewer_id,
                    "decision": submission.decision.value,
                    "document_name": instance.document_name,
                })
                logger.info(
                    f"Review '{submission.decision.value}' by {submission.reviewer_id} "
                    f"on instance {instance_id}"
                )

                if current_node is not None and current_node.type == NodeType.REVIEW:
                    await self._try_advance_after_review(run, current_node)

            return run.instance

    def is_advancing(self, instance_id: str) -> bool:
        """True while a trigger is processing this instance."""
        return instance_id in self._advancing

    def get_phase(self, instance: WorkflowInstance, definition: WorkflowDefinition) -> str:
        """
        Describe where an instance stands: advancing, blocked (waiting for
        reviews), completed, or stalled (stopped on a non-blocking node).
        """
        if self.is_advancing(instance.id):
            return "advancing"
        if instance.is_completed:
            return "completed"
        node = WorkflowGraph(definition).get_node(instance.current_node_id)
        if node is not None and node.type == NodeType.REVIEW:
            return "blocked"
        return "stalled"

    @staticmethod
    def map_decision_to_status(
        decision: ReviewDecision,
        definition: WorkflowDefinition,
    ) -> Optional[WorkflowStatus]:
        """Status of the definition matching a review decision, if declared."""
        status_id = DECISION_STATUS_MAP.get(decision)
        return WorkflowGraph(definition).get_status(status_id)

    # ============================================================
    # Transaction
    # ============================================================

    @asynccontextmanager
    async def _instance_lock(self, instance_id: str):
        """Serialize triggers on one instance; the entry goes with its last user."""
        entry = self._locks.get(instance_id)
        if entry is None:
            entry = self._locks[instance_id] = _InstanceLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[instance_id]

    @asynccontextmanager
    async def _transaction(self, run: _Run, created: bool = False):
        """
        Commit or roll back everything one trigger does.

        On failure the instance is restored to its snapshot (or discarded
        if this trigger created it), the document status is restored, and
        buffered events/notifications are dropped. Side effects of actions
        already executed are not undone.
        """
        snapshot = run.instance.model_copy(deep=True)
        document = await self._call(self.documents.get_document, snapshot.document_id)
        previous_status = document.current_status if document else None
        previous_link = document.workflow_instance_id if document else None

        self._advancing.add(snapshot.id)
        try:
            yield run
        except Exception as e:
            await self._rollback(snapshot, previous_status, previous_link, created)
            self.events.publish(Event(
                type="error",
                source="engine",
                instance_id=snapshot.id,
                data={"error": str(e), "node_id": run.instance.current_node_id},
            ))
            if isinstance(e, WorkflowError):
                raise
            raise CollaboratorUnavailable(f"Transition aborted: {e}") from e
        else:
            for notification in run.notifications:
                await notify_safely(self.notifier, notification)
            for event in run.events:
                self.events.publish(event)
        finally:
            self._advancing.discard(snapshot.id)

    async def _rollback(
        self,
        snapshot: WorkflowInstance,
        previous_status: Optional[DocumentStatus],
        previous_link: Optional[str],
        created: bool,
    ) -> None:
        try:
            if created:
                await self._call(self.store.discard_instance, snapshot.id)
            else:
                await self._call(self.store.update_instance, snapshot.id, {
                    "current_node_id": snapshot.current_node_id,
                    "current_status_id": snapshot.current_status_id,
                    "updated_at": snapshot.updated_at,
                    "completed_at": snapshot.completed_at,
                    "history": snapshot.history,
                    "reviews": snapshot.reviews,
                })
            if previous_status is not None:
                await self._call(
                    self.documents.update_document_status,
                    snapshot.document_id,
                    previous_status,
                    previous_link,
                )
                if created and previous_link is None:
                    await self._call(self.documents.unlink_instance, snapshot.document_id)
            logger.warning(f"Rolled back transition on instance {snapshot.id}")
        except Exception as e:
            logger.error(f"Rollback of instance {snapshot.id} failed: {e}")

    async def _call(self, func: Callable, *args, **kwargs) -> Any:
        """Call a collaborator with a deadline, retrying transient failures."""
        name = getattr(func, "__name__", repr(func))
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential_jitter(
                    multiplier=self.retry_wait, max=10.0, jitter=self.retry_wait
                ),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    result = await asyncio.wait_for(
                        func(*args, **kwargs), timeout=self.collaborator_timeout
                    )
        except WorkflowError:
            raise
        except asyncio.TimeoutError as e:
            raise CollaboratorUnavailable(
                f"{name} timed out after {self.collaborator_timeout}s"
            ) from e
        except Exception as e:
            raise CollaboratorUnavailable(f"{name} failed: {e}") from e
        return result

    # ============================================================
    # Traversal
    # ============================================================

    async def _advance_from_node(self, run: _Run, node: WorkflowNode) -> None:
        """Follow the first outgoing edge. No edge on a non-end node: stop."""
        edges = run.graph.outgoing(node.id)
        if not edges:
            logger.debug(f"Node '{node.id}' ({node.type.value}) is a dead end, stopping")
            return

        edge = edges[0]
        target = run.graph.get_node(edge.target)
        if target is None:
            logger.warning(f"Edge '{edge.id}' points to unknown node '{edge.target}'")
            return

        await self._move_to_node(run, node, target, edge)

    async def _try_advance_after_review(self, run: _Run, node: WorkflowNode) -> None:
        completed = len(run.instance.completed_reviews)
        required = node.data.required_approvals or 1

        if completed < required:
            logger.info(
                f"Instance {run.instance.id} waiting at '{node.id}': "
                f"{completed}/{required} reviews"
            )
            return

        await self._advance_from_node(run, node)

    def _enter(self, run: _Run, node: WorkflowNode) -> None:
        """Bound traversal: no non-blocking node twice, no unbounded depth."""
        run.depth += 1
        if run.depth > self.max_traversal_depth:
            raise DefinitionInvalid(
                f"Traversal exceeded {self.max_traversal_depth} nodes in one step "
                f"(cyclic non-blocking path?)"
            )
        if node.type not in BLOCKING_NODE_TYPES:
            if node.id in run.visited:
                raise DefinitionInvalid(
                    f"Cyclic non-blocking path through node '{node.id}'"
                )
            run.visited.add(node.id)

    async def _move_to_node(
        self,
        run: _Run,
        from_node: WorkflowNode,
        to_node: WorkflowNode,
        edge: WorkflowEdge,
        action: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> None:
        self._enter(run, to_node)
        instance = run.instance

        new_status_id = instance.current_status_id
        status = None
        if to_node.type == NodeType.STATUS and to_node.data.status_id:
            new_status_id = to_node.data.status_id
            status = run.graph.get_status(new_status_id)

        entry = WorkflowHistoryEntry(
            timestamp=self._next_timestamp(instance),
            from_node_id=from_node.id,
            to_node_id=to_node.id,
            from_status_id=instance.current_status_id,
            to_status_id=new_status_id,
            user_id=settings.SYSTEM_USER_ID,
            user_name=settings.SYSTEM_USER_NAME,
            action=action or f"Transition: {from_node.label} → {to_node.label}",
            comment=comment,
        )
        updates = {
            "current_node_id": to_node.id,
            "current_status_id": new_status_id,
            "updated_at": entry.timestamp,
            "history": instance.history + [entry],
        }

        saved = await self._call(self.store.update_instance, instance.id, updates)
        if saved is None:
            raise InstanceNotFound(f'Workflow instance "{instance.id}" not found')
        run.instance = saved

        if status is not None:
            await self._set_document_status(run, status, settings.SYSTEM_USER_NAME)

        run.emit("advanced", {
            "from_node": from_node.label,
            "to_node": to_node.label,
            "edge_id": edge.id,
            "new_status": new_status_id,
        })
        logger.info(
            f"Instance {instance.id}: {from_node.id} -> {to_node.id} "
            f"(status {new_status_id})"
        )

        await self._process_node(run, to_node)

    async def _process_node(self, run: _Run, node: WorkflowNode) -> None:
        if node.type == NodeType.START:
            await self._advance_from_node(run, node)

        elif node.type == NodeType.STATUS:
            if run.definition.settings.notify_on_status_change:
                run.notifications.append(Notification(
                    title="Status changed",
                    message=f'"{run.instance.document_name}" is now "{node.label}"',
                    document_id=run.instance.document_id,
                    workflow_instance_id=run.instance.id,
                ))
            await self._advance_from_node(run, node)

        elif node.type == NodeType.REVIEW:
            # Waits here; reviews arrive through submit_review()
            logger.info(f"Instance {run.instance.id} waiting for reviews at '{node.id}'")

        elif node.type == NodeType.DECISION:
            await self._process_decision_node(run, node)

        elif node.type == NodeType.ACTION:
            await self._process_action_node(run, node)

        elif node.type == NodeType.END:
            await self._complete_workflow(run, node)

        else:
            logger.warning(
                f"Node type '{node.type.value}' is not implemented, passing through "
                f"'{node.id}'"
            )
            await self._advance_from_node(run, node)

    async def _process_decision_node(self, run: _Run, node: WorkflowNode) -> None:
        edges = run.graph.outgoing(node.id)
        result = self.evaluator(node, edges, run.instance, run.graph.nodes)

        if result is None:
            logger.warning(f"No transition found for decision node '{node.id}'")
            return

        target = run.graph.get_node(result.target_node_id)
        edge = run.graph.get_edge(result.edge_id)
        if target is None or edge is None:
            logger.warning(
                f"Decision node '{node.id}' chose an unknown edge '{result.edge_id}'"
            )
            return

        await self._move_to_node(
            run, node, target, edge,
            action=f"Decision: {result.label or 'auto'}",
            comment=result.reason,
        )

    async def _process_action_node(self, run: _Run, node: WorkflowNode) -> None:
        document = await self._call(self.documents.get_document, run.instance.document_id)
        if document is None:
            logger.error(f"Document '{run.instance.document_id}' not found, stopping")
            return

        context = ActionContext.from_settings(
            run.definition.settings,
            project_id=run.instance.project_id or document.project_id,
        )

        for action in node.data.auto_actions:
            result = await self.executor.execute(action, run.instance, document, context)
            run.action_results.append(result)
            # Actions already happened; publish now rather than on commit
            self.events.publish(Event(
                type="action_executed",
                source="engine",
                instance_id=run.instance.id,
                data={
                    "action_type": action.type,
                    "success": result.success,
                    "message": result.message,
                },
            ))

        await self._advance_from_node(run, node)

    async def _complete_workflow(self, run: _Run, end_node: WorkflowNode) -> None:
        if run.instance.completed_at is not None:
            return

        now = utc_now()
        updates = {
            "current_node_id": end_node.id,
            "completed_at": now,
            "updated_at": now,
        }
        saved = await self._call(self.store.update_instance, run.instance.id, updates)
        if saved is None:
            raise InstanceNotFound(f'Workflow instance "{run.instance.id}" not found')
        run.instance = saved

        run.notifications.append(Notification(
            type="success",
            title="Workflow completed",
            message=(
                f'The workflow for "{run.instance.document_name}" is complete '
                f'({end_node.data.label or "End"}).'
            ),
            document_id=run.instance.document_id,
            workflow_instance_id=run.instance.id,
        ))
        run.emit("completed", {
            "document_name": run.instance.document_name,
            "final_status": run.instance.current_status_id,
            "end_node": end_node.data.label,
        })
        logger.info(f"Instance {run.instance.id} completed at '{end_node.id}'")

    # ============================================================
    # Helpers
    # ============================================================

    async def _set_document_status(
        self,
        run: _Run,
        status: WorkflowStatus,
        changed_by: str,
        link_instance: bool = False,
    ) -> None:
        document_status = DocumentStatus(
            id=status.id,
            name=status.name,
            color=status.color,
            changed_at=utc_now(),
            changed_by=changed_by,
        )
        await self._call(
            self.documents.update_document_status,
            run.instance.document_id,
            document_status,
            run.instance.id if link_instance else None,
        )

    @staticmethod
    def _next_timestamp(instance: WorkflowInstance):
        """Now, nudged forward if needed so history stays strictly increasing."""
        now = utc_now()
        if instance.history and now <= instance.history[-1].timestamp:
            now = instance.history[-1].timestamp + timedelta(microseconds=1)
        return now
