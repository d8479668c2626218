"""
Action Execution for Workflow Action Nodes.

Each auto-action type has a handler registered in the action registry.
The executor dispatches to it and always returns an ActionResult: a
failing action is reported as data and never raised, so one
mis-configured action cannot block a document's workflow.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional
from dataclasses import dataclass, field
import asyncio
import logging

import httpx

from visaflow.config import settings
from visaflow.engine.errors import ActionFailed
from visaflow.engine.models import (
    ActionType,
    ValidationDocument,
    WorkflowAutoAction,
    WorkflowInstance,
    WorkflowSettings,
    utc_now,
)
from visaflow.integrations.files import FileService
from visaflow.integrations.notifications import Notification, Notifier, notify_safely


logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Outcome of one auto-action."""
    action_id: str
    success: bool
    message: str
    data: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "error": self.error,
        }


@dataclass
class ActionContext:
    """Project and folder context handed to every action."""
    project_id: str = ""
    source_folder_id: Optional[str] = None
    target_folder_id: Optional[str] = None
    rejected_folder_id: Optional[str] = None
    current_user_id: str = ""
    current_user_name: str = ""

    @classmethod
    def from_settings(
        cls,
        workflow_settings: WorkflowSettings,
        project_id: str = "",
        user_id: str = "",
        user_name: str = "",
    ) -> "ActionContext":
        return cls(
            project_id=project_id or settings.PROJECT_ID,
            source_folder_id=workflow_settings.source_folder_id,
            target_folder_id=workflow_settings.target_folder_id,
            rejected_folder_id=workflow_settings.rejected_folder_id,
            current_user_id=user_id or settings.SYSTEM_USER_ID,
            current_user_name=user_name or settings.SYSTEM_USER_NAME,
        )


ActionHandler = Callable[
    ["ActionExecutor", WorkflowAutoAction, WorkflowInstance, ValidationDocument, ActionContext],
    Awaitable[ActionResult],
]


class ActionRegistry:
    """
    Registry of action handlers keyed by action type.

    Usage:
        @action_registry.register(ActionType.MOVE_FILE)
        async def move_file(executor, action, instance, document, context):
            ...
    """

    def __init__(self):
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, action_type: str) -> Callable[[ActionHandler], ActionHandler]:
        def decorator(func: ActionHandler) -> ActionHandler:
            key = action_type.value if isinstance(action_type, ActionType) else action_type
            self._handlers[key] = func
            logger.debug(f"Registered action handler: {key}")
            return func
        return decorator

    def get(self, action_type: str) -> Optional[ActionHandler]:
        return self._handlers.get(action_type)

    def list_types(self) -> List[str]:
        return list(self._handlers)

    def __contains__(self, action_type: str) -> bool:
        return action_type in self._handlers


# Global action registry instance
action_registry = ActionRegistry()


class ActionExecutor:
    """
    Stateless dispatcher for auto-actions.

    Usage:
        executor = ActionExecutor(files=file_service, notifier=notifier)
        result = await executor.execute(action, instance, document, context)
    """

    def __init__(
        self,
        files: FileService,
        notifier: Optional[Notifier] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        registry: Optional[ActionRegistry] = None,
        timeout: Optional[float] = None,
        webhook_timeout: Optional[float] = None,
    ):
        self.files = files
        self.notifier = notifier
        self.http_client = http_client
        self.registry = registry or action_registry
        self.timeout = timeout or settings.COLLABORATOR_TIMEOUT
        self.webhook_timeout = webhook_timeout or settings.WEBHOOK_TIMEOUT

    async def execute(
        self,
        action: WorkflowAutoAction,
        instance: WorkflowInstance,
        document: ValidationDocument,
        context: ActionContext,
    ) -> ActionResult:
        """Run one action. Never raises."""
        handler = self.registry.get(action.type)
        if handler is None:
            return ActionResult(
                action_id=action.id,
                success=False,
                message=f"Unknown action type: {action.type}",
            )

        try:
            result = await asyncio.wait_for(
                handler(self, action, instance, document, context),
                timeout=self.timeout,
            )
        except ActionFailed as e:
            result = ActionResult(action_id=action.id, success=False, message=e.message)
        except asyncio.TimeoutError:
            result = ActionResult(
                action_id=action.id,
                success=False,
                message=f'Action "{action.label or action.type}" timed out',
                error=f"Timed out after {self.timeout}s",
            )
        except Exception as e:
            logger.exception(f"Action {action.id} ({action.type}) raised")
            result = ActionResult(
                action_id=action.id,
                success=False,
                message=f'Error while executing action "{action.label or action.type}"',
                error=str(e),
            )

        if result.success:
            logger.info(f"Action {action.type} succeeded: {result.message}")
        else:
            logger.warning(f"Action {action.type} failed: {result.message}")
        return result

    async def notify(self, notification: Notification) -> None:
        await notify_safely(self.notifier, notification)

    async def post_json(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(url, json=payload)
        async with httpx.AsyncClient(timeout=self.webhook_timeout) as client:
            return await client.post(url, json=payload)


def _render(template: str, values: Dict[str, Any]) -> str:
    """Replace {placeholders} known to the action; leave anything else as is."""
    for key, value in values.items():
        template = template.replace("{" + key + "}", str(value))
    return template


def _template_values(instance: WorkflowInstance, document: ValidationDocument) -> Dict[str, Any]:
    return {
        "fileName": document.file_name,
        "statusId": instance.current_status_id,
        "documentId": document.id,
        "instanceId": instance.id,
    }


# ============================================================
# Built-in actions
# ============================================================

def _target_folder(action: WorkflowAutoAction, context: ActionContext) -> Optional[str]:
    return action.config.get("targetFolderId") or context.target_folder_id


@action_registry.register(ActionType.MOVE_FILE)
async def move_file(executor, action, instance, document, context) -> ActionResult:
    target_folder_id = _target_folder(action, context)
    if not target_folder_id:
        raise ActionFailed("No target folder configured for the move")

    result = await executor.files.move_file(
        document.file_id, target_folder_id, context.source_folder_id
    )

    await executor.notify(Notification(
        type="success",
        title="Document moved",
        message=f'"{document.file_name}" was moved to the target folder.',
        document_id=document.id,
        workflow_instance_id=instance.id,
    ))

    return ActionResult(
        action_id=action.id,
        success=True,
        message=f'File "{document.file_name}" moved to folder {target_folder_id}',
        data=result,
    )


@action_registry.register(ActionType.COPY_FILE)
async def copy_file(executor, action, instance, document, context) -> ActionResult:
    target_folder_id = _target_folder(action, context)
    if not target_folder_id:
        raise ActionFailed("No target folder configured for the copy")

    result = await executor.files.copy_file(document.file_id, target_folder_id)

    return ActionResult(
        action_id=action.id,
        success=True,
        message=f'File "{document.file_name}" copied to folder {target_folder_id}',
        data=result,
    )


@action_registry.register(ActionType.NOTIFY_USER)
async def notify_user(executor, action, instance, document, context) -> ActionResult:
    target_user_id = action.config.get("userId") or document.uploaded_by
    template = action.config.get("messageTemplate") or (
        f"{document.file_name} has received status {instance.current_status_id}"
    )
    message = _render(template, _template_values(instance, document))

    task = await executor.files.create_task(
        label=f"[Validation] {document.file_name}",
        description=message,
        project_id=context.project_id,
    )

    await executor.notify(Notification(
        title="Notification sent",
        message=message,
        user_id=target_user_id,
        document_id=document.id,
        workflow_instance_id=instance.id,
    ))

    return ActionResult(
        action_id=action.id,
        success=True,
        message=f'Notification sent for "{document.file_name}"',
        data={"userId": target_user_id, "task": task},
    )


@action_registry.register(ActionType.SEND_COMMENT)
async def send_comment(executor, action, instance, document, context) -> ActionResult:
    template = action.config.get("commentTemplate") or (
        f'Automatic status: document "{document.file_name}" is now '
        f'"{instance.current_status_id}".'
    )
    header = _render(template, _template_values(instance, document))

    review_comments = "\n".join(
        f"{r.reviewer_name or r.reviewer_id}: {r.comment}"
        for r in instance.reviews
        if r.is_completed and r.comment
    )
    body = f"{header}\n\nReviewer comments:\n{review_comments}" if review_comments else header

    await executor.files.create_task(
        label=f"[Comment] {document.file_name}",
        description=body,
        project_id=context.project_id,
    )

    return ActionResult(
        action_id=action.id,
        success=True,
        message=f'Comment sent for "{document.file_name}"',
        data={"comment": body},
    )


@action_registry.register(ActionType.UPDATE_METADATA)
async def update_metadata(executor, action, instance, document, context) -> ActionResult:
    metadata = action.config.get("metadata")
    if not metadata:
        raise ActionFailed("No metadata to update")

    # TODO: push the metadata to the host once its file-attribute endpoint is proxied
    return ActionResult(
        action_id=action.id,
        success=True,
        message=f'Metadata updated for "{document.file_name}"',
        data=metadata,
    )


def build_webhook_payload(
    instance: WorkflowInstance,
    document: ValidationDocument,
    context: ActionContext,
) -> Dict[str, Any]:
    """The fixed JSON envelope POSTed by webhook actions."""
    return {
        "event": "workflow.action",
        "timestamp": utc_now().isoformat(),
        "workflow": {
            "instanceId": instance.id,
            "definitionId": instance.workflow_definition_id,
            "currentStatus": instance.current_status_id,
        },
        "document": {
            "id": document.id,
            "fileId": document.file_id,
            "fileName": document.file_name,
            "status": document.current_status.name,
        },
        "project": {
            "id": context.project_id,
        },
    }


@action_registry.register(ActionType.WEBHOOK)
async def webhook(executor, action, instance, document, context) -> ActionResult:
    url = action.config.get("url")
    if not url:
        raise ActionFailed("No webhook URL configured")

    payload = build_webhook_payload(instance, document, context)
    response = await executor.post_json(url, payload)
    ok = 200 <= response.status_code < 300

    return ActionResult(
        action_id=action.id,
        success=ok,
        message=(
            f"Webhook called successfully ({response.status_code})"
            if ok
            else f"Webhook error: {response.status_code} {response.reason_phrase}"
        ),
        data={"status_code": response.status_code},
    )
