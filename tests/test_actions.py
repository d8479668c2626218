"""
Tests for auto-action execution.
"""

import asyncio
import json

import httpx
import pytest

from visaflow.engine.actions import (
    ActionContext,
    ActionExecutor,
    ActionRegistry,
    ActionResult,
    action_registry,
    build_webhook_payload,
)
from visaflow.engine.models import (
    ActionType,
    FolderItem,
    ReviewDecision,
    WorkflowAutoAction,
    WorkflowInstance,
    WorkflowReview,
    WorkflowSettings,
)
from visaflow.integrations import InMemoryFileService, InMemoryNotifier

from tests.factories import make_document


def make_instance(reviews=None):
    return WorkflowInstance(
        id="instance-1",
        workflow_definition_id="definition-1",
        document_id="document-1",
        current_node_id="action",
        current_status_id="approved",
        reviews=reviews or [],
    )


def make_action(action_type, **config):
    action_type = action_type.value if isinstance(action_type, ActionType) else action_type
    return WorkflowAutoAction(id=f"a-{action_type}", type=action_type, config=config)


@pytest.fixture
def files():
    service = InMemoryFileService()
    service.add_file("inbox", FolderItem(id="file-1", name="plan.pdf", extension="pdf"))
    return service


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def context():
    return ActionContext.from_settings(
        WorkflowSettings(source_folder_id="inbox", target_folder_id="validated"),
        project_id="project-1",
    )


def executor_with(files, notifier=None, handler=None, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return ActionExecutor(files=files, notifier=notifier, http_client=client, **kwargs)


# ============================================================
# Registry Tests
# ============================================================

class TestActionRegistry:
    """Tests for the action registry."""

    def test_builtin_actions_registered(self):
        """Test every action type has a handler."""
        for action_type in ActionType:
            assert action_type.value in action_registry

    def test_register_custom_action(self):
        """Test registering a handler on a private registry."""
        registry = ActionRegistry()

        @registry.register("archive")
        async def archive(executor, action, instance, document, context):
            return ActionResult(action_id=action.id, success=True, message="archived")

        assert "archive" in registry
        assert registry.get("archive") is archive
        assert registry.list_types() == ["archive"]


# ============================================================
# File Action Tests
# ============================================================

class TestFileActions:
    """Tests for move_file and copy_file."""

    @pytest.mark.asyncio
    async def test_move_file(self, files, notifier, context):
        """Test moving to the workflow target folder."""
        executor = executor_with(files, notifier)

        result = await executor.execute(
            make_action(ActionType.MOVE_FILE), make_instance(), make_document(), context
        )

        assert result.success is True
        assert files.find_folder("file-1") == "validated"
        assert notifier.titles() == ["Document moved"]

    @pytest.mark.asyncio
    async def test_move_file_config_overrides_target(self, files, context):
        """Test an action's own target folder wins over the settings."""
        executor = executor_with(files)

        await executor.execute(
            make_action(ActionType.MOVE_FILE, targetFolderId="archive"),
            make_instance(), make_document(), context,
        )

        assert files.find_folder("file-1") == "archive"

    @pytest.mark.asyncio
    async def test_move_without_target(self, files):
        """Test a move without any target folder fails as data."""
        executor = executor_with(files)

        result = await executor.execute(
            make_action(ActionType.MOVE_FILE), make_instance(), make_document(), ActionContext()
        )

        assert result.success is False
        assert "No target folder" in result.message
        assert files.find_folder("file-1") == "inbox"

    @pytest.mark.asyncio
    async def test_copy_file(self, files, context):
        """Test copying leaves the original in place."""
        executor = executor_with(files)

        result = await executor.execute(
            make_action(ActionType.COPY_FILE), make_instance(), make_document(), context
        )

        assert result.success is True
        assert files.find_folder("file-1") == "inbox"
        assert len(files.folders["validated"]) == 1

    @pytest.mark.asyncio
    async def test_missing_file(self, files, context):
        """Test a collaborator error is reported, not raised."""
        executor = executor_with(files)

        result = await executor.execute(
            make_action(ActionType.MOVE_FILE), make_instance(),
            make_document(file_id="missing"), context,
        )

        assert result.success is False
        assert "missing" in result.error


# ============================================================
# Messaging Action Tests
# ============================================================

class TestMessagingActions:
    """Tests for notify_user, send_comment and update_metadata."""

    @pytest.mark.asyncio
    async def test_notify_user_default_message(self, files, notifier, context):
        """Test the default notification text and task."""
        executor = executor_with(files, notifier)

        result = await executor.execute(
            make_action(ActionType.NOTIFY_USER), make_instance(), make_document(), context
        )

        assert result.success is True
        assert result.data["userId"] == "user-1"
        [task] = files.tasks
        assert task["label"] == "[Validation] plan.pdf"
        assert task["description"] == "plan.pdf has received status approved"
        assert task["projectId"] == "project-1"
        assert notifier.notifications[0].user_id == "user-1"

    @pytest.mark.asyncio
    async def test_notify_user_template(self, files, context):
        """Test placeholders in a message template are filled."""
        executor = executor_with(files)

        await executor.execute(
            make_action(
                ActionType.NOTIFY_USER,
                userId="user-9",
                messageTemplate="{fileName} is {statusId} ({unknown})",
            ),
            make_instance(), make_document(), context,
        )

        assert files.tasks[0]["description"] == "plan.pdf is approved ({unknown})"

    @pytest.mark.asyncio
    async def test_send_comment_includes_reviews(self, files, context):
        """Test reviewer comments are appended to the comment."""
        executor = executor_with(files)
        reviews = [
            WorkflowReview(
                instance_id="instance-1", reviewer_id="r1", reviewer_name="Bob",
                decision=ReviewDecision.VAO, comment="Fix the legend", is_completed=True,
            ),
            WorkflowReview(
                instance_id="instance-1", reviewer_id="r2",
                decision=ReviewDecision.VSO, is_completed=True,
            ),
        ]

        result = await executor.execute(
            make_action(ActionType.SEND_COMMENT), make_instance(reviews), make_document(), context
        )

        assert result.success is True
        assert "Reviewer comments:\nBob: Fix the legend" in result.data["comment"]
        assert files.tasks[0]["label"] == "[Comment] plan.pdf"

    @pytest.mark.asyncio
    async def test_update_metadata(self, files, context):
        """Test metadata updates need a payload."""
        executor = executor_with(files)

        empty = await executor.execute(
            make_action(ActionType.UPDATE_METADATA), make_instance(), make_document(), context
        )
        filled = await executor.execute(
            make_action(ActionType.UPDATE_METADATA, metadata={"phase": "EXE"}),
            make_instance(), make_document(), context,
        )

        assert empty.success is False
        assert filled.success is True
        assert filled.data == {"phase": "EXE"}


# ============================================================
# Webhook Tests
# ============================================================

class TestWebhook:
    """Tests for the webhook action."""

    @pytest.mark.asyncio
    async def test_webhook_posts_payload(self, files, context):
        """Test the JSON envelope sent to the webhook."""
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append((str(request.url), json.loads(request.content)))
            return httpx.Response(200, json={"ok": True})

        executor = executor_with(files, handler=handler)

        result = await executor.execute(
            make_action(ActionType.WEBHOOK, url="https://hooks.example.com/visa"),
            make_instance(), make_document(), context,
        )

        assert result.success is True
        [(url, payload)] = received
        assert url == "https://hooks.example.com/visa"
        assert payload["event"] == "workflow.action"
        assert payload["workflow"] == {
            "instanceId": "instance-1",
            "definitionId": "definition-1",
            "currentStatus": "approved",
        }
        assert payload["document"]["fileName"] == "plan.pdf"
        assert payload["project"] == {"id": "project-1"}

    @pytest.mark.asyncio
    async def test_webhook_error_status(self, files, context):
        """Test a non-2xx answer is a failed action."""
        executor = executor_with(files, handler=lambda request: httpx.Response(500))

        result = await executor.execute(
            make_action(ActionType.WEBHOOK, url="https://hooks.example.com/visa"),
            make_instance(), make_document(), context,
        )

        assert result.success is False
        assert result.message == "Webhook error: 500 Internal Server Error"

    @pytest.mark.asyncio
    async def test_webhook_without_url(self, files, context):
        """Test a webhook needs a URL."""
        executor = executor_with(files)

        result = await executor.execute(
            make_action(ActionType.WEBHOOK), make_instance(), make_document(), context
        )

        assert result.success is False
        assert result.message == "No webhook URL configured"

    def test_payload_timestamp(self, context):
        """Test the envelope carries an ISO timestamp."""
        payload = build_webhook_payload(make_instance(), make_document(), context)
        assert "T" in payload["timestamp"]


# ============================================================
# Executor Tests
# ============================================================

class TestActionExecutor:
    """Tests for dispatch, unknown types and timeouts."""

    @pytest.mark.asyncio
    async def test_unknown_action_type(self, files, context):
        """Test an unknown type fails without raising."""
        executor = executor_with(files)

        result = await executor.execute(
            make_action("print_plan"), make_instance(), make_document(), context
        )

        assert result.success is False
        assert result.message == "Unknown action type: print_plan"

    @pytest.mark.asyncio
    async def test_timeout(self, files, context):
        """Test a slow action is cut off."""
        registry = ActionRegistry()

        @registry.register("slow")
        async def slow(executor, action, instance, document, context):
            await asyncio.sleep(1)
            return ActionResult(action_id=action.id, success=True, message="done")

        executor = ActionExecutor(files=files, registry=registry, timeout=0.01)

        result = await executor.execute(
            make_action("slow"), make_instance(), make_document(), context
        )

        assert result.success is False
        assert "timed out" in result.message
