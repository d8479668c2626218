"""
Error taxonomy for the workflow engine.

Engine preconditions fail fast with these typed errors. Action failures
are never raised; they are reported as data in an ActionResult.
"""


class WorkflowError(Exception):
    """Base exception for the workflow engine."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class DefinitionInvalid(WorkflowError):
    """Definition cannot be executed (no start node, no status, cyclic path)."""

    status_code = 422


class DefinitionNotFound(WorkflowError):
    """Workflow definition lookup missed."""

    status_code = 404


class InstanceNotFound(WorkflowError):
    """Workflow instance lookup missed."""

    status_code = 404


class CollaboratorUnavailable(WorkflowError):
    """A store or external service failed or timed out."""

    status_code = 503


class ActionFailed(WorkflowError):
    """An auto-action could not be carried out."""

    status_code = 500
