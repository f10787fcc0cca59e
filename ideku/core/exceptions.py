"""
Workflow-core exception hierarchy.

Services raise these for failures the caller cannot correct by retrying
the same call: unknown records, invalid admin input, broken workflow
configuration. Expected transition refusals (wrong stage, terminal idea,
lost race) are not raised; the transition engine returns them as
``(None, error)`` tuples built with ``ideku.utils.errors.service_error``.

Usage:
    from ideku.core.exceptions import NotFoundError, ConfigurationError

    raise NotFoundError(resource="Workflow", resource_id=42)
    raise ConfigurationError("Stage 2 already exists", details={"stage": 2})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Idea", "Workflow").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(ValidationError):
    """Raised at admin-write time when a workflow definition would be inconsistent.

    Examples: duplicate workflow name, duplicate stage number, malformed
    condition, stage changes on a workflow with in-flight ideas.
    """


class NoEligibleApproverError(Exception):
    """Raised when a mandatory stage resolves to an empty approver set."""

    def __init__(self, workflow_id: int, stage: int) -> None:
        self.workflow_id = workflow_id
        self.stage = stage
        super().__init__(f"No eligible approver for mandatory stage {stage} of workflow {workflow_id}")
