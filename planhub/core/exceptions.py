"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register one handler per type and
translate them into consistent JSON error responses.

Usage:
    from planhub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=project_id)
    raise ValidationError("CSV must have a header row")

Taxonomy for plan operations:
    - NotFoundError / PlanConfigurationError abort the whole operation.
    - Row-level problems are NOT exceptions; they are collected into
      the result's ``errors`` list and the row is skipped.
    - PlanTransactionError means the store rejected a write and the
      whole unit of work was rolled back.
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for both missing records and cross-organization lookups, so a
    caller cannot probe for the existence of another organization's data.

    Args:
        resource: Human-readable entity name (e.g. "Project", "PlanItem").
        resource_id: The key that was looked up. Included in logs.
        organization_id: Optional scope that was enforced. Debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class PlanConfigurationError(Exception):
    """Raised when the plan item type chain cannot support the operation.

    Examples: no type configured for a level, levels not contiguous from 1,
    a node whose type level does not follow its parent's. Fatal for the
    whole operation; never reported per row.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PlanTransactionError(Exception):
    """Raised when the backing store rejects a write inside a unit of work.

    The unit of work has already been rolled back when this propagates,
    so callers never see partial results.

    Args:
        operation: Name of the unit of work (e.g. "plan_import").
        project_id: Project the unit of work was scoped to.
    """

    def __init__(self, operation: str, project_id: str | None = None, reason: str | None = None) -> None:
        self.operation = operation
        self.project_id = project_id
        self.reason = reason
        msg = f"{operation} failed and was rolled back"
        if project_id is not None:
            msg += f" (project={project_id})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
