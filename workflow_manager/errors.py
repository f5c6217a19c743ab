"""Error taxonomy for workflow manager operations.

Every store and service method reports failure by raising one of these.
Nothing in the core retries; callers decide whether an operation is safe
to repeat.
"""

from typing import Any


class WorkflowError(Exception):
    """Base exception for workflow manager errors."""

    status_code = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def error_type(self) -> str:
        return type(self).__name__


# ==================== Not Found ====================


class NotFoundError(WorkflowError):
    """A definition, node, edge, registry entry, or lock is absent."""

    status_code = 404


class DefinitionNotFoundError(NotFoundError):
    pass


class VersionNotFoundError(NotFoundError):
    pass


class NodeNotFoundError(NotFoundError):
    pass


class EdgeNotFoundError(NotFoundError):
    pass


class LockNotFoundError(NotFoundError):
    pass


class SubWorkflowNotFoundError(NotFoundError):
    pass


class RegistryEntryNotFoundError(NotFoundError):
    pass


# ==================== Conflict ====================


class ConflictError(WorkflowError):
    """Duplicate id, lock held elsewhere, or a concurrent overwrite."""

    status_code = 409


class DuplicateNodeError(ConflictError):
    pass


class DuplicateEdgeError(ConflictError):
    pass


class VersionExistsError(ConflictError):
    """A snapshot for this (definition, version) pair already exists."""

    pass


class VersionLockedError(ConflictError):
    """The (definition, version) pair is locked by an executing instance."""

    def __init__(self, message: str, holder: int | None = None, **context: Any):
        super().__init__(message, holder=holder, **context)
        self.holder = holder


class ConcurrentModificationError(ConflictError):
    """The row changed between read and write."""

    def __init__(
        self,
        message: str,
        expected: int | None = None,
        actual: int | None = None,
        **context: Any,
    ):
        super().__init__(message, expected=expected, actual=actual, **context)
        self.expected = expected
        self.actual = actual


# ==================== Graph structure ====================


class EndpointNotFoundError(WorkflowError):
    """An edge references a node that does not exist."""

    status_code = 422

    def __init__(self, message: str, missing: list[str] | None = None, **context: Any):
        super().__init__(message, missing=missing or [], **context)
        self.missing = missing or []


# ==================== State machine ====================


class InvalidTransitionError(WorkflowError):
    """A registry transition was attempted from a state that does not allow it."""

    status_code = 409

    def __init__(
        self,
        message: str,
        current: str | None = None,
        operation: str | None = None,
        **context: Any,
    ):
        super().__init__(message, current=current, operation=operation, **context)
        self.current = current
        self.operation = operation


class AlreadyTerminalError(InvalidTransitionError):
    """The record already reached a terminal state."""

    pass


# ==================== Locks / validation ====================


class LockNotHeldError(WorkflowError):
    """Unlock attempted by an instance that does not hold the lock."""

    status_code = 403


class WorkflowValidationError(WorkflowError):
    """Malformed payload or argument."""

    status_code = 400
