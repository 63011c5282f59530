"""
Error taxonomy for the task hub core.

Core functions raise these instead of HTTPException; the route layer maps
them to status codes in one place (see main.py).
"""


class TaskHubError(Exception):
    """Base class for every error the core surfaces to its caller."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(TaskHubError):
    """Referenced project, board, task, team, user or notification is absent."""

    status_code = 404


class ForbiddenError(TaskHubError):
    """Role lacks the permission, or a protected invariant would be violated."""

    status_code = 403


class InvalidInputError(TaskHubError):
    status_code = 400


class ConflictError(TaskHubError):
    """Duplicate membership or cyclic team parentage."""

    status_code = 409


class InternalError(TaskHubError):
    """Persistence failure unrelated to business rules."""

    status_code = 500
