"""
Workflow error taxonomy — each error carries the HTTP status it maps to.
"""


class WorkflowError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(WorkflowError):
    status_code = 404


class InvalidInputError(WorkflowError):
    status_code = 400


class InvalidTransitionError(WorkflowError):
    """A status change the transition tables do not allow."""
    status_code = 400


class ConflictError(WorkflowError):
    """Duplicate value on a unique field."""
    status_code = 400
