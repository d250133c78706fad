# app/core/errors.py
from __future__ import annotations


class WorkflowError(Exception):
    """
    Base for typed domain failures raised by services.
    Routers translate these into HTTPException using status_code.
    """
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    status_code = 422


class ForbiddenError(WorkflowError):
    status_code = 403


class NotFoundError(WorkflowError):
    status_code = 404


class InvalidStateError(WorkflowError):
    status_code = 409


class ConflictError(WorkflowError):
    status_code = 409


class ExpiredLinkError(WorkflowError):
    status_code = 410
