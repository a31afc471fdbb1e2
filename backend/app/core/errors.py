from __future__ import annotations
from typing import Dict, Optional


class WorkflowValidationError(ValueError):
    """Field-scoped validation failure; nothing is persisted when raised."""

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        self.errors = dict(errors)
        super().__init__(message or next(iter(self.errors.values()), "Invalid input"))

    @classmethod
    def single(cls, field: str, message: str) -> "WorkflowValidationError":
        return cls({field: message})


class NotAuthorizedError(PermissionError):
    pass


class NotFoundError(LookupError):
    pass
