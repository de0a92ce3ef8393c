#app/core/errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional


class ContractError(Exception):
    """
    Base for every failure the contract core surfaces to callers.
    status_code is the HTTP status the API layer maps it to.
    """

    status_code: int = 400
    code: str = "CONTRACT_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NotFound(ContractError):
    status_code = 404
    code = "NOT_FOUND"


class PermissionDenied(ContractError, PermissionError):
    status_code = 403
    code = "PERMISSION_DENIED"


class PreconditionFailed(ContractError):
    status_code = 412
    code = "PRECONDITION_FAILED"


class ValidationFailed(ContractError):
    status_code = 422
    code = "VALIDATION_FAILED"

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = list(errors or [])

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "errors": self.errors}


class Conflict(ContractError):
    status_code = 409
    code = "CONFLICT"


class ExternalFailure(ContractError):
    status_code = 502
    code = "EXTERNAL_FAILURE"
