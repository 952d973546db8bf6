"""
Failure taxonomy for the workflow / integrity core.

Validation and state-conflict errors are surfaced to callers as distinct
failures (see the JSON error handler in create_app). Crypto and storage faults
are logged server-side and surfaced as an opaque message.
"""
from __future__ import annotations


class WorkflowError(Exception):
    status_code = 400
    code = "workflow_error"
    # Opaque errors never echo their message to the caller.
    opaque = False

    def __init__(self, message: str = "", **context: object) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self) -> dict:
        if self.opaque:
            return {"error": self.code, "message": "Operation failed."}
        return {"error": self.code, "message": self.message}


class NotFound(WorkflowError):
    status_code = 404
    code = "not_found"


class RoleMismatch(WorkflowError):
    status_code = 403
    code = "role_mismatch"


class AlreadyCompleted(WorkflowError):
    status_code = 409
    code = "already_completed"


class AlreadyRejected(WorkflowError):
    status_code = 409
    code = "already_rejected"


class ConcurrentModification(WorkflowError):
    """Lost the compare-and-swap on current_step. Retryable."""

    status_code = 409
    code = "concurrent_modification"
    retryable = True


class InvalidTemplate(WorkflowError):
    code = "invalid_template"


class InvalidAction(WorkflowError):
    code = "invalid_action"


class InvalidInput(WorkflowError):
    """Request field of the wrong type or shape."""

    code = "invalid_input"


class DuplicateAccount(WorkflowError):
    status_code = 409
    code = "duplicate_account"


class HashCollision(WorkflowError):
    status_code = 409
    code = "hash_collision"


class FingerprintImmutable(WorkflowError):
    status_code = 409
    code = "fingerprint_immutable"


class SignatureSealFailed(WorkflowError):
    status_code = 500
    code = "signature_seal_failed"
    opaque = True


class LedgerImmutable(WorkflowError):
    status_code = 500
    code = "ledger_immutable"
    opaque = True


class ConfigError(RuntimeError):
    pass
