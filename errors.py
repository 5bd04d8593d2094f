"""
Error kinds surfaced by the marketplace workflows.

Every error carries a human-readable message, a stable machine code and the
HTTP status the API answers with.
"""


class WorkflowError(Exception):
    code = "workflow_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Required field missing, out-of-range number, message too short."""
    code = "validation_error"
    status_code = 400


class AuthorizationError(WorkflowError):
    """The actor may not perform this operation (wrong role, not the owner, self-bid)."""
    code = "authorization_error"
    status_code = 403


class NotFound(WorkflowError):
    code = "not_found"
    status_code = 404


class InvalidStateTransition(WorkflowError):
    """The requested transition is not legal from the entity's current status."""
    code = "invalid_state_transition"
    status_code = 409


class PartialFailure(WorkflowError):
    """A multi-document write could not be applied atomically."""
    code = "partial_failure"
    status_code = 500


class CollaboratorUnavailable(WorkflowError):
    """The entity store failed transiently. Safe to retry."""
    code = "collaborator_unavailable"
    status_code = 503


class CorruptDocument(WorkflowError):
    """A stored document does not match its schema."""
    code = "corrupt_document"
    status_code = 500


class WriteConflict(WorkflowError):
    # Raised by conditional writes when the stored document no longer matches.
    code = "write_conflict"
    status_code = 409
