"""
Error taxonomy for the triage engine.

Every error carries a stable ``kind`` and the HTTP status the API answers
with, so callers can tell retryable collaborator failures from rejected
actions without matching on message text.
"""


class TriageError(Exception):
    """Base class for every error the engine raises on purpose."""
    kind = 'triage_error'
    http_status = 500


class ValidationError(TriageError):
    """Malformed input: a submission, an action payload or a settings document."""
    kind = 'validation_error'
    http_status = 400


class InvalidClassificationError(TriageError):
    """A classification outside the closed set, or one with no configured threshold."""
    kind = 'invalid_classification'
    http_status = 400

    def __init__(self, value, reason: str = ''):
        self.value = value
        self.reason = reason
        message = f"Invalid classification {value!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class TransientCollaboratorError(TriageError):
    """A classifier, generator or matcher call failed in a way worth retrying."""
    kind = 'collaborator_unavailable'
    http_status = 502

    def __init__(self, collaborator: str, message: str = ''):
        self.collaborator = collaborator
        text = f"{collaborator} unavailable"
        if message:
            text += f": {message}"
        super().__init__(text)


class ConcurrencyConflict(TriageError):
    """The stored lead version no longer matches the version a write expected."""
    kind = 'concurrency_conflict'
    http_status = 409

    def __init__(self, lead_id: str, expected_version: int):
        self.lead_id = lead_id
        self.expected_version = expected_version
        super().__init__(f"Lead {lead_id} changed since version {expected_version}")


class InvalidTransitionError(TriageError):
    """An action that the lead's current status does not allow."""
    kind = 'invalid_transition'
    http_status = 409

    def __init__(self, action: str, status: str, detail: str = ''):
        self.action = action
        self.status = status
        message = f"Cannot {action} a lead in '{status}' status"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class LeadNotFound(TriageError):
    kind = 'lead_not_found'
    http_status = 404

    def __init__(self, lead_id: str):
        self.lead_id = lead_id
        super().__init__(f"Lead {lead_id} not found")


class PipelineFailed(TriageError):
    """A pipeline stage failed for good; the lead keeps its last persisted state."""
    kind = 'pipeline_failed'
    http_status = 502

    def __init__(self, lead_id: str, stage: str, cause: Exception, retryable: bool = False):
        self.lead_id = lead_id
        self.stage = stage
        self.cause = cause
        self.retryable = retryable
        super().__init__(f"Pipeline for lead {lead_id} failed at stage '{stage}': {cause}")


class PipelineCancelled(TriageError):
    kind = 'pipeline_cancelled'
    http_status = 409

    def __init__(self, lead_id: str, stage: str):
        self.lead_id = lead_id
        self.stage = stage
        super().__init__(f"Pipeline for lead {lead_id} cancelled before stage '{stage}'")
