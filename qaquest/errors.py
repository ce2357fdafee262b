from typing import Optional


class QAQuestError(Exception):
    """Base error; carries the HTTP status and the client-facing classification."""

    status_code = 500
    classification = "internal_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidRequest(QAQuestError):
    status_code = 400
    classification = "validation_error"


class IdentityMismatch(QAQuestError):
    status_code = 403
    classification = "user_mismatch"


class NotFound(QAQuestError):
    status_code = 404
    classification = "not_found"


class Conflict(QAQuestError):
    status_code = 409
    classification = "conflict"


class PersistenceFailure(QAQuestError):
    # retryable: nothing from the failed transaction survives
    status_code = 503
    classification = "persistence_error"


class AIUnavailable(QAQuestError):
    status_code = 503
    classification = "ai_unavailable"


class AIServiceError(Exception):
    """Transport, timeout or HTTP failure talking to the text-generation provider."""


class AIDecodeError(ValueError):
    """Provider output could not be decoded into the expected payload."""
