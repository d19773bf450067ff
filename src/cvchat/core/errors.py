# src/cvchat/core/errors.py
from typing import Any, Dict, Optional

GENERIC_MESSAGE = "Service temporarily unavailable. Please try again later."


class CVChatError(Exception):
    """Base error. `public` errors carry a message safe to show the caller."""

    status_code = 500
    code = "SERVICE_ERROR"
    public = False

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_body(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message if self.public else GENERIC_MESSAGE,
        }


class ValidationError(CVChatError):
    status_code = 400
    code = "VALIDATION_ERROR"
    public = True


class ScheduleError(CVChatError):
    status_code = 400
    code = "OUTSIDE_ACTIVE_HOURS"
    public = True


class AuthenticationError(CVChatError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"
    public = True


class LockHeldError(CVChatError):
    status_code = 409
    code = "INDEXING_IN_PROGRESS"
    public = True


class EmbeddingError(CVChatError):
    code = "EMBEDDING_ERROR"


class VectorIndexUnavailable(CVChatError):
    status_code = 503
    code = "VECTOR_INDEX_UNAVAILABLE"


class RetrievalError(CVChatError):
    code = "RETRIEVAL_ERROR"


class InferenceError(CVChatError):
    status_code = 502
    code = "INFERENCE_ERROR"


class StoreError(CVChatError):
    code = "STORE_ERROR"


class RateLimitError(CVChatError):
    status_code = 429
    code = "RATE_LIMITED"
    public = True

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        if "retry_after" in self.details:
            body["retryAfter"] = self.details["retry_after"]
        return body
