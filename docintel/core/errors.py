"""
Error taxonomy shared by the HTTP layer, the services and the worker.

Every component raises a subclass of DocIntelError. The FastAPI exception
handler in main.py turns it into a JSON body of the form

    {"error": "<message>", "error_code": "<CODE>", "request_id": "<id>"}

using the class's status_code. The worker never lets these escape to a
client: it records str(exc) on the Document and re-raises only so the
job queue can apply its retry policy.

    DocIntelError
    ├── ValidationError        400
    │   ├── UnsupportedMediaType
    │   └── FileTooLarge       413
    ├── NotFoundError          404
    ├── PreconditionError      400
    ├── AuthError              401 / 403
    ├── UpstreamError          500  (retried by the durable queue)
    └── InternalError          500
"""

from __future__ import annotations


class DocIntelError(Exception):
    """Base class: carries an HTTP status and a stable machine-readable code."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        # args stays the constructor's positional arguments so that
        # cls(*exc.args) rebuilds the same subclass (Celery results, pickle)
        ctor_args = self.args
        super().__init__(message)
        self.args = ctor_args
        self.message = message
        if error_code is not None:
            self.error_code = error_code

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# 400: bad input shape
# ---------------------------------------------------------------------------

class ValidationError(DocIntelError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class UnsupportedMediaType(ValidationError):
    error_code = "UNSUPPORTED_MEDIA_TYPE"

    def __init__(self, mime_type: str) -> None:
        super().__init__(
            f"Unsupported file type '{mime_type}'. Only PDF documents and "
            "images can be processed."
        )
        self.mime_type = mime_type


class FileTooLarge(ValidationError):
    status_code = 413
    error_code = "FILE_TOO_LARGE"

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        super().__init__(
            f"File is {size_bytes:,} bytes; the limit is {limit_bytes:,} bytes."
        )


# ---------------------------------------------------------------------------
# 404: unknown id
# ---------------------------------------------------------------------------

class NotFoundError(DocIntelError):
    status_code = 404
    error_code = "NOT_FOUND"


class DocumentNotFound(NotFoundError):
    error_code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document '{document_id}' not found")
        self.document_id = document_id


class DocumentDataNotFound(NotFoundError):
    error_code = "DOCUMENT_DATA_NOT_FOUND"

    def __init__(self, document_id: str) -> None:
        super().__init__(f"No extracted data for document '{document_id}' yet")
        self.document_id = document_id


class ApiKeyNotFound(NotFoundError):
    error_code = "API_KEY_NOT_FOUND"


class ProjectNotFound(NotFoundError):
    error_code = "PROJECT_NOT_FOUND"


# ---------------------------------------------------------------------------
# 400: state precondition
# ---------------------------------------------------------------------------

class PreconditionError(DocIntelError):
    status_code = 400
    error_code = "PRECONDITION_FAILED"


class DocumentNotReady(PreconditionError):
    error_code = "DOCUMENT_NOT_READY"

    def __init__(self, document_id: str, status: str) -> None:
        super().__init__(f"Document '{document_id}' is not ready (status: {status})")
        self.document_id = document_id
        self.status = status


class InvalidStatusTransition(PreconditionError):
    error_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, document_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Document '{document_id}' cannot move from '{current}' to '{target}'"
        )
        self.document_id = document_id
        self.current = current
        self.target = target


# ---------------------------------------------------------------------------
# 401 / 403: credentials
# ---------------------------------------------------------------------------

class AuthError(DocIntelError):
    status_code = 401
    error_code = "UNAUTHORIZED"


class ApiKeyMissing(AuthError):
    error_code = "API_KEY_REQUIRED"

    def __init__(self) -> None:
        super().__init__("API key required")


class InvalidApiKey(AuthError):
    status_code = 403
    error_code = "INVALID_API_KEY"

    def __init__(self) -> None:
        super().__init__("Invalid API key")


class ApiKeyScopeMismatch(AuthError):
    status_code = 403
    error_code = "ACCESS_DENIED"

    def __init__(self) -> None:
        super().__init__("Access denied")


class AdminTokenInvalid(AuthError):
    status_code = 403
    error_code = "ADMIN_FORBIDDEN"

    def __init__(self) -> None:
        super().__init__("Admin token missing or invalid")


# ---------------------------------------------------------------------------
# 500: storage / AI provider / broker
# ---------------------------------------------------------------------------

class UpstreamError(DocIntelError):
    status_code = 500
    error_code = "UPSTREAM_ERROR"


class StorageError(UpstreamError):
    error_code = "STORAGE_ERROR"


class DownloadError(UpstreamError):
    error_code = "DOWNLOAD_FAILED"


class AIProviderError(UpstreamError):
    error_code = "AI_PROVIDER_ERROR"


class AITimeout(AIProviderError):
    error_code = "AI_TIMEOUT"

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"AI extraction timed out after {timeout_seconds:g}s")


class InvalidAIResponse(UpstreamError):
    error_code = "INVALID_AI_RESPONSE"


class QueueUnavailable(UpstreamError):
    error_code = "QUEUE_UNAVAILABLE"


class InternalError(DocIntelError):
    status_code = 500
    error_code = "INTERNAL_ERROR"
