# core/errors.py
"""Error taxonomy shared by services and the API layer"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from docintel.core.enums import ErrorCode


@dataclass(frozen=True)
class ProviderFailure:
    """Why one provider could not serve an operation"""
    provider: str
    reason: str


class RAGError(Exception):
    """Base error carrying a stable error code"""

    error_code: ErrorCode = ErrorCode.INVALID_CONFIGURATION

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None):
        self.message = message
        self.data: Optional[Dict[str, Any]] = None  # extra payload for the response envelope
        if error_code is not None:
            self.error_code = error_code
        super().__init__(message)

    def __str__(self):
        # Format used for logging and the response envelope
        return f"[{self.error_code.value}] {self.message}"


class InvalidConfiguration(RAGError):
    """Bad chunk/overlap values, out-of-range settings or wrong vector dimensionality."""
    error_code = ErrorCode.INVALID_CONFIGURATION


class EmbeddingModelMismatch(RAGError):
    error_code = ErrorCode.EMBEDDING_MODEL_MISMATCH


class NotFound(RAGError):
    error_code = ErrorCode.NOT_FOUND


class DuplicateDocument(RAGError):
    error_code = ErrorCode.DUPLICATE_DOCUMENT


class DuplicateCollection(RAGError):
    error_code = ErrorCode.DUPLICATE_COLLECTION


class IsolationViolation(RAGError):
    """
    Cross-owner or cross-collection access attempt.

    Always rejected. Callers must log these with the [SECURITY] tag.
    """
    error_code = ErrorCode.ISOLATION_VIOLATION


class ProviderError(RAGError):
    """A single provider attempt failed. Absorbed by the fallback chain."""
    error_code = ErrorCode.PROVIDER_ERROR


class AllProvidersUnavailable(RAGError):
    error_code = ErrorCode.ALL_PROVIDERS_UNAVAILABLE

    def __init__(self, operation: str, failures: List[ProviderFailure]):
        self.operation = operation
        self.failures = list(failures)
        details = "; ".join(f"{f.provider}: {f.reason}" for f in self.failures) or "no providers configured"
        super().__init__(f"All providers failed for '{operation}' ({details})")


class GenerationFailed(RAGError):
    """
    Chat turn could not be completed.

    The user message stays persisted (user_message_id) so the turn can be retried
    without resubmitting it.
    """
    error_code = ErrorCode.GENERATION_FAILED

    def __init__(self, message: str, user_message_id: Optional[str] = None,
                 failures: Optional[List[ProviderFailure]] = None):
        self.user_message_id = user_message_id
        self.failures = list(failures or [])
        super().__init__(message)
