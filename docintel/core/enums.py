# core/enums.py
"""Shared enumerations used across the application."""
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for user-facing error messages."""
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    DIMENSION_MISMATCH = "DIMENSION_MISMATCH"
    EMBEDDING_MODEL_MISMATCH = "EMBEDDING_MODEL_MISMATCH"
    ALL_PROVIDERS_UNAVAILABLE = "ALL_PROVIDERS_UNAVAILABLE"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    ISOLATION_VIOLATION = "ISOLATION_VIOLATION"
    GENERATION_FAILED = "GENERATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_DOCUMENT = "DUPLICATE_DOCUMENT"
    DUPLICATE_COLLECTION = "DUPLICATE_COLLECTION"


class ProcessingStatus(str, Enum):
    """Document processing pipeline stages."""
    PENDING = "pending"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"

    @staticmethod
    def from_string(status: str) -> 'ProcessingStatus':
        """Convert string to ProcessingStatus enum."""
        try:
            return ProcessingStatus(status)
        except ValueError:
            return ProcessingStatus.FAILED


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ProviderKind(str, Enum):
    """Deployment class of an AI provider; drives the local-first ordering."""
    LOCAL = "local"
    CLOUD = "cloud"


class Capability(str, Enum):
    EMBED = "embed"
    COMPLETE = "complete"


class ChainState(str, Enum):
    """Per-operation fallback chain states."""
    NOT_STARTED = "not_started"
    TRYING = "trying"
    TRYING_NEXT = "trying_next"
    SUCCEEDED = "succeeded"
    ALL_FAILED = "all_failed"


class TurnState(str, Enum):
    """Per-turn chat states."""
    IDLE = "idle"
    RETRIEVING = "retrieving"
    COMPOSING = "composing"
    GENERATING = "generating"
    PERSISTED = "persisted"
    FAILED = "failed"
