# config.py
"""Application configuration"""
from typing import Dict, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from docintel.utils.common import get_log_file_path

class Settings(BaseSettings):
    """Application configuration"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logger configuration
    LOG_FILE_PATH: str = get_log_file_path()
    LOGGER_NAME: str = "docintel"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./docintel.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour
    DB_ECHO: bool = False

    # Vector store
    VECTOR_QUERY_TIMEOUT_SECONDS: float = 10.0

    # Collection defaults
    DEFAULT_EMBEDDING_MODEL: str = "nomic-embed-text"
    DEFAULT_CHUNK_SIZE: int = 1000
    DEFAULT_CHUNK_OVERLAP: int = 200
    DEFAULT_MAX_RETRIEVAL_COUNT: int = 5
    REJECT_DUPLICATE_DOCUMENTS: bool = True

    # Known embedding models and their dimensionality
    EMBEDDING_MODEL_DIMENSIONS: Dict[str, int] = {
        "nomic-embed-text": 768,
        "mxbai-embed-large": 1024,
        "all-minilm": 384,
        "all-MiniLM-L6-v2": 384,
        "paraphrase-multilingual-mpnet-base-v2": 768,
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-004": 768,
    }

    # Session defaults
    DEFAULT_CONTEXT_WINDOW: int = 4000
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_CHAT_MODEL: str = "auto"
    MAX_COMPLETION_TOKENS: int = 2048
    SYSTEM_PROMPT: str = (
        "You are a helpful assistant answering questions about the user's documents. "
        "Use the numbered sources in the context when they are relevant and say so "
        "when the context does not contain the answer."
    )

    # Validation ranges
    CHUNK_SIZE_MIN: int = 100
    CHUNK_SIZE_MAX: int = 10000
    CHUNK_OVERLAP_MIN: int = 0
    CHUNK_OVERLAP_MAX: int = 500
    CONTEXT_WINDOW_MIN: int = 1000
    CONTEXT_WINDOW_MAX: int = 128000
    TEMPERATURE_MIN: float = 0.0
    TEMPERATURE_MAX: float = 2.0
    RETRIEVAL_COUNT_MIN: int = 1
    RETRIEVAL_COUNT_MAX: int = 20
    MAX_DOCUMENT_CHARS: int = 5_000_000

    # Ingestion
    EMBEDDING_WORKERS: int = 4

    # Provider orchestration (local first)
    PROVIDER_PRIORITY: List[str] = ["ollama", "sentence_transformers", "openai", "gemini"]
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    PROVIDER_PROBE_TIMEOUT_SECONDS: float = 5.0
    PROVIDER_STATUS_TTL_SECONDS: float = 30.0

    # Ollama
    OLLAMA_ENABLED: bool = True
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_CHAT_MODELS: List[str] = ["llama3.2:latest"]
    OLLAMA_EMBEDDING_MODELS: Dict[str, int] = {
        "nomic-embed-text": 768,
        "mxbai-embed-large": 1024,
        "all-minilm": 384,
    }
    OLLAMA_MAX_CONTEXT_TOKENS: int = 8192

    # Local sentence-transformers
    SENTENCE_TRANSFORMERS_ENABLED: bool = False
    SENTENCE_TRANSFORMERS_MODEL: str = "all-MiniLM-L6-v2"
    SENTENCE_TRANSFORMERS_DIMENSION: int = 384

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_ORGANIZATION: str = ""
    OPENAI_CHAT_MODELS: List[str] = ["gpt-3.5-turbo", "gpt-4o-mini", "gpt-4o"]
    OPENAI_EMBEDDING_MODELS: Dict[str, int] = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    }
    OPENAI_MAX_CONTEXT_TOKENS: int = 16385

    # Google Gemini
    GEMINI_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_CHAT_MODELS: List[str] = ["gemini-1.5-flash", "gemini-1.5-pro"]
    GEMINI_EMBEDDING_MODELS: Dict[str, int] = {"text-embedding-004": 768}
    GEMINI_MAX_CONTEXT_TOKENS: int = 1_000_000

    # API settings
    REQUEST_TIMEOUT: int = 60

    # App metadata
    APP_TITLE: str = "Document Intelligence Engine"
    APP_VERSION: str = "1.0.0"

settings = Settings()
