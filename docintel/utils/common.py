# utils/common.py
"""Common utilities: hashing, identifiers and path management"""
import hashlib
import os
import re

# DO NOT import settings here - causes circular import with config.py


# ============= Path Management =============

def get_project_root() -> str:
    """Returns the absolute path to the project's root directory."""
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))


def get_log_file_path() -> str:
    """Creates the log directory if it doesn't exist and returns the full log file path."""
    log_dir = os.path.join(get_project_root(), 'log')

    if not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    return os.path.join(log_dir, 'docintel.log')


# ============= Identifiers & Hashing =============

_UUID_PATTERN = re.compile(
    r'^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$', re.IGNORECASE
)


def get_content_hash(text: str) -> str:
    """Calculates the SHA256 hash of document text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def validate_uuid(value: str) -> bool:
    """Validate identifier format."""
    return bool(_UUID_PATTERN.match(value or ""))
