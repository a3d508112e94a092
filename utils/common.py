"""Common utilities: paths, identifiers and timestamps"""
import os
import re
from datetime import datetime, timezone

# ⚠️ DO NOT import settings here - config.py may import from utils


# ============= Path Management =============

def get_project_root() -> str:
    """Returns the absolute path to the project's root directory."""
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def get_log_file_path() -> str:
    """Creates the log directory if it doesn't exist and returns the full log file path."""
    project_root = get_project_root()
    log_dir = os.path.join(project_root, 'log')

    if not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    return os.path.join(log_dir, 'hybrid_rag.log')


# ============= Identifiers =============

_UUID_PATTERN = re.compile(
    r'^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$', re.IGNORECASE
)


def validate_document_id(doc_id: str) -> bool:
    """Validate document ID format."""
    return bool(_UUID_PATTERN.match(doc_id or ""))


def make_chunk_id(document_id: str, chunk_index: int) -> str:
    """Stable chunk id; zero padding keeps lexical order equal to chunk order."""
    return f"{document_id}_{chunk_index:05d}"


# ============= Time =============

def utc_now() -> datetime:
    """Naive UTC timestamp (stored as-is in DateTime columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
