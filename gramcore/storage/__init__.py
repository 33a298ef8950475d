"""
Storage module for wallet persistence and configuration management.

This module provides:
- A single-writer, file-backed document store (document_store)
- Typed stores for wallet records and configuration (record_store, config_store)
- Secret custody backed by the system keyring (secure_store)
"""

from . import document_store
from . import record_store
from . import config_store
from . import secure_store

__all__ = [
    'document_store',
    'record_store',
    'config_store',
    'secure_store',
]
