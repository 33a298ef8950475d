"""
Gram Portal - persistence and configuration core of a TON wallet client.

This package stores the wallet records and the blockchain configuration of
the wallet application, resolves the configuration from a URL or an inline
string, and notifies consumers when either document changes.

Modules:
    core: Data model, configuration resolver, launch decisions, wallet context
    storage: File-backed document stores, typed stores and secret custody
    net: Cancellable configuration downloads

Usage:
    from gramcore.core.context import WalletContext

    with WalletContext() as context:
        config = context.resolver.initial_configuration()
"""

import logging
import os

__version__ = "1.0.0"
__author__ = "Gram Portal Team"
__license__ = "MIT"

LOG_LEVEL_ENV = "GRAM_PORTAL_LOG_LEVEL"


def configure_logging(level=None) -> None:
    """
    Install a single stream handler on the package logger.
    The level defaults to $GRAM_PORTAL_LOG_LEVEL, then INFO.
    """
    name = level or os.getenv(LOG_LEVEL_ENV) or "INFO"
    logger = logging.getLogger(__name__)
    if isinstance(name, str):
        resolved = logging.getLevelName(name.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    else:
        resolved = int(name)
    logger.setLevel(resolved)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)


# Package metadata
__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "configure_logging",
]

# Note: Individual modules should be imported directly as needed
# Example: from gramcore.core.context import WalletContext
# Example: from gramcore.storage.document_store import FileBackedStore
