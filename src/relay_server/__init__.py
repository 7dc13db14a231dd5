"""Relay server package: a bounded conversation forwarded to a generative model.

The package provides a FastAPI application factory named ``create_app``
inside ``relay_server/server.py`` (see :func:`create_app`).

Typical usage
-------------
from relay_server import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 3000
"""

from __future__ import annotations

from .caller import ResilientCaller, backoff_delay
from .errors import (
    ConversationBusyError,
    ErrorKind,
    FilesystemError,
    InvalidInputError,
    RelayError,
    UpstreamError,
)
from .memory import Conversation, Message, MessageLog
from .pipeline import BatchPipeline, iter_batches, iter_lines
from .server import create_app

__all__ = [
    "create_app",
    "__version__",
    "get_version",
    # Conversation state
    "Conversation",
    "Message",
    "MessageLog",
    # Calls and ingestion
    "ResilientCaller",
    "backoff_delay",
    "BatchPipeline",
    "iter_batches",
    "iter_lines",
    # Errors
    "ErrorKind",
    "RelayError",
    "InvalidInputError",
    "UpstreamError",
    "FilesystemError",
    "ConversationBusyError",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__
