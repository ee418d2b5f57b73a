"""OpenCode server lifecycle and HTTP API client.

- bootstrap_backend: start or attach to a server and confirm connectivity
- BackendHandle: connected server with idempotent shutdown
- OpenCodeClient: sessions, prompts, status and the event stream
"""

from src.harness.backend.client import (
    BackendError,
    BackendTransportError,
    EventSubscription,
    OpenCodeClient,
    SessionCreationError,
    build_prompt_body,
)
from src.harness.backend.server import BackendHandle, BootstrapError, bootstrap_backend

__all__ = [
    "BackendError",
    "BackendHandle",
    "BackendTransportError",
    "BootstrapError",
    "EventSubscription",
    "OpenCodeClient",
    "SessionCreationError",
    "bootstrap_backend",
    "build_prompt_body",
]
