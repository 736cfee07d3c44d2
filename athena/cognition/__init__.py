"""The cognition loop and the pieces it is built from."""

from .llm import ChatBackend, ContextLengthExceeded, LLMError, LLMSettings, build_backend
from .queue import QueueItem, SnapshotQueue
from .transcript import Transcript

__all__ = [
    "ChatBackend",
    "ContextLengthExceeded",
    "LLMError",
    "LLMSettings",
    "QueueItem",
    "SnapshotQueue",
    "Transcript",
    "build_backend",
]
