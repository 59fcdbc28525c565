"""Orchestrator package - coordinates composing, uploading and posting."""
from .core import CrossPostCoordinator
from .models import ComposerState, DestinationToggles, PostHandles
from .session import CancelToken, UploadSessionCoordinator

__all__ = [
    "CrossPostCoordinator",
    "ComposerState",
    "DestinationToggles",
    "PostHandles",
    "CancelToken",
    "UploadSessionCoordinator",
]
