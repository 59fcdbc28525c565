"""Orchestrator data models."""
from dataclasses import dataclass
from typing import Optional

from ..models import BlueskyBlob, MediaAsset, TwitterMedia


@dataclass(frozen=True)
class DestinationToggles:
    """Which destinations the user wants to post to."""
    twitter: bool = True
    bluesky: bool = True


@dataclass
class PostHandles:
    """Uploaded media handles of one generation, reused across post retries."""
    twitter: Optional[TwitterMedia] = None
    bluesky: Optional[BlueskyBlob] = None

    def clear(self) -> None:
        self.twitter = None
        self.bluesky = None


@dataclass
class ComposerState:
    """Everything the user is composing right now."""
    text: str = ""
    asset: Optional[MediaAsset] = None
    bluesky_enabled: bool = True
    handles: Optional[PostHandles] = None

    def __post_init__(self):
        if self.handles is None:
            self.handles = PostHandles()

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and self.asset is None
