"""
Protocols (Interfaces) for Dependency Inversion.

Following Interface Segregation Principle - small, focused interfaces.
"""
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, Protocol, Sequence, TYPE_CHECKING, runtime_checkable

from .models import BlueskyBlob, BlueskySession, MediaAsset, TwitterMedia

if TYPE_CHECKING:
    from .orchestrator.session import CancelToken


@runtime_checkable
class ICredentialStore(Protocol):
    """Interface for named secret persistence."""

    async def get(self, keys: Sequence[str]) -> Mapping[str, Optional[str]]:
        """Return a value (or None) for every requested key."""
        ...

    async def set(self, pairs: Iterable[tuple]) -> None:
        """Store (key, value) pairs."""
        ...


@runtime_checkable
class ITranscoder(Protocol):
    """Interface for video re-encoding."""

    def available(self) -> bool:
        ...

    async def transcode(self, asset: MediaAsset, output: Path, max_side: int, bitrate: int) -> MediaAsset:
        ...


@runtime_checkable
class IChunkedUploader(Protocol):
    """Interface for the chunked destination (Twitter)."""

    async def upload(
        self,
        asset: MediaAsset,
        cancel_token: Optional["CancelToken"] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> TwitterMedia:
        ...

    async def post_tweet(self, text: str, media_ids: Sequence[str] = ()) -> str:
        ...

    async def aclose(self) -> None:
        ...


@runtime_checkable
class IBlobPoster(Protocol):
    """Interface for the blob destination (Bluesky)."""

    async def login(self, identifier: str, secret: str) -> BlueskySession:
        ...

    async def upload_blob(
        self,
        asset: MediaAsset,
        session: BlueskySession,
        cancel_token: Optional["CancelToken"] = None,
    ) -> BlueskyBlob:
        ...

    async def post(self, text: str, handle: Optional[BlueskyBlob], session: BlueskySession) -> str:
        ...

    async def aclose(self) -> None:
        ...
