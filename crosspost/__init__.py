"""
Crosspost - compose once, publish to Twitter and Bluesky.

Media is optimized and uploaded to both networks as soon as it is picked,
so posting only has to create the two posts.

Usage:
    from crosspost import CrossPostCoordinator, MediaAsset, JsonFileCredentialStore

    coordinator = CrossPostCoordinator(JsonFileCredentialStore())
    await coordinator.load_credentials()
    coordinator.set_text("hello")
    await coordinator.select_media(MediaAsset.from_path("photo.jpg"))
    outcome = await coordinator.request_post()
    print(outcome.message)
"""
from .errors import (
    CredentialError,
    CrossPostError,
    ProtocolError,
    TransportError,
    UploadCanceled,
    ValidationError,
)
from .models import (
    BlueskyBlob,
    CrossPostConfig,
    Credentials,
    Destination,
    DestinationResult,
    MediaAsset,
    MediaKind,
    OutcomeStatus,
    PostOutcome,
    TwitterMedia,
    UploadAttempt,
    UploadState,
)
from .orchestrator import (
    CancelToken,
    CrossPostCoordinator,
    DestinationToggles,
    UploadSessionCoordinator,
)
from .services import (
    BlueskyClient,
    FFmpegTranscoder,
    JsonFileCredentialStore,
    MemoryCredentialStore,
    SizeAwareOptimizer,
    TwitterClient,
)

__version__ = "0.1.0"
__all__ = [
    # Main
    "CrossPostCoordinator",
    "UploadSessionCoordinator",
    "CancelToken",
    "DestinationToggles",
    # Models
    "BlueskyBlob",
    "CrossPostConfig",
    "Credentials",
    "Destination",
    "DestinationResult",
    "MediaAsset",
    "MediaKind",
    "OutcomeStatus",
    "PostOutcome",
    "TwitterMedia",
    "UploadAttempt",
    "UploadState",
    # Errors
    "CrossPostError",
    "CredentialError",
    "ProtocolError",
    "TransportError",
    "UploadCanceled",
    "ValidationError",
    # Services
    "BlueskyClient",
    "FFmpegTranscoder",
    "JsonFileCredentialStore",
    "MemoryCredentialStore",
    "SizeAwareOptimizer",
    "TwitterClient",
]
