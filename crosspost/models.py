"""
Models for crosspost module.

Immutable dataclasses for assets, handles and outcomes. UploadAttempt is the
only mutable record: it follows one upload through its states.
"""
import mimetypes
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .orchestrator.session import CancelToken


VIDEO_EXTENSIONS = {
    '.mp4', '.mov', '.m4v', '.webm', '.avi', '.mkv', '.3gp',
}
IMAGE_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.webp', '.gif', '.bmp', '.heic', '.heif',
}

# Used when the mime type of a selection cannot be determined. The real
# content may differ (a PNG read as image/jpeg), see DESIGN.md.
FALLBACK_MIME_TYPES = {
    "image": "image/jpeg",
    "video": "video/mp4",
}


class MediaKind(Enum):
    """Kind of attached media."""
    IMAGE = "image"
    VIDEO = "video"


class Destination(Enum):
    """Social network a message is published to."""
    TWITTER = "twitter"
    BLUESKY = "bluesky"


@dataclass(frozen=True)
class MediaAsset:
    """Immutable media file ready for (or produced by) an optimization pass."""
    path: Path
    kind: MediaKind
    mime_type: str
    byte_size: int
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def is_video(self) -> bool:
        return self.kind == MediaKind.VIDEO

    @property
    def max_side(self) -> Optional[int]:
        if self.width is None or self.height is None:
            return None
        return max(self.width, self.height)

    @property
    def is_square(self) -> bool:
        if not self.width or not self.height:
            return False
        ratio = self.width / self.height
        return 0.9 <= ratio <= 1.1

    @classmethod
    def from_path(cls, path, mime_type: Optional[str] = None) -> "MediaAsset":
        """
        Build an asset from a local file.

        Args:
            path: Image or video file
            mime_type: Known mime type, guessed from the name when omitted

        Raises:
            ValueError: unsupported extension
            FileNotFoundError: missing file
        """
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix in VIDEO_EXTENSIONS:
            kind = MediaKind.VIDEO
        elif suffix in IMAGE_EXTENSIONS:
            kind = MediaKind.IMAGE
        else:
            raise ValueError(f"Unsupported file type: {path.suffix}")

        byte_size = path.stat().st_size
        if not mime_type:
            guessed, _ = mimetypes.guess_type(path.name)
            if guessed and guessed.split("/")[0] == kind.value:
                mime_type = guessed
            else:
                mime_type = FALLBACK_MIME_TYPES[kind.value]

        width = height = None
        if kind == MediaKind.IMAGE:
            from PIL import Image, UnidentifiedImageError

            try:
                with Image.open(path) as img:
                    width, height = img.size
            except (OSError, UnidentifiedImageError):
                pass

        return cls(
            path=path,
            kind=kind,
            mime_type=mime_type,
            byte_size=byte_size,
            width=width,
            height=height,
        )

    def derive(self, path: Path, **changes) -> "MediaAsset":
        """New asset for an optimized copy of this one."""
        if "byte_size" not in changes:
            changes["byte_size"] = Path(path).stat().st_size
        return replace(self, path=Path(path), **changes)


@dataclass(frozen=True)
class TwitterMedia:
    """Uploaded media on the chunked destination."""
    media_id: str


@dataclass(frozen=True)
class BlueskyBlob:
    """Uploaded blob descriptor on the blob destination."""
    link: str
    mime_type: str
    size: int

    def to_record(self) -> Dict[str, Any]:
        return {
            "$type": "blob",
            "ref": {"$link": self.link},
            "mimeType": self.mime_type,
            "size": self.size,
        }

    @classmethod
    def from_response(cls, data: Mapping[str, Any]) -> "BlueskyBlob":
        ref = data.get("ref") or {}
        return cls(
            link=ref["$link"],
            mime_type=data["mimeType"],
            size=int(data["size"]),
        )


UploadHandle = Union[TwitterMedia, BlueskyBlob]


@dataclass(frozen=True)
class BlueskySession:
    did: str
    access_jwt: str
    refresh_jwt: str
    handle: str


class UploadState(Enum):
    """Upload attempt status."""
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.SUCCEEDED, UploadState.FAILED, UploadState.CANCELED)


@dataclass
class UploadAttempt:
    """One upload of one generation's media to one destination."""
    generation: int
    destination: Destination
    cancel_token: "CancelToken"
    state: UploadState = UploadState.PENDING
    handle: Optional[UploadHandle] = None
    error: Optional[str] = None

    def mark_uploading(self) -> None:
        self._move(UploadState.UPLOADING)

    def mark_succeeded(self, handle: UploadHandle) -> None:
        self._move(UploadState.SUCCEEDED)
        self.handle = handle

    def mark_failed(self, error: str) -> None:
        self._move(UploadState.FAILED)
        self.error = error

    def mark_canceled(self) -> None:
        self._move(UploadState.CANCELED)

    def _move(self, state: UploadState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(
                f"Upload attempt {self.destination.value}#{self.generation} "
                f"already {self.state.value}"
            )
        self.state = state


CREDENTIAL_KEYS = (
    "apiKey",
    "apiSecret",
    "accessToken",
    "accessSecret",
    "blueskyHandle",
    "blueskyPassword",
)
TWITTER_KEYS = CREDENTIAL_KEYS[:4]
BLUESKY_KEYS = CREDENTIAL_KEYS[4:]


@dataclass(frozen=True)
class Credentials:
    """Secrets for both destinations, any of which may be missing."""
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    access_token: Optional[str] = None
    access_secret: Optional[str] = None
    bluesky_handle: Optional[str] = None
    bluesky_password: Optional[str] = None

    @property
    def has_twitter(self) -> bool:
        return all((self.api_key, self.api_secret, self.access_token, self.access_secret))

    @property
    def has_bluesky(self) -> bool:
        return bool(self.bluesky_handle and self.bluesky_password)

    @property
    def missing_twitter_keys(self) -> tuple:
        values = (self.api_key, self.api_secret, self.access_token, self.access_secret)
        return tuple(key for key, value in zip(TWITTER_KEYS, values) if not value)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Optional[str]]) -> "Credentials":
        return cls(
            api_key=values.get("apiKey") or None,
            api_secret=values.get("apiSecret") or None,
            access_token=values.get("accessToken") or None,
            access_secret=values.get("accessSecret") or None,
            bluesky_handle=values.get("blueskyHandle") or None,
            bluesky_password=values.get("blueskyPassword") or None,
        )


class ResultStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DestinationResult:
    """Immutable result of posting to one destination."""
    status: ResultStatus
    post_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @classmethod
    def ok(cls, post_id: str):
        return cls(status=ResultStatus.SUCCESS, post_id=post_id)

    @classmethod
    def fail(cls, reason: str):
        return cls(status=ResultStatus.FAILURE, reason=reason)

    @classmethod
    def skipped(cls, reason: str):
        return cls(status=ResultStatus.SKIPPED, reason=reason)


class OutcomeStatus(Enum):
    """Combined publish status."""
    SUCCESS = "success"
    PARTIAL = "partial"  # Twitter posted, Bluesky skipped or failed
    FAILED = "failed"


# Skip reasons that do not downgrade the outcome to partial success
DISABLED_BY_USER = "Disabled by user"
NOT_CONFIGURED = "Bluesky credentials not set"
QUIET_SKIP_REASONS = (DISABLED_BY_USER, NOT_CONFIGURED)


@dataclass(frozen=True)
class PostOutcome:
    """Immutable result of one publish."""
    twitter: DestinationResult
    bluesky: DestinationResult = field(
        default_factory=lambda: DestinationResult.skipped(DISABLED_BY_USER)
    )

    @property
    def status(self) -> OutcomeStatus:
        if not self.twitter.success:
            return OutcomeStatus.FAILED
        if self.bluesky.success:
            return OutcomeStatus.SUCCESS
        if self.bluesky.status == ResultStatus.SKIPPED and self.bluesky.reason in QUIET_SKIP_REASONS:
            return OutcomeStatus.SUCCESS
        return OutcomeStatus.PARTIAL

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def message(self) -> str:
        status = self.status
        if status == OutcomeStatus.FAILED:
            return f"Failed to post tweet: {self.twitter.reason}"
        if status == OutcomeStatus.SUCCESS:
            if self.bluesky.success:
                return "Posted to Twitter and Bluesky!"
            return "Tweet posted successfully!"
        if self.bluesky.status == ResultStatus.FAILURE:
            return f"Posted to Twitter, but Bluesky failed: {self.bluesky.reason}"
        return f"Posted to Twitter, Bluesky skipped: {self.bluesky.reason}"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


@dataclass(frozen=True)
class CrossPostConfig:
    """Immutable configuration for uploads and posting."""
    twitter_image_limit: int = 5 * 1024 * 1024
    twitter_video_limit: int = 512 * 1024 * 1024
    bluesky_image_limit: int = 1_000_000
    bluesky_text_limit: int = 300
    min_transform_bytes: int = 256 * 1024
    chunk_size_small: int = 1024 * 1024
    chunk_size_large: int = 4 * 1024 * 1024
    large_video_threshold: int = 16 * 1024 * 1024
    max_status_polls: int = 120
    request_timeout: int = 60
    work_dir: Optional[Path] = None

    def chunk_size_for(self, asset: MediaAsset) -> int:
        """Get APPEND chunk size: larger for big videos."""
        if asset.is_video and asset.byte_size >= self.large_video_threshold:
            return self.chunk_size_large
        return self.chunk_size_small

    def byte_limit_for(self, asset: MediaAsset, bluesky: bool) -> int:
        """Tightest byte budget among the destinations the asset goes to."""
        if asset.is_video:
            return self.twitter_video_limit
        if bluesky:
            return min(self.twitter_image_limit, self.bluesky_image_limit)
        return self.twitter_image_limit

    @classmethod
    def from_env(cls) -> "CrossPostConfig":
        """Read overrides from CROSSPOST_* environment variables."""
        defaults = cls()
        work_dir = os.getenv("CROSSPOST_WORK_DIR")
        return cls(
            twitter_image_limit=_env_int("CROSSPOST_TWITTER_IMAGE_LIMIT", defaults.twitter_image_limit),
            twitter_video_limit=_env_int("CROSSPOST_TWITTER_VIDEO_LIMIT", defaults.twitter_video_limit),
            bluesky_image_limit=_env_int("CROSSPOST_BLUESKY_IMAGE_LIMIT", defaults.bluesky_image_limit),
            bluesky_text_limit=_env_int("CROSSPOST_BLUESKY_TEXT_LIMIT", defaults.bluesky_text_limit),
            min_transform_bytes=_env_int("CROSSPOST_MIN_TRANSFORM_BYTES", defaults.min_transform_bytes),
            max_status_polls=_env_int("CROSSPOST_MAX_STATUS_POLLS", defaults.max_status_polls),
            request_timeout=_env_int("CROSSPOST_REQUEST_TIMEOUT", defaults.request_timeout),
            work_dir=Path(work_dir) if work_dir else None,
        )
