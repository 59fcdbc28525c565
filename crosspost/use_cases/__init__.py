"""Application use cases for crosspost workflows."""

from .eager_upload import EagerUploadUseCase
from .publish import (
    PostToBlueskyUseCase,
    PostToTwitterUseCase,
    PublishUseCase,
    bluesky_block_reason,
    bluesky_skip_reason,
)

__all__ = [
    "EagerUploadUseCase",
    "PostToBlueskyUseCase",
    "PostToTwitterUseCase",
    "PublishUseCase",
    "bluesky_block_reason",
    "bluesky_skip_reason",
]
