"""Services for crosspost module."""
from .bluesky import BlueskyClient
from .credentials import (
    EnvCredentialStore,
    JsonFileCredentialStore,
    LayeredCredentialStore,
    MemoryCredentialStore,
)
from .oauth import OAuth1Signer
from .optimizer import SizeAwareOptimizer
from .transcoder import FFmpegTranscoder
from .twitter import TwitterClient

__all__ = [
    "BlueskyClient",
    "EnvCredentialStore",
    "JsonFileCredentialStore",
    "LayeredCredentialStore",
    "MemoryCredentialStore",
    "OAuth1Signer",
    "SizeAwareOptimizer",
    "FFmpegTranscoder",
    "TwitterClient",
]
