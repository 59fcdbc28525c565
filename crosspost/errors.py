"""
Error taxonomy for crosspost.

Transport and protocol failures come from the destination clients,
validation and credential failures are raised before any network call.
"""
from typing import Any, Iterable, Optional


class CrossPostError(Exception):
    """Base class for every crosspost failure."""


class TransportError(CrossPostError):
    """Network or transport level failure (includes cancellation)."""


class UploadCanceled(TransportError):
    """The cancel token of an upload fired before it completed."""


class ProtocolError(CrossPostError):
    """Well-formed response that is semantically invalid."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class ValidationError(CrossPostError):
    """Content exceeds a known limit or is empty."""


class CredentialError(CrossPostError):
    """A required secret is missing from the credential store."""

    def __init__(self, message: str, missing_keys: Iterable[str] = ()):
        super().__init__(message)
        self.missing_keys = tuple(missing_keys)
