"""Bluesky client: session, blob upload and post record over XRPC."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from ..errors import ProtocolError, TransportError
from ..models import BlueskyBlob, BlueskySession, CrossPostConfig, MediaAsset
from ..orchestrator.session import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_PDS_URL = "https://bsky.social"
POST_COLLECTION = "app.bsky.feed.post"


def _read_bytes(path: Path) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def build_post_record(text: str, blob: Optional[BlueskyBlob] = None, created_at: Optional[str] = None) -> Dict[str, Any]:
    """Build an ``app.bsky.feed.post`` record, embedding the blob by its mime type."""
    record: Dict[str, Any] = {
        "$type": POST_COLLECTION,
        "text": text,
        "createdAt": created_at or datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }
    if blob is None:
        return record

    if blob.mime_type.startswith("image"):
        record["embed"] = {
            "$type": "app.bsky.embed.images",
            "images": [{"alt": "", "image": blob.to_record()}],
        }
    elif blob.mime_type.startswith("video"):
        record["embed"] = {
            "$type": "app.bsky.embed.video",
            "video": blob.to_record(),
        }
    return record


class BlueskyClient:
    """
    Single-shot upload client for a Bluesky PDS.

    Each call is independent; callers log in again for every publish.
    """

    def __init__(
        self,
        pds_url: str = DEFAULT_PDS_URL,
        config: Optional[CrossPostConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._pds_url = pds_url.rstrip("/")
        self._config = config or CrossPostConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._ensure_client()
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._pds_url,
                timeout=self._config.request_timeout,
                transport=self._transport,
            )
        return self._client

    async def login(self, identifier: str, secret: str) -> BlueskySession:
        """Create a session with handle/email and app password."""
        data = await self._request(
            "POST",
            "/xrpc/com.atproto.server.createSession",
            json={"identifier": identifier, "password": secret},
        )
        try:
            session = BlueskySession(
                did=data["did"],
                access_jwt=data["accessJwt"],
                refresh_jwt=data.get("refreshJwt", ""),
                handle=data.get("handle", identifier),
            )
        except KeyError as exc:
            raise ProtocolError(f"createSession response missing {exc}", payload=data) from exc
        logger.info("Logged in to Bluesky as %s", session.handle)
        return session

    async def upload_blob(
        self,
        asset: MediaAsset,
        session: BlueskySession,
        cancel_token: Optional[CancelToken] = None,
    ) -> BlueskyBlob:
        """Upload the asset as one binary body and return its blob descriptor."""
        payload = await asyncio.to_thread(_read_bytes, asset.path)
        request = self._request(
            "POST",
            "/xrpc/com.atproto.repo.uploadBlob",
            content=payload,
            headers={
                "Content-Type": asset.mime_type,
                "Authorization": f"Bearer {session.access_jwt}",
            },
        )
        if cancel_token is not None:
            data = await cancel_token.guard(request)
        else:
            data = await request

        try:
            blob = BlueskyBlob.from_response(data["blob"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError("uploadBlob response has no blob descriptor", payload=data) from exc
        logger.info("Uploaded blob %s (%d bytes)", blob.link, blob.size)
        return blob

    async def post(self, text: str, handle: Optional[BlueskyBlob], session: BlueskySession) -> str:
        """Create a post record and return its URI."""
        data = await self._request(
            "POST",
            "/xrpc/com.atproto.repo.createRecord",
            json={
                "repo": session.did,
                "collection": POST_COLLECTION,
                "record": build_post_record(text, handle),
            },
            headers={"Authorization": f"Bearer {session.access_jwt}"},
        )
        uri = data.get("uri")
        if not uri:
            raise ProtocolError("createRecord response has no uri", payload=data)
        logger.info("Created Bluesky post %s", uri)
        return str(uri)

    async def _request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        client = self._ensure_client()
        try:
            response = await client.request(method, endpoint, **kwargs)
        except httpx.RequestError as exc:
            raise TransportError(f"{method} {endpoint} failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                error_detail = response.json()
            except ValueError:
                error_detail = response.text
            raise ProtocolError(
                f"Bluesky API error {response.status_code} on {method} {endpoint}: {error_detail}",
                status_code=response.status_code,
                payload=error_detail,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(
                f"Invalid JSON from {endpoint}", response.status_code, response.text
            ) from exc
        if not isinstance(data, dict):
            raise ProtocolError(f"Unexpected response from {endpoint}", response.status_code, data)
        return data
