"""
Twitter client: chunked media upload and tweet creation.

Upload protocol:
1. INIT     -> media_id
2. APPEND   -> N indexed chunks, a bounded batch at a time
3. FINALIZE -> done, or processing_info
4. STATUS   -> polled until succeeded/failed (only when processing)
"""
from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, TypeVar

import httpx

from ..errors import ProtocolError, TransportError
from ..models import CrossPostConfig, MediaAsset, TwitterMedia
from ..orchestrator.parallel import Chunk, batched, get_parallel_count, plan_chunks
from ..orchestrator.session import CancelToken
from .oauth import OAuth1Signer

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"
TWEETS_URL = "https://api.twitter.com/2/tweets"

# Progress stays below 1.0 until FINALIZE (and STATUS) complete
PROGRESS_CAP = 0.99

ProgressCallback = Callable[[float], None]
T = TypeVar("T")


def media_category(asset: MediaAsset) -> str:
    if asset.is_video:
        return "tweet_video"
    if asset.mime_type == "image/gif":
        return "tweet_gif"
    return "tweet_image"


def _read_range(path: Path, offset: int, length: int) -> bytes:
    with open(path, "rb") as f:
        f.seek(offset)
        return f.read(length)


class TwitterClient:
    """
    Chunked-upload client for the Twitter media endpoint.

    Usage:
        async with TwitterClient(key, secret, token, token_secret) as twitter:
            media = await twitter.upload(asset, cancel_token=token, on_progress=print)
            tweet_id = await twitter.post_tweet("hello", [media.media_id])
    """

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        access_token: str,
        access_secret: str,
        config: Optional[CrossPostConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        signer: Optional[OAuth1Signer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config or CrossPostConfig()
        self._signer = signer or OAuth1Signer(
            consumer_key, consumer_secret, access_token, access_secret
        )
        self._transport = transport
        self._sleep = sleep
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
                timeout=self._config.request_timeout,
                transport=self._transport,
            )
        return self._client

    async def upload(
        self,
        asset: MediaAsset,
        cancel_token: Optional[CancelToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TwitterMedia:
        """
        Upload media through INIT/APPEND/FINALIZE/STATUS.

        Raises:
            TransportError: network failure (UploadCanceled when the token fires)
            ProtocolError: unexpected server response or failed processing
        """
        media_id = await self._init(asset, cancel_token)
        logger.info("Twitter INIT ok: media_id=%s (%d bytes)", media_id, asset.byte_size)

        await self._append_all(asset, media_id, cancel_token, on_progress)

        processing = await self._finalize(media_id, cancel_token)
        if processing:
            await self._wait_processing(media_id, processing, cancel_token)

        if on_progress:
            on_progress(1.0)
        logger.info("Twitter upload complete: media_id=%s", media_id)
        return TwitterMedia(media_id=media_id)

    async def post_tweet(self, text: str, media_ids: Sequence[str] = ()) -> str:
        """Create a tweet and return its id."""
        body: Dict[str, Any] = {"text": text}
        if media_ids:
            body["media"] = {"media_ids": list(media_ids)}

        # JSON bodies are not part of the signature base string
        headers = self._signer.headers("POST", TWEETS_URL)
        response = await self._send("POST", TWEETS_URL, json=body, headers=headers)
        data = self._json(response, "POST tweet")

        try:
            tweet_id = data["data"]["id"]
        except (KeyError, TypeError) as exc:
            raise ProtocolError("Tweet response has no id", response.status_code, data) from exc
        logger.info("Posted tweet %s", tweet_id)
        return str(tweet_id)

    async def _init(self, asset: MediaAsset, cancel_token: Optional[CancelToken]) -> str:
        params = {
            "command": "INIT",
            "total_bytes": asset.byte_size,
            "media_type": asset.mime_type,
            "media_category": media_category(asset),
        }
        data = await self._command(params, cancel_token)
        media_id = data.get("media_id_string")
        if not media_id:
            raise ProtocolError("INIT response has no media_id_string", payload=data)
        return str(media_id)

    async def _append_all(
        self,
        asset: MediaAsset,
        media_id: str,
        cancel_token: Optional[CancelToken],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        chunks = plan_chunks(asset.byte_size, self._config.chunk_size_for(asset))
        parallel = get_parallel_count(asset.byte_size)
        total = asset.byte_size
        sent = 0

        logger.debug(
            "Appending %d chunk(s) for media_id=%s, %d in parallel",
            len(chunks), media_id, parallel,
        )

        async def append(chunk: Chunk) -> None:
            nonlocal sent
            payload = await asyncio.to_thread(_read_range, asset.path, chunk.offset, chunk.length)
            if len(payload) != chunk.length:
                raise ProtocolError(
                    f"Short read on chunk {chunk.index}: {len(payload)}/{chunk.length} bytes"
                )
            await self._command(
                {
                    "command": "APPEND",
                    "media_id": media_id,
                    "segment_index": chunk.index,
                    "media_data": base64.b64encode(payload).decode("ascii"),
                },
                cancel_token,
            )
            sent += chunk.length
            if on_progress and total:
                on_progress(min(sent / total, PROGRESS_CAP))

        for batch in batched(chunks, parallel):
            tasks = [asyncio.create_task(append(chunk)) for chunk in batch]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

    async def _finalize(self, media_id: str, cancel_token: Optional[CancelToken]) -> Optional[Dict[str, Any]]:
        data = await self._command({"command": "FINALIZE", "media_id": media_id}, cancel_token)
        processing = data.get("processing_info")
        if processing and processing.get("state") != "succeeded":
            return processing
        return None

    async def _wait_processing(
        self,
        media_id: str,
        processing: Dict[str, Any],
        cancel_token: Optional[CancelToken],
    ) -> None:
        max_polls = self._config.max_status_polls
        for poll in range(max_polls + 1):
            state = processing.get("state")
            if state == "succeeded":
                return
            if state == "failed":
                error = processing.get("error") or {}
                message = error.get("message") or error.get("name") or "unknown error"
                raise ProtocolError(f"Media processing failed: {message}", payload=processing)
            if poll == max_polls:
                break

            delay = max(float(processing.get("check_after_secs") or 1), 1.0)
            logger.debug("media_id=%s is %s, next STATUS in %.0fs", media_id, state, delay)
            await self._guarded(self._sleep(delay), cancel_token)

            params = {"command": "STATUS", "media_id": media_id}
            headers = self._signer.headers("GET", UPLOAD_URL, params)
            response = await self._guarded(
                self._send("GET", UPLOAD_URL, params=params, headers=headers),
                cancel_token,
            )
            data = self._json(response, "STATUS")
            processing = data.get("processing_info") or {"state": "succeeded"}

        raise ProtocolError(
            f"Media processing did not finish after {max_polls} status checks",
            payload=processing,
        )

    async def _command(self, params: Dict[str, Any], cancel_token: Optional[CancelToken]) -> Dict[str, Any]:
        form = {k: str(v) for k, v in params.items()}
        headers = self._signer.headers("POST", UPLOAD_URL, form)
        response = await self._guarded(
            self._send("POST", UPLOAD_URL, data=form, headers=headers),
            cancel_token,
        )
        # APPEND answers with an empty 2xx body
        if not response.content:
            return {}
        return self._json(response, params["command"])

    async def _guarded(self, awaitable: Awaitable[T], cancel_token: Optional[CancelToken]) -> T:
        if cancel_token is None:
            return await awaitable
        return await cancel_token.guard(awaitable)

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = self._ensure_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                detail = response.json()
            except ValueError:
                detail = response.text
            raise ProtocolError(
                f"Twitter API error {response.status_code} on {method} {url}: {detail}",
                status_code=response.status_code,
                payload=detail,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response, what: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(
                f"Invalid JSON in {what} response", response.status_code, response.text
            ) from exc
        if not isinstance(data, dict):
            raise ProtocolError(f"Unexpected {what} response", response.status_code, data)
        return data
