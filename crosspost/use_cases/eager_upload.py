"""Use case: upload freshly selected media before the user asks to post."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from crosspost.errors import UploadCanceled
from crosspost.models import Credentials, Destination, MediaAsset, UploadAttempt, UploadHandle
from crosspost.orchestrator.session import UploadSessionCoordinator
from crosspost.use_cases.publish import BlueskyFactory, TwitterFactory, _describe_exception

logger = logging.getLogger(__name__)

HandleCallback = Callable[[UploadAttempt, UploadHandle], None]
FailureCallback = Callable[[UploadAttempt, str], None]
ProgressFactory = Callable[[UploadAttempt], Optional[Callable[[float], None]]]


class EagerUploadUseCase:
    """
    Run one destination upload for one generation.

    Errors are logged and swallowed: the post request will upload again.
    Callbacks only fire while the attempt's generation is still current.
    """

    def __init__(self, twitter_factory: TwitterFactory, bluesky_factory: BlueskyFactory):
        self._twitter_factory = twitter_factory
        self._bluesky_factory = bluesky_factory

    async def execute(
        self,
        session: UploadSessionCoordinator,
        attempt: UploadAttempt,
        asset: MediaAsset,
        credentials: Credentials,
        on_handle: HandleCallback,
        on_failure: Optional[FailureCallback] = None,
        progress_for: Optional[ProgressFactory] = None,
    ) -> Optional[UploadHandle]:
        destination = attempt.destination.value
        logger.debug(
            "Eager %s upload started: file=%s generation=%d",
            destination, asset.path.name, attempt.generation,
        )

        try:
            handle = await self._upload(attempt, asset, credentials, progress_for)
        except UploadCanceled:
            attempt.mark_canceled()
            logger.info("Eager %s upload cancelled (generation %d)", destination, attempt.generation)
            return None
        except asyncio.CancelledError:
            attempt.mark_canceled()
            raise
        except Exception as exc:
            error_msg = _describe_exception(exc)
            attempt.mark_failed(error_msg)
            logger.warning(
                "Eager %s upload failed for %s: %s",
                destination, asset.path.name, error_msg,
                exc_info=True,
            )
            if on_failure and session.is_current(attempt.generation):
                on_failure(attempt, error_msg)
            return None
        else:
            attempt.mark_succeeded(handle)
            if not session.is_current(attempt.generation):
                logger.debug(
                    "Dropping %s upload result of stale generation %d",
                    destination, attempt.generation,
                )
                return None

            logger.info("Eager %s upload success: %s", destination, handle)
            on_handle(attempt, handle)
            return handle
        finally:
            session.finish_attempt(attempt)

    async def _upload(
        self,
        attempt: UploadAttempt,
        asset: MediaAsset,
        credentials: Credentials,
        progress_for: Optional[ProgressFactory],
    ) -> UploadHandle:
        token = attempt.cancel_token
        on_progress = progress_for(attempt) if progress_for else None

        if attempt.destination == Destination.TWITTER:
            twitter = self._twitter_factory(credentials)
            try:
                return await twitter.upload(asset, cancel_token=token, on_progress=on_progress)
            finally:
                await twitter.aclose()

        bluesky = self._bluesky_factory()
        try:
            bsky_session = await token.guard(
                bluesky.login(credentials.bluesky_handle, credentials.bluesky_password)
            )
            blob = await bluesky.upload_blob(asset, bsky_session, cancel_token=token)
            if on_progress:
                on_progress(1.0)
            return blob
        finally:
            await bluesky.aclose()
