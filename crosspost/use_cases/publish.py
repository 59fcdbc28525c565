"""Use cases for the post-time half of a publish (Twitter first, then Bluesky)."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from crosspost.errors import UploadCanceled, ValidationError
from crosspost.models import (
    DISABLED_BY_USER,
    NOT_CONFIGURED,
    CrossPostConfig,
    Credentials,
    DestinationResult,
    MediaAsset,
    PostOutcome,
)
from crosspost.orchestrator.models import DestinationToggles, PostHandles
from crosspost.orchestrator.session import UploadSessionCoordinator
from crosspost.protocols import IBlobPoster, IChunkedUploader
from crosspost.utils.sizes import human_size

logger = logging.getLogger(__name__)

TwitterFactory = Callable[[Credentials], IChunkedUploader]
BlueskyFactory = Callable[[], IBlobPoster]

BLUESKY_VIDEO_REASON = "Bluesky does not support video"
TWITTER_FAILED_REASON = "Twitter post failed"


def _describe_exception(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return f"{type(exc).__name__}: {repr(exc)}"


def bluesky_block_reason(text: str, asset: Optional[MediaAsset], config: CrossPostConfig) -> Optional[str]:
    """Why Bluesky cannot take this content, or None when it can."""
    if asset is not None and asset.is_video:
        return BLUESKY_VIDEO_REASON
    if len(text) > config.bluesky_text_limit:
        return f"Text exceeds {config.bluesky_text_limit} characters"
    return None


def bluesky_size_reason(asset: Optional[MediaAsset], config: CrossPostConfig) -> Optional[str]:
    """Reason the (optimized) image is too large for a Bluesky blob, or None."""
    if asset is None or asset.is_video or asset.byte_size <= config.bluesky_image_limit:
        return None
    return (
        f"Image is {human_size(asset.byte_size)}, "
        f"over the {human_size(config.bluesky_image_limit)} Bluesky limit"
    )


def twitter_size_error(asset: Optional[MediaAsset], config: CrossPostConfig) -> Optional[str]:
    """Message for media Twitter will refuse because of its size, or None."""
    if asset is None:
        return None
    if asset.is_video:
        kind, limit = "Video", config.twitter_video_limit
    else:
        kind, limit = "Image", config.twitter_image_limit
    if asset.byte_size <= limit:
        return None
    return f"{kind} is {human_size(asset.byte_size)}, over the {human_size(limit)} Twitter limit"


def check_media_size(asset: Optional[MediaAsset], config: CrossPostConfig) -> None:
    """
    Raise before any network call when media cannot be posted to Twitter.

    Raises:
        ValidationError: media is over the Twitter byte limit for its kind
    """
    message = twitter_size_error(asset, config)
    if message:
        raise ValidationError(message)


def bluesky_skip_reason(
    text: str,
    asset: Optional[MediaAsset],
    toggles: DestinationToggles,
    credentials: Credentials,
    config: CrossPostConfig,
) -> Optional[str]:
    """Reason the Bluesky post will not be attempted, or None."""
    if not toggles.bluesky:
        return DISABLED_BY_USER
    if not credentials.has_bluesky:
        return NOT_CONFIGURED
    return bluesky_block_reason(text, asset, config) or bluesky_size_reason(asset, config)


class PostToTwitterUseCase:
    """Upload inline when no handle is cached, then create the tweet."""

    async def execute(
        self,
        twitter: IChunkedUploader,
        session: UploadSessionCoordinator,
        generation: int,
        text: str,
        asset: Optional[MediaAsset],
        handles: PostHandles,
    ) -> DestinationResult:
        try:
            media_ids = []
            if asset is not None:
                if handles.twitter is None:
                    logger.info("No eager Twitter upload for generation %d, uploading now", generation)
                    token = session.new_token(generation)
                    try:
                        handles.twitter = await twitter.upload(asset, cancel_token=token)
                    finally:
                        session.release_cancelable(token)
                media_ids = [handles.twitter.media_id]
            tweet_id = await twitter.post_tweet(text, media_ids)
        except UploadCanceled as exc:
            logger.info("Twitter upload cancelled during post: %s", exc)
            return DestinationResult.fail("Upload was cancelled")
        except Exception as exc:
            error_msg = _describe_exception(exc)
            logger.error("Twitter post failed: %s", error_msg, exc_info=True)
            return DestinationResult.fail(error_msg)
        return DestinationResult.ok(tweet_id)


class PostToBlueskyUseCase:
    """Log in, upload inline when no blob is cached, then create the record."""

    async def execute(
        self,
        bluesky: IBlobPoster,
        session: UploadSessionCoordinator,
        generation: int,
        credentials: Credentials,
        text: str,
        asset: Optional[MediaAsset],
        handles: PostHandles,
    ) -> DestinationResult:
        try:
            bsky_session = await bluesky.login(credentials.bluesky_handle, credentials.bluesky_password)
            if asset is not None and handles.bluesky is None:
                logger.info("No eager Bluesky upload for generation %d, uploading now", generation)
                token = session.new_token(generation)
                try:
                    handles.bluesky = await bluesky.upload_blob(asset, bsky_session, cancel_token=token)
                finally:
                    session.release_cancelable(token)
            blob = handles.bluesky if asset is not None else None
            post_uri = await bluesky.post(text, blob, bsky_session)
        except Exception as exc:
            error_msg = _describe_exception(exc)
            logger.error("Bluesky post failed: %s", error_msg, exc_info=True)
            return DestinationResult.fail(error_msg)
        return DestinationResult.ok(post_uri)


class PublishUseCase:
    """
    Post to both destinations and combine the results.

    Twitter failure ends the publish before Bluesky is touched. Bluesky
    failure never undoes the tweet.
    """

    def __init__(
        self,
        twitter_factory: TwitterFactory,
        bluesky_factory: BlueskyFactory,
        config: Optional[CrossPostConfig] = None,
        post_twitter: Optional[PostToTwitterUseCase] = None,
        post_bluesky: Optional[PostToBlueskyUseCase] = None,
    ):
        self._twitter_factory = twitter_factory
        self._bluesky_factory = bluesky_factory
        self._config = config or CrossPostConfig()
        self._post_twitter = post_twitter or PostToTwitterUseCase()
        self._post_bluesky = post_bluesky or PostToBlueskyUseCase()

    async def execute(
        self,
        session: UploadSessionCoordinator,
        generation: int,
        text: str,
        asset: Optional[MediaAsset],
        toggles: DestinationToggles,
        credentials: Credentials,
        handles: PostHandles,
    ) -> PostOutcome:
        check_media_size(asset, self._config)

        twitter = self._twitter_factory(credentials)
        try:
            twitter_result = await self._post_twitter.execute(
                twitter, session, generation, text, asset, handles
            )
        finally:
            await twitter.aclose()

        if not twitter_result.success:
            return PostOutcome(
                twitter=twitter_result,
                bluesky=DestinationResult.skipped(TWITTER_FAILED_REASON),
            )

        reason = bluesky_skip_reason(text, asset, toggles, credentials, self._config)
        if reason:
            logger.info("Skipping Bluesky: %s", reason)
            return PostOutcome(twitter=twitter_result, bluesky=DestinationResult.skipped(reason))

        bluesky = self._bluesky_factory()
        try:
            bluesky_result = await self._post_bluesky.execute(
                bluesky, session, generation, credentials, text, asset, handles
            )
        finally:
            await bluesky.aclose()

        return PostOutcome(twitter=twitter_result, bluesky=bluesky_result)
