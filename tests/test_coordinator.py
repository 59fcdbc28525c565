"""Tests for the composer coordinator with fake destination clients."""
import asyncio
from dataclasses import replace
from pathlib import Path

import pytest

from crosspost.errors import CredentialError, ProtocolError, ValidationError
from crosspost.models import (
    BlueskyBlob,
    BlueskySession,
    CrossPostConfig,
    MediaAsset,
    MediaKind,
    OutcomeStatus,
    ResultStatus,
    TwitterMedia,
)
from crosspost.orchestrator import CrossPostCoordinator, DestinationToggles
from crosspost.services.bluesky import build_post_record
from crosspost.services.credentials import MemoryCredentialStore

MB = 1024 * 1024

ALL_CREDENTIALS = {
    "apiKey": "k",
    "apiSecret": "s",
    "accessToken": "t",
    "accessSecret": "ts",
    "blueskyHandle": "me.bsky.social",
    "blueskyPassword": "app-pass",
}


class Recorder:
    """Shared state of every fake client built by the factories."""

    def __init__(self):
        self.twitter_uploads = []
        self.tweets = []
        self.bluesky_logins = 0
        self.blob_uploads = []
        self.records = []
        self.gate = None
        self.honor_cancel = True
        self.tweet_error = None
        self.blob_error = None

    async def wait_gate(self, token):
        if self.gate is None:
            return
        if token is not None and self.honor_cancel:
            await token.guard(self.gate.wait())
        else:
            await self.gate.wait()


class FakeTwitter:
    def __init__(self, recorder):
        self._rec = recorder

    async def upload(self, asset, cancel_token=None, on_progress=None):
        self._rec.twitter_uploads.append(asset.path.name)
        await self._rec.wait_gate(cancel_token)
        if on_progress:
            on_progress(1.0)
        return TwitterMedia(media_id=f"media-{asset.path.name}")

    async def post_tweet(self, text, media_ids=()):
        if self._rec.tweet_error:
            raise ProtocolError(self._rec.tweet_error, status_code=403)
        self._rec.tweets.append((text, list(media_ids)))
        return "tweet-1"

    async def aclose(self):
        pass


class FakeBluesky:
    def __init__(self, recorder):
        self._rec = recorder

    async def login(self, identifier, secret):
        self._rec.bluesky_logins += 1
        return BlueskySession(did="did:plc:me", access_jwt="jwt", refresh_jwt="r", handle=identifier)

    async def upload_blob(self, asset, session, cancel_token=None):
        self._rec.blob_uploads.append(asset.path.name)
        await self._rec.wait_gate(cancel_token)
        if self._rec.blob_error:
            raise ProtocolError(self._rec.blob_error, status_code=500)
        return BlueskyBlob(link=f"blob-{asset.path.name}", mime_type=asset.mime_type, size=asset.byte_size)

    async def post(self, text, handle, session):
        self._rec.records.append(build_post_record(text, handle))
        return "at://did:plc:me/app.bsky.feed.post/1"

    async def aclose(self):
        pass


class FakeOptimizer:
    """Pretends to compress down to the requested limit unless `stuck`."""

    def __init__(self, stuck=False):
        self.limits = []
        self.stuck = stuck

    async def optimize(self, asset, limit_bytes):
        self.limits.append(limit_bytes)
        if self.stuck:
            return asset
        return replace(asset, byte_size=min(asset.byte_size, limit_bytes))


def image(name="photo.jpg", size=2 * MB):
    return MediaAsset(
        path=Path(name), kind=MediaKind.IMAGE, mime_type="image/jpeg",
        byte_size=size, width=3000, height=2000,
    )


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def optimizer():
    return FakeOptimizer()


def make_coordinator(recorder, optimizer, credentials=None, config=None):
    return CrossPostCoordinator(
        MemoryCredentialStore(ALL_CREDENTIALS if credentials is None else credentials),
        twitter_factory=lambda creds: FakeTwitter(recorder),
        bluesky_factory=lambda: FakeBluesky(recorder),
        optimizer=optimizer,
        config=config,
    )


class TestPosting:
    @pytest.mark.asyncio
    async def test_eager_upload_then_post_to_both(self, recorder, optimizer):
        coordinator = make_coordinator(recorder, optimizer)
        await coordinator.load_credentials()
        coordinator.set_text("hello")
        await coordinator.select_media(image())

        outcome = await coordinator.request_post()

        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.message == "Posted to Twitter and Bluesky!"
        assert recorder.tweets == [("hello", ["media-photo.jpg"])]
        assert recorder.twitter_uploads == ["photo.jpg"]
        assert recorder.blob_uploads == ["photo.jpg"]
        assert len(recorder.records) == 1
        embed = recorder.records[0]["embed"]
        assert embed["$type"] == "app.bsky.embed.images"
        assert embed["images"][0]["image"]["ref"] == {"$link": "blob-photo.jpg"}
        assert optimizer.limits == [1_000_000]
        # Composer is cleared after success
        assert coordinator.state.is_empty
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_superseded_upload_never_lands(self, recorder, optimizer):
        recorder.gate = asyncio.Event()
        recorder.honor_cancel = False
        coordinator = make_coordinator(recorder, optimizer)
        coordinator.set_text("second wins")

        first_gen = await coordinator.select_media(image("a.jpg"))
        await asyncio.sleep(0)
        second_gen = await coordinator.select_media(image("b.jpg"))
        await asyncio.sleep(0)
        assert second_gen > first_gen

        recorder.gate.set()
        outcome = await coordinator.request_post()

        assert outcome.success
        assert sorted(recorder.twitter_uploads) == ["a.jpg", "b.jpg"]
        assert recorder.tweets == [("second wins", ["media-b.jpg"])]
        assert recorder.records[0]["embed"]["images"][0]["image"]["ref"] == {"$link": "blob-b.jpg"}
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_new_selection_cancels_running_uploads(self, recorder, optimizer):
        recorder.gate = asyncio.Event()
        coordinator = make_coordinator(recorder, optimizer)
        coordinator.set_text("x")

        first_gen = await coordinator.select_media(image("a.jpg"))
        await asyncio.sleep(0)
        first_attempts = coordinator.session.attempts(first_gen)
        await coordinator.select_media(image("b.jpg"))
        await asyncio.sleep(0.01)

        assert all(a.cancel_token.cancelled for a in first_attempts)
        assert coordinator.state.handles.twitter is None
        recorder.gate.set()
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_long_text_skips_bluesky(self, recorder, optimizer):
        coordinator = make_coordinator(recorder, optimizer)
        await coordinator.load_credentials()
        coordinator.set_text("x" * 305)

        active, reason = coordinator.bluesky_status
        assert not active
        assert reason == "Text exceeds 300 characters"
        assert coordinator.set_bluesky_enabled(True) is False

        outcome = await coordinator.request_post()

        assert outcome.twitter.success
        assert outcome.bluesky.status == ResultStatus.SKIPPED
        assert outcome.bluesky.reason == "Text exceeds 300 characters"
        assert outcome.status == OutcomeStatus.PARTIAL
        assert recorder.records == []
        assert recorder.bluesky_logins == 0
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_publish_ignores_forced_bluesky_toggle(self, recorder, optimizer):
        coordinator = make_coordinator(recorder, optimizer)
        credentials = await coordinator.load_credentials()

        outcome = await coordinator.publish(
            "x" * 305, None, DestinationToggles(twitter=True, bluesky=True), credentials
        )

        assert outcome.bluesky.status == ResultStatus.SKIPPED
        assert recorder.bluesky_logins == 0
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_twitter_failure_skips_bluesky(self, recorder, optimizer):
        recorder.tweet_error = "Forbidden"
        coordinator = make_coordinator(recorder, optimizer)
        coordinator.set_text("hello")

        outcome = await coordinator.request_post()

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.message == "Failed to post tweet: Forbidden"
        assert recorder.records == []
        assert recorder.bluesky_logins == 0
        # Kept for retry
        assert coordinator.state.text == "hello"
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_bluesky_upload_failure_is_partial(self, recorder, optimizer):
        recorder.blob_error = "blob rejected"
        coordinator = make_coordinator(recorder, optimizer)
        coordinator.set_text("hello")
        await coordinator.select_media(image())

        outcome = await coordinator.request_post()

        assert outcome.status == OutcomeStatus.PARTIAL
        assert outcome.bluesky.status == ResultStatus.FAILURE
        assert "blob rejected" in outcome.bluesky.reason
        assert recorder.tweets == [("hello", ["media-photo.jpg"])]
        # Eager attempt plus one inline retry at post time
        assert len(recorder.blob_uploads) == 2
        assert recorder.records == []
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_post_waits_for_running_upload(self, recorder, optimizer):
        recorder.gate = asyncio.Event()
        coordinator = make_coordinator(recorder, optimizer)
        queued = []
        coordinator.events.on("post_queued", queued.append)
        coordinator.set_text("hello")
        generation = await coordinator.select_media(image())

        post = asyncio.create_task(coordinator.request_post())
        await asyncio.sleep(0.01)
        assert queued == [generation]
        assert not post.done()
        assert recorder.tweets == []

        recorder.gate.set()
        outcome = await asyncio.wait_for(post, 1)

        assert outcome.success
        assert recorder.twitter_uploads == ["photo.jpg"]
        assert recorder.tweets == [("hello", ["media-photo.jpg"])]
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_queued_post_discarded_on_new_selection(self, recorder, optimizer):
        recorder.gate = asyncio.Event()
        coordinator = make_coordinator(recorder, optimizer)
        coordinator.set_text("hello")
        await coordinator.select_media(image("a.jpg"))

        post = asyncio.create_task(coordinator.request_post())
        await asyncio.sleep(0.01)
        await coordinator.select_media(image("b.jpg"))

        assert await asyncio.wait_for(post, 1) is None
        assert recorder.tweets == []
        recorder.gate.set()
        await coordinator.close()


class TestComposer:
    @pytest.mark.asyncio
    async def test_empty_content_rejected(self, recorder, optimizer):
        coordinator = make_coordinator(recorder, optimizer)
        coordinator.set_text("   ")
        with pytest.raises(ValidationError):
            await coordinator.request_post()
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_missing_credentials(self, recorder, optimizer):
        coordinator = make_coordinator(recorder, optimizer, credentials={"apiKey": "k"})
        coordinator.set_text("hello")
        with pytest.raises(CredentialError) as exc_info:
            await coordinator.request_post()
        assert "accessSecret" in exc_info.value.missing_keys
        assert recorder.tweets == []
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_video_forces_bluesky_off(self, recorder, optimizer):
        coordinator = make_coordinator(recorder, optimizer)
        coordinator.set_text("clip")
        statuses = []
        coordinator.events.on("bluesky_status", lambda active, reason: statuses.append((active, reason)))
        video = replace(image("clip.mp4"), kind=MediaKind.VIDEO, mime_type="video/mp4")

        await coordinator.select_media(video)
        outcome = await coordinator.request_post()
        await coordinator.events.drain()

        assert recorder.blob_uploads == []
        assert outcome.bluesky.reason == "Bluesky does not support video"
        assert recorder.tweets == [("clip", ["media-clip.mp4"])]
        assert (False, "Bluesky does not support video") in statuses
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_remove_media(self, recorder, optimizer):
        coordinator = make_coordinator(recorder, optimizer)
        coordinator.set_text("hello")
        generation = await coordinator.select_media(image())
        await coordinator.remove_media()

        assert not coordinator.session.is_current(generation)
        assert coordinator.state.asset is None

        outcome = await coordinator.request_post()
        assert recorder.tweets == [("hello", [])]
        assert outcome.success
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_disabled_bluesky_is_quiet(self, recorder, optimizer):
        coordinator = make_coordinator(recorder, optimizer)
        coordinator.set_text("hello")
        await coordinator.load_credentials()
        assert coordinator.set_bluesky_enabled(False) is False

        await coordinator.select_media(image())
        outcome = await coordinator.request_post()

        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.message == "Tweet posted successfully!"
        assert recorder.blob_uploads == []
        assert optimizer.limits == [5 * MB]
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_oversized_video_rejected_before_any_upload(self, recorder):
        config = CrossPostConfig(twitter_video_limit=1024)
        coordinator = make_coordinator(recorder, FakeOptimizer(stuck=True), config=config)
        coordinator.set_text("hi")
        video = MediaAsset(path=Path("big.mp4"), kind=MediaKind.VIDEO, mime_type="video/mp4", byte_size=4096)

        await coordinator.select_media(video)
        with pytest.raises(ValidationError, match="over the 1.00 KB Twitter limit"):
            await coordinator.request_post()

        assert recorder.twitter_uploads == []
        assert recorder.tweets == []
        assert coordinator.state.asset == video
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_image_over_bluesky_limit_skips_bluesky(self, recorder):
        coordinator = make_coordinator(recorder, FakeOptimizer(stuck=True))
        coordinator.set_text("hello")
        await coordinator.select_media(image(size=2 * MB))

        outcome = await coordinator.request_post()

        assert outcome.status == OutcomeStatus.PARTIAL
        assert outcome.bluesky.status == ResultStatus.SKIPPED
        assert outcome.bluesky.reason == "Image is 2.00 MB, over the 976.56 KB Bluesky limit"
        assert recorder.tweets == [("hello", ["media-photo.jpg"])]
        assert recorder.blob_uploads == []
        assert recorder.bluesky_logins == 0
        await coordinator.close()

    def test_text_changes_outside_event_loop(self, recorder, optimizer):
        coordinator = make_coordinator(recorder, optimizer)
        statuses = []
        coordinator.events.on("bluesky_status", lambda active, reason: statuses.append(reason))

        coordinator.set_text("x" * 305)

        assert coordinator.bluesky_status == (False, "Text exceeds 300 characters")
        assert statuses == []

    @pytest.mark.asyncio
    async def test_context_manager_loads_credentials(self, recorder, optimizer):
        async with make_coordinator(recorder, optimizer) as coordinator:
            assert coordinator.credentials.has_twitter
            assert coordinator.credentials.has_bluesky
            assert not coordinator.is_media_uploading
