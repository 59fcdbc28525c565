"""Core orchestrator - one composer session publishing to Twitter and Bluesky."""
import asyncio
import logging
from typing import Callable, Optional, Set, Tuple

from ..errors import ValidationError
from ..models import (
    BlueskyBlob,
    CrossPostConfig,
    Credentials,
    Destination,
    MediaAsset,
    OutcomeStatus,
    PostOutcome,
    TwitterMedia,
    UploadAttempt,
    UploadHandle,
)
from ..protocols import ICredentialStore, ITranscoder
from ..services.bluesky import BlueskyClient
from ..services.credentials import load_credentials, require_twitter
from ..services.optimizer import SizeAwareOptimizer
from ..services.twitter import TwitterClient
from ..use_cases.eager_upload import EagerUploadUseCase
from ..use_cases.publish import (
    BlueskyFactory,
    PublishUseCase,
    TwitterFactory,
    bluesky_block_reason,
    bluesky_size_reason,
    check_media_size,
    twitter_size_error,
)
from ..utils.events import EventEmitter, UploadProgress
from .models import ComposerState, DestinationToggles, PostHandles
from .session import UploadSessionCoordinator

logger = logging.getLogger(__name__)


def default_twitter_factory(config: CrossPostConfig) -> TwitterFactory:
    def build(credentials: Credentials) -> TwitterClient:
        return TwitterClient(
            credentials.api_key,
            credentials.api_secret,
            credentials.access_token,
            credentials.access_secret,
            config=config,
        )
    return build


def default_bluesky_factory(config: CrossPostConfig) -> BlueskyFactory:
    return lambda: BlueskyClient(config=config)


class CrossPostCoordinator:
    """
    Drives one composer: media selection, eager uploads and posting.

    All state changes happen on the event loop. Upload and post results
    carry the generation they were started for and are ignored once a
    newer selection exists.

    Usage:
        async with CrossPostCoordinator(store) as coordinator:
            coordinator.set_text("hello")
            await coordinator.select_media(MediaAsset.from_path("photo.jpg"))
            outcome = await coordinator.request_post()
    """

    def __init__(
        self,
        credential_store: ICredentialStore,
        twitter_factory: Optional[TwitterFactory] = None,
        bluesky_factory: Optional[BlueskyFactory] = None,
        optimizer: Optional[SizeAwareOptimizer] = None,
        config: Optional[CrossPostConfig] = None,
        session: Optional[UploadSessionCoordinator] = None,
        events: Optional[EventEmitter] = None,
        transcoder: Optional[ITranscoder] = None,
    ):
        self._store = credential_store
        self._config = config or CrossPostConfig()
        self._twitter_factory = twitter_factory or default_twitter_factory(self._config)
        self._bluesky_factory = bluesky_factory or default_bluesky_factory(self._config)
        self._events = events or EventEmitter()
        self._optimizer = optimizer or SizeAwareOptimizer(
            self._config, transcoder=transcoder, on_warning=self._on_optimizer_warning
        )
        self._session = session or UploadSessionCoordinator()

        self._eager_upload = EagerUploadUseCase(self._twitter_factory, self._bluesky_factory)
        self._publish = PublishUseCase(self._twitter_factory, self._bluesky_factory, self._config)

        self._state = ComposerState()
        self._credentials: Optional[Credentials] = None
        self._upload_tasks: Set[asyncio.Task] = set()
        self._posting = False
        # Cleared while a selection is being optimized
        self._ready = asyncio.Event()
        self._ready.set()

    async def __aenter__(self):
        await self.load_credentials()
        return self

    async def __aexit__(self, *args):
        await self.close()

    @property
    def events(self) -> EventEmitter:
        return self._events

    @property
    def session(self) -> UploadSessionCoordinator:
        return self._session

    @property
    def state(self) -> ComposerState:
        return self._state

    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    @property
    def is_media_uploading(self) -> bool:
        return self._session.has_in_flight(self._session.current_generation)

    @property
    def bluesky_status(self) -> Tuple[bool, Optional[str]]:
        """(active, reason it is forced off)"""
        reason = bluesky_block_reason(self._state.text, self._state.asset, self._config)
        return self._state.bluesky_enabled and reason is None, reason

    async def load_credentials(self) -> Credentials:
        self._credentials = await load_credentials(self._store)
        return self._credentials

    def set_text(self, text: str) -> None:
        before = self.bluesky_status
        self._state.text = text
        self._notify_bluesky(before)

    def set_bluesky_enabled(self, enabled: bool) -> bool:
        """
        Toggle Bluesky. Enabling is refused while the content is ineligible.

        Returns:
            Whether Bluesky is now active
        """
        before = self.bluesky_status
        _, reason = before
        if enabled and reason:
            logger.info("Bluesky cannot be enabled: %s", reason)
            return False
        self._state.bluesky_enabled = enabled
        self._notify_bluesky(before)
        return self.bluesky_status[0]

    async def select_media(self, asset: MediaAsset) -> int:
        """
        Replace the current media and start uploading it right away.

        Returns:
            The generation started for this selection
        """
        self._session.cancel_all()
        generation = self._session.begin_attempt()
        self._ready.clear()

        before = self.bluesky_status
        self._state.asset = asset
        self._state.handles = PostHandles()
        self._notify_bluesky(before)

        try:
            if self._credentials is None:
                await self.load_credentials()

            limit = self._config.byte_limit_for(asset, bluesky=self._wants_bluesky())
            optimized = await self._optimizer.optimize(asset, limit)

            if not self._session.is_current(generation):
                logger.debug("Selection %d superseded while optimizing", generation)
                return generation

            self._state.asset = optimized
            self._launch_eager_uploads(generation, optimized)
            return generation
        finally:
            if self._session.is_current(generation):
                self._ready.set()

    async def remove_media(self) -> None:
        """Drop the current media and everything uploading for it."""
        self._invalidate()
        before = self.bluesky_status
        self._state.asset = None
        self._state.handles = PostHandles()
        self._notify_bluesky(before)

    async def request_post(self) -> Optional[PostOutcome]:
        """
        Publish the composer content.

        Waits for current uploads when they are still running. Returns None
        when a newer media selection superseded the request while it waited.

        Raises:
            ValidationError: nothing to post, media over the Twitter limit,
                or a post is already running
            CredentialError: Twitter credentials are missing
        """
        await self._validate()
        generation = self._session.current_generation
        await self._ready.wait()

        if self._session.has_in_flight(generation):
            logger.info("Media still uploading, post request queued")
            await self._events.emit("post_queued", generation)
            await self._session.wait_settled(generation)

        if not self._session.is_current(generation):
            logger.info("Queued post request discarded: media selection changed")
            return None

        # The composer may have changed while the request was queued
        await self._validate()
        check_media_size(self._state.asset, self._config)
        self._posting = True
        try:
            toggles = DestinationToggles(bluesky=self._state.bluesky_enabled)
            outcome = await self.publish(
                self._state.text,
                self._state.asset,
                toggles,
                self._credentials,
                handles=self._state.handles,
                generation=generation,
            )
        finally:
            self._posting = False

        if not self._session.is_current(generation):
            logger.info("Post finished for superseded generation %d", generation)
            return outcome

        if outcome.status == OutcomeStatus.FAILED:
            logger.warning("Post failed, composer kept for retry: %s", outcome.message)
        else:
            logger.info(outcome.message)
            self._reset()
        await self._events.emit("posted", outcome)
        return outcome

    async def publish(
        self,
        text: str,
        asset: Optional[MediaAsset],
        toggles: DestinationToggles,
        credentials: Credentials,
        handles: Optional[PostHandles] = None,
        generation: Optional[int] = None,
    ) -> PostOutcome:
        """Post to Twitter then Bluesky, uploading inline what has no handle yet."""
        if generation is None:
            generation = self._session.current_generation
        return await self._publish.execute(
            self._session,
            generation,
            text,
            asset,
            toggles,
            credentials,
            handles if handles is not None else PostHandles(),
        )

    async def close(self) -> None:
        """Cancel everything in flight and wait for the upload tasks to stop."""
        self._invalidate()
        tasks = list(self._upload_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._events.drain()

    async def _validate(self) -> None:
        if self._state.is_empty:
            raise ValidationError("Please enter some text or add media.")
        if self._posting:
            raise ValidationError("A post is already in progress.")
        if self._credentials is None:
            await self.load_credentials()
        require_twitter(self._credentials)

    def _wants_bluesky(self) -> bool:
        return bool(self._credentials and self._credentials.has_bluesky and self.bluesky_status[0])

    def _launch_eager_uploads(self, generation: int, asset: MediaAsset) -> None:
        credentials = self._credentials
        destinations = []
        if credentials.has_twitter:
            too_large = twitter_size_error(asset, self._config)
            if too_large:
                logger.warning("Not uploading to Twitter: %s", too_large)
            else:
                destinations.append(Destination.TWITTER)
        if self._wants_bluesky():
            too_large = bluesky_size_reason(asset, self._config)
            if too_large:
                logger.warning("Not uploading to Bluesky: %s", too_large)
            else:
                destinations.append(Destination.BLUESKY)

        for destination in destinations:
            attempt = self._session.start_attempt(generation, destination)
            task = asyncio.create_task(
                self._eager_upload.execute(
                    self._session,
                    attempt,
                    asset,
                    credentials,
                    on_handle=self._store_handle,
                    on_failure=self._report_failure,
                    progress_for=self._progress_reporter,
                )
            )
            self._upload_tasks.add(task)
            task.add_done_callback(self._upload_tasks.discard)
            self._events.emit_nowait("upload_start", destination, generation)

    def _store_handle(self, attempt: UploadAttempt, handle: UploadHandle) -> None:
        if isinstance(handle, TwitterMedia):
            self._state.handles.twitter = handle
        elif isinstance(handle, BlueskyBlob):
            self._state.handles.bluesky = handle
        self._events.emit_nowait("upload_complete", attempt.destination, handle)

    def _report_failure(self, attempt: UploadAttempt, error: str) -> None:
        self._events.emit_nowait("upload_failed", attempt.destination, error)

    def _progress_reporter(self, attempt: UploadAttempt) -> Callable[[float], None]:
        def report(fraction: float) -> None:
            if self._session.is_current(attempt.generation):
                self._events.emit_nowait(
                    "upload_progress",
                    UploadProgress(attempt.destination, attempt.generation, fraction),
                )
        return report

    def _on_optimizer_warning(self, message: str) -> None:
        self._events.emit_nowait("warning", message)

    def _notify_bluesky(self, before: Tuple[bool, Optional[str]]) -> None:
        after = self.bluesky_status
        if after == before:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, bluesky_status %s not emitted", after)
            return
        self._events.emit_nowait("bluesky_status", *after)

    def _invalidate(self) -> None:
        self._session.cancel_all()
        self._session.begin_attempt()
        self._ready.set()

    def _reset(self) -> None:
        """Clear the composer after a successful post."""
        self._invalidate()
        before = self.bluesky_status
        self._state.text = ""
        self._state.asset = None
        self._state.handles = PostHandles()
        self._notify_bluesky(before)
