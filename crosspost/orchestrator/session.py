"""
Upload session tracking: generations and cancellation.

Every media selection starts a new generation. Async work captures the
generation it was launched for and checks ``is_current`` before applying
its result; results of superseded generations are dropped.
"""
import asyncio
import logging
from typing import Awaitable, Dict, List, Optional, Set, Tuple, TypeVar

from ..errors import UploadCanceled
from ..models import Destination, UploadAttempt, UploadState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """
    Cooperative cancellation signal passed into every network call.

    Awaitables run through ``guard`` are cancelled as soon as the token
    fires and raise UploadCanceled instead of asyncio.CancelledError.
    """

    def __init__(self, generation: int = 0):
        self.generation = generation
        self._cancelled = False
        self._tasks: Set[asyncio.Future] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise UploadCanceled(f"Upload for generation {self.generation} was cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``, aborting it when the token fires."""
        if self._cancelled and asyncio.iscoroutine(awaitable):
            awaitable.close()
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self._cancelled:
                raise UploadCanceled(
                    f"Upload for generation {self.generation} was cancelled"
                ) from None
            raise
        finally:
            self._tasks.discard(task)


class UploadSessionCoordinator:
    """
    Owns the generation counter and the cancelable handles of in-flight work.

    Only accessed from the event loop, so no locking is needed.
    """

    def __init__(self):
        self._generation = 0
        self._tokens: Set[CancelToken] = set()
        self._attempts: Dict[Tuple[int, Destination], UploadAttempt] = {}
        self._settled = asyncio.Event()
        self._settled.set()

    @property
    def current_generation(self) -> int:
        return self._generation

    def begin_attempt(self) -> int:
        """Start a new generation; everything older becomes stale."""
        self._generation += 1
        # Attempts of older generations can no longer be waited on
        self._attempts = {
            key: attempt for key, attempt in self._attempts.items()
            if key[0] == self._generation
        }
        self._wake_waiters()
        logger.debug("Began upload generation %d", self._generation)
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def track_cancelable(self, token: CancelToken) -> CancelToken:
        self._tokens.add(token)
        return token

    def release_cancelable(self, token: CancelToken) -> None:
        self._tokens.discard(token)

    def new_token(self, generation: Optional[int] = None) -> CancelToken:
        """Create a token for ``generation`` (default: current) and track it."""
        if generation is None:
            generation = self._generation
        return self.track_cancelable(CancelToken(generation))

    def cancel_all(self) -> None:
        """Signal every tracked token, then forget them."""
        if not self._tokens:
            return
        logger.debug("Cancelling %d in-flight operation(s)", len(self._tokens))
        tokens = list(self._tokens)
        self._tokens.clear()
        for token in tokens:
            token.cancel()

    def start_attempt(self, generation: int, destination: Destination) -> UploadAttempt:
        """
        Register an upload for (generation, destination) and mark it uploading.

        Raises:
            RuntimeError: an upload for the same pair is already running
        """
        key = (generation, destination)
        existing = self._attempts.get(key)
        if existing is not None and existing.state == UploadState.UPLOADING:
            raise RuntimeError(
                f"{destination.value} upload already running for generation {generation}"
            )
        attempt = UploadAttempt(
            generation=generation,
            destination=destination,
            cancel_token=self.new_token(generation),
        )
        attempt.mark_uploading()
        self._attempts[key] = attempt
        self._settled.clear()
        return attempt

    def finish_attempt(self, attempt: UploadAttempt) -> None:
        """Stop tracking the token of a settled attempt and wake waiters."""
        self.release_cancelable(attempt.cancel_token)
        # Waiters re-check their own generation
        self._wake_waiters()

    def attempts(self, generation: Optional[int] = None) -> List[UploadAttempt]:
        if generation is None:
            generation = self._generation
        return [a for key, a in self._attempts.items() if key[0] == generation]

    def has_in_flight(self, generation: Optional[int] = None) -> bool:
        """True while any tracked attempt (optionally of ``generation``) is uploading."""
        for (gen, _), attempt in self._attempts.items():
            if generation is not None and gen != generation:
                continue
            if attempt.state == UploadState.UPLOADING:
                return True
        return False

    async def wait_settled(self, generation: int) -> bool:
        """
        Wait until no upload of ``generation`` is running.

        Returns:
            True when the generation settled while still current,
            False when a newer generation superseded it first.
        """
        while self.is_current(generation) and self.has_in_flight(generation):
            self._settled.clear()
            await self._settled.wait()
        return self.is_current(generation)

    def _wake_waiters(self) -> None:
        self._settled.set()
