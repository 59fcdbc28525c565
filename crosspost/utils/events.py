from dataclasses import dataclass
from typing import Callable, Dict, List, Set
import asyncio
import logging

from crosspost.models import Destination

logger = logging.getLogger(__name__)


@dataclass
class UploadProgress:
    """Progress information for one destination upload."""
    destination: Destination
    generation: int
    fraction: float = 0.0

    @property
    def percent(self) -> float:
        return self.fraction * 100


class EventEmitter:
    """Simple event emitter for composer events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners."""
        if event_name not in self._listeners:
            return

        async with self._lock:
            for callback in self._listeners[event_name][:]:  # Copy list to avoid modification during iteration
                try:
                    if asyncio.iscoroutinefunction(callback):
                        await callback(*args, **kwargs)
                    else:
                        callback(*args, **kwargs)
                except Exception as e:
                    logger.error(f"Error in event listener for {event_name}: {e}")

    def emit_nowait(self, event_name: str, *args, **kwargs):
        """Schedule an emit from synchronous code running on the loop."""
        if event_name not in self._listeners:
            return
        task = asyncio.get_running_loop().create_task(self.emit(event_name, *args, **kwargs))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self):
        """Wait for scheduled emits to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
