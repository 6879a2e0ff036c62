"""Per-user render event broker.

Pub/sub for job lifecycle events. Each user has a channel (``user-<id>``);
every subscriber gets its own queue, so events reach a subscriber in the
order they were published. The broker is created by the application and
injected where it is needed.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

EVENT_START = "video-processing-start"
EVENT_PROGRESS = "video-processing-progress"
EVENT_COMPLETE = "video-processing-complete"
EVENT_ERROR = "video-processing-error"


def user_channel(user_id: str) -> str:
    return f"user-{user_id}"


@dataclass
class RenderEvent:
    """A job lifecycle event delivered to a user channel."""

    event: str
    channel: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "event": self.event,
            "channel": self.channel,
            "timestamp": self.timestamp,
            "data": self.data,
        }


class RenderEventBroker:
    """Manages channel subscriptions and event publishing."""

    def __init__(self, max_queue_size: int = 1000) -> None:
        # Map channel -> set of asyncio.Queue for each subscriber
        self._subscribers: dict[str, set[asyncio.Queue[RenderEvent]]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._max_queue_size = max_queue_size

    async def register(self, channel: str) -> asyncio.Queue[RenderEvent]:
        """Register a subscriber queue; events published afterwards land in it."""
        queue: asyncio.Queue[RenderEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._subscribers[channel].add(queue)
            logger.info(
                f"[EVENTS] New subscriber for {channel}. "
                f"Total: {len(self._subscribers[channel])}"
            )
        return queue

    async def unregister(self, channel: str, queue: asyncio.Queue[RenderEvent]) -> None:
        async with self._lock:
            subscribers = self._subscribers.get(channel)
            if subscribers is None:
                return
            subscribers.discard(queue)
            logger.info(f"[EVENTS] Subscriber removed for {channel}. Remaining: {len(subscribers)}")
            if not subscribers:
                del self._subscribers[channel]

    async def subscribe(self, channel: str) -> AsyncGenerator[RenderEvent, None]:
        """Subscribe to events on a channel.

        Yields:
            RenderEvent objects as they are published
        """
        queue = await self.register(channel)
        try:
            while True:
                yield await queue.get()
        finally:
            await self.unregister(channel, queue)

    async def publish(self, channel: str, event: str, data: dict[str, Any] | None = None) -> int:
        """Publish an event to all subscribers of a channel.

        Returns:
            Number of subscribers notified
        """
        message = RenderEvent(event=event, channel=channel, data=data or {})

        async with self._lock:
            subscribers = self._subscribers.get(channel, set()).copy()

        if not subscribers:
            logger.debug(f"[EVENTS] No subscribers for {channel} ({event})")
            return 0

        notified = 0
        for queue in subscribers:
            try:
                queue.put_nowait(message)
                notified += 1
            except asyncio.QueueFull:
                logger.warning(f"[EVENTS] Queue full for subscriber of {channel}, dropping {event}")

        logger.debug(f"[EVENTS] Published {event} to {notified} subscribers of {channel}")
        return notified

    def get_subscriber_count(self, channel: str) -> int:
        """Get the number of active subscribers for a channel."""
        return len(self._subscribers.get(channel, set()))


# =============================================================================
# Event payloads
# =============================================================================


def create_start_payload(
    job_id: str,
    estimated_time: int,
    aspect_ratio: str | None,
    resolution: dict[str, int],
    message: str = "Video processing started",
) -> dict[str, Any]:
    return {
        "job_id": job_id,
        "message": message,
        "estimated_time": estimated_time,
        "aspect_ratio": aspect_ratio,
        "resolution": resolution,
    }


def create_progress_payload(
    job_id: str,
    progress: int,
    stage: str,
    frame: int | None = None,
    total_frames: int | None = None,
    encoding_progress: float | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"job_id": job_id, "progress": progress, "stage": stage}
    if frame is not None:
        payload["frame"] = frame
    if total_frames is not None:
        payload["total_frames"] = total_frames
    if encoding_progress is not None:
        payload["encoding_progress"] = round(encoding_progress, 1)
    return payload


def create_complete_payload(
    job_id: str,
    video_url: str,
    download_url: str,
    degraded: bool = False,
    message: str = "Video created successfully!",
) -> dict[str, Any]:
    return {
        "job_id": job_id,
        "message": message,
        "video_url": video_url,
        "download_url": download_url,
        "degraded": degraded,
    }


def create_error_payload(
    job_id: str,
    error: str,
    message: str = "Video processing failed",
) -> dict[str, Any]:
    return {"job_id": job_id, "message": message, "error": error}
