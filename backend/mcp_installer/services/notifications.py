"""
Refresh notifications

Tells the external tool-discovery process that registry-backed tool
configuration changed. Delivery is best effort: failures are logged and never
reach the install/uninstall caller.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from mcp_installer.services.cache import RedisConnection

logger = logging.getLogger(__name__)

REFRESH_NOTIFICATION_NAME = "mcp.registry.shouldRefreshToolConfiguration"


class RedisRefreshBroadcaster:
    """Publishes refresh notifications on a redis channel."""

    def __init__(self, connection: RedisConnection, channel: str):
        self._connection = connection
        self._channel = channel

    async def post_notification(self, name: str) -> None:
        redis_client = await self._connection.get_client()
        if not redis_client:
            logger.debug(f"Redis unavailable, dropping notification '{name}'")
            return

        receivers = await redis_client.publish(self._channel, name)
        logger.debug(f"Posted '{name}' on {self._channel} to {receivers} subscriber(s)")


class RefreshNotifier:
    """
    Sends refresh notifications either immediately or coalesced.

    ``notify_now()`` follows a write made by this process. ``request_refresh()``
    is for externally triggered refreshes: requests are queued, and after the
    first one the worker waits ``window`` seconds, drains everything that
    arrived meanwhile and sends a single notification.
    """

    def __init__(
        self,
        post: Callable[[str], Awaitable[None]],
        window: float = 1.0,
        name: str = REFRESH_NOTIFICATION_NAME,
    ):
        self._post = post
        self._window = window
        self._name = name
        self._queue: "asyncio.Queue[None]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self.sent_count = 0

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the coalescing worker and wait for in-flight sends."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.wait_idle()

    def notify_now(self) -> None:
        """Fire-and-forget notification."""
        task = asyncio.create_task(self._send())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    def request_refresh(self) -> None:
        """Queue a coalesced notification."""
        self._queue.put_nowait(None)
        self.start()

    async def wait_idle(self) -> None:
        """Wait until every notification sent so far has been delivered or has failed."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            await self._queue.get()
            await asyncio.sleep(self._window)

            coalesced = 1
            while not self._queue.empty():
                self._queue.get_nowait()
                coalesced += 1
            logger.debug(f"Coalesced {coalesced} refresh request(s) into one notification")

            await self._send()

    async def _send(self) -> None:
        try:
            await self._post(self._name)
            self.sent_count += 1
        except Exception as e:
            logger.error(f"Failed to post refresh notification: {e}")
