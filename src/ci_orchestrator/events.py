"""
Pipeline Event Sink

Delivers orchestrator lifecycle events to an HTTP ingest endpoint.
Delivery is best effort: a failed post is logged and dropped, and never
affects the pipeline verdict. publish() queues an event for a background
worker so a slow endpoint never holds up a job; events are posted one at
a time in the order they were published.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class EventSink:
    """Posts events to {base_url}/events/ingest"""

    def __init__(
        self,
        base_url: str,
        service: str = "ci-orchestrator",
        timeout_ms: int = 5000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service = service
        self.timeout_ms = timeout_ms
        self._transport = transport
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    async def emit(
        self,
        event: str,
        status: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """Send one event. Returns the event id, or None if delivery failed."""
        event_id = str(uuid.uuid4())
        payload = {
            "service": self.service,
            "event": event,
            "status": status,
            "rid": event_id,
            "emitted_at": datetime.now().isoformat(),
            "metadata": metadata or {},
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_ms / 1000,
                transport=self._transport,
            ) as client:
                response = await client.post(f"{self.base_url}/events/ingest", json=payload)
                if response.status_code == 200:
                    logger.debug(f"Event emitted: {event}")
                    return event_id
                logger.warning(f"Event {event} rejected: {response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Event {event} delivery error: {e}")

        return None

    def publish(
        self,
        event: str,
        status: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Queue an event for background delivery. Must be called on the event loop."""
        # A worker left over from a finished event loop is replaced
        if self._queue is None or self._worker is None or self._worker.done():
            self._queue = asyncio.Queue()
            self._worker = asyncio.create_task(self._deliver(self._queue))
        self._queue.put_nowait((event, status, metadata))

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def _deliver(self, queue: asyncio.Queue) -> None:
        while True:
            event, status, metadata = await queue.get()
            try:
                await self.emit(event, status, metadata)
            except Exception as e:
                logger.error(f"Event {event} dropped: {e}")
            finally:
                queue.task_done()

    async def flush(self) -> None:
        """Wait until every published event has been posted or dropped"""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Flush, then stop the delivery worker"""
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._queue = None
        self._worker = None
