"""
Update Dispatcher - per-user mailboxes for inbound Telegram updates

The webhook acknowledges Telegram immediately and hands the update over
here. Updates sharing a key (the Telegram user id) are processed strictly
one at a time in arrival order; different keys run concurrently. A key's
worker task exists only while its mailbox has work, so idle users cost
nothing.
"""
import asyncio
from typing import Any, Awaitable, Callable, Hashable

from app.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

UpdateHandler = Callable[[Any], Awaitable[None]]


class DispatcherClosedError(RuntimeError):
    """submit() after shutdown() started"""


class UpdateDispatcher:
    def __init__(self, handler: UpdateHandler):
        self._handler = handler
        self._mailboxes: dict[Hashable, asyncio.Queue] = {}
        self._workers: dict[Hashable, asyncio.Task] = {}
        self._closed = False

    @property
    def active_keys(self) -> int:
        return len(self._workers)

    @property
    def pending(self) -> int:
        """Queued updates not yet picked up by a worker"""
        return sum(queue.qsize() for queue in self._mailboxes.values())

    def submit(self, key: Hashable, payload: Any) -> None:
        """Enqueue without waiting; must be called from the running event loop"""
        if self._closed:
            raise DispatcherClosedError("Update dispatcher is shut down")

        mailbox = self._mailboxes.get(key)
        if mailbox is None:
            mailbox = asyncio.Queue()
            self._mailboxes[key] = mailbox
            self._workers[key] = asyncio.create_task(
                self._drain(key, mailbox),
                name=f"update-mailbox-{key}",
            )
        mailbox.put_nowait((get_correlation_id(), payload))

    async def _drain(self, key: Hashable, mailbox: asyncio.Queue) -> None:
        try:
            while True:
                try:
                    correlation_id, payload = mailbox.get_nowait()
                except asyncio.QueueEmpty:
                    break

                set_correlation_id(correlation_id)
                try:
                    await self._handler(payload)
                except Exception as e:
                    logger.error(
                        "Update handler failed",
                        extra_data={"key": str(key), "error": str(e), "error_type": type(e).__name__},
                        exc_info=True,
                    )
                finally:
                    mailbox.task_done()
        finally:
            # no await between the empty check and here, so no submit can slip in
            if self._mailboxes.get(key) is mailbox:
                del self._mailboxes[key]
                del self._workers[key]

    async def join(self) -> None:
        """Wait until every mailbox, including ones opened meanwhile, is empty"""
        while self._workers:
            await asyncio.wait(list(self._workers.values()))

    async def shutdown(self, timeout_seconds: float = 10.0) -> None:
        """Stop accepting updates, drain what is queued, cancel what is left after the timeout"""
        self._closed = True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        while self._workers and loop.time() < deadline:
            await asyncio.wait(list(self._workers.values()), timeout=deadline - loop.time())

        if self._workers:
            remaining = list(self._workers.values())
            logger.warning(
                "Update dispatcher drain timed out, cancelling workers",
                extra_data={"workers": len(remaining), "pending": self.pending},
            )
            for task in remaining:
                task.cancel()
            await asyncio.gather(*remaining, return_exceptions=True)
        logger.info("Update dispatcher stopped")
