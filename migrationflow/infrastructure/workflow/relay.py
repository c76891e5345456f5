"""Message relay - fans workflow messages out to whoever is listening."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from migrationflow.domain.entities.workflow_messages import MessageSink, WorkflowMessage

logger = logging.getLogger(__name__)


class MessageRelay:
    """Sink for nodes and tools, source for callers.

    publish() is the MessageSink handed to every node. A failing listener
    is logged and skipped so one bad subscriber cannot stall the workflow.
    """

    def __init__(self) -> None:
        self._listeners: list[MessageSink] = []

    def subscribe(self, listener: MessageSink) -> Callable[[], None]:
        """Register listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, message: WorkflowMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:  # noqa: BLE001
                logger.exception("Workflow message listener failed on %s", message.id)

    async def stream(self, run: Awaitable[object]) -> AsyncIterator[WorkflowMessage]:
        """Yield messages published while run executes, then re-raise its error if any."""
        queue: asyncio.Queue[WorkflowMessage | None] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)

        async def drive() -> None:
            try:
                await run
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(drive())
        try:
            while True:
                message = await queue.get()
                if message is None:
                    break
                yield message
            await task
        finally:
            unsubscribe()
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
