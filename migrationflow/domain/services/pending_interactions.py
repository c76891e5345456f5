"""Pending user interactions - suspended continuations keyed by correlation id."""

import asyncio
import logging

from migrationflow.domain.entities.workflow_messages import UserInteractionMessage
from migrationflow.domain.errors import InvalidUserResponseError

logger = logging.getLogger(__name__)


class PendingInteractions:
    """Per-workflow table of futures awaiting a human response.

    At most one entry per id. An answer may arrive before wait() is called;
    the entry is removed once its waiter returns. Only the first answer for
    an id counts.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Future[UserInteractionMessage]] = {}

    def __contains__(self, interaction_id: str) -> bool:
        return interaction_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def create(self, interaction_id: str) -> asyncio.Future[UserInteractionMessage]:
        """Park a new interaction. Raises ValueError if the id is already pending."""
        if interaction_id in self._pending:
            raise ValueError(f"Interaction {interaction_id} is already pending")
        future: asyncio.Future[UserInteractionMessage] = asyncio.get_running_loop().create_future()
        self._pending[interaction_id] = future
        return future

    def resolve(self, message: UserInteractionMessage) -> None:
        """Settle the interaction named by message.id."""
        future = self._pending.get(message.id)
        if future is None or future.done():
            logger.debug("No pending interaction for id %s", message.id)
            return
        response = message.data.response
        if response is None or response.is_empty():
            future.set_exception(InvalidUserResponseError("Invalid response from user"))
            return
        future.set_result(message)

    def reject(self, interaction_id: str, reason: str = "Interaction rejected") -> None:
        """Fail the interaction; the waiter sees InvalidUserResponseError."""
        future = self._pending.get(interaction_id)
        if future is None or future.done():
            return
        future.set_exception(InvalidUserResponseError(reason))

    async def wait(self, interaction_id: str) -> UserInteractionMessage:
        """Block until the interaction created under interaction_id settles."""
        future = self._pending.get(interaction_id)
        if future is None:
            raise KeyError(interaction_id)
        try:
            return await future
        finally:
            self._pending.pop(interaction_id, None)
