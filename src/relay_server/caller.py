"""
Resilient upstream calls: one conversation turn with exponential backoff.

Retry schedule: the nth retry (n >= 1) waits ``initial_delay * 2 ** (n - 1)``
seconds.  No jitter and no cap.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from .errors import ConversationBusyError, UpstreamError
from .memory import Conversation, Message
from .protocol import DEFAULT_WIRE_ROLES, encode, extract_generated_text

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def backoff_delay(initial_delay: float, retry_number: int) -> float:
    """
    Return the wait in seconds before the given retry.

    Args:
        initial_delay: Wait before the first retry.
        retry_number: 1-based retry number.
    """
    if retry_number < 1:
        raise ValueError(f"retry_number must be >= 1, got {retry_number}")
    return initial_delay * 2 ** (retry_number - 1)


class ResilientCaller:
    """
    Drives one conversation turn against the upstream client.

    ``client`` is anything with an async ``generate_content(contents)`` that
    returns the decoded response body and raises :class:`UpstreamError` on
    failure (see :class:`upstream.GenerativeClient`).
    """

    def __init__(
        self,
        client: Any,
        *,
        max_retries: int = 3,
        initial_delay: float = 2.0,
        fallback_text: str = "No content generated",
        roles: Mapping[str, str] = DEFAULT_WIRE_ROLES,
        reject_when_busy: bool = False,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.fallback_text = fallback_text
        self.roles = dict(roles)
        self.reject_when_busy = reject_when_busy
        self._sleep = sleep

    async def call(
        self,
        conversation: Conversation,
        prompt: str,
        max_retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
    ) -> Tuple[Message, ...]:
        """
        Append ``prompt``, get a reply, append the reply, return the snapshot.

        The prompt is appended exactly once, before the first attempt; retries
        resend the conversation without appending it again.  The whole turn
        holds the conversation lock, so concurrent turns queue behind it (or
        are rejected when ``reject_when_busy`` is set).

        Raises:
            InvalidInputError: ``prompt`` is empty.
            ConversationBusyError: another turn is in flight and rejection is on.
            UpstreamError: the last attempt failed and no retries remain.
        """
        retries = self.max_retries if max_retries is None else max_retries
        delay = self.initial_delay if initial_delay is None else initial_delay

        if self.reject_when_busy and conversation.busy:
            raise ConversationBusyError()

        async with conversation.lock:
            conversation.log.append(prompt)
            reply = await self._attempt_until_done(conversation, retries, delay)
            conversation.log.append(reply)
            return conversation.snapshot()

    async def _attempt_until_done(
        self, conversation: Conversation, retries: int, delay: float
    ) -> str:
        attempt = 0
        while True:
            attempt += 1
            contents = encode(conversation.snapshot(), self.roles)
            try:
                data: Dict[str, Any] = await self.client.generate_content(contents)
            except UpstreamError as exc:
                if retries <= 0:
                    logger.error("Upstream call failed after %d attempt(s): %s", attempt, exc)
                    raise
                logger.warning(
                    "Attempt %d failed [%s]: %s. Retrying in %.2fs, attempts left: %d",
                    attempt, exc.kind.value, exc, delay, retries,
                )
                await self._sleep(delay)
                retries -= 1
                delay *= 2
                continue

            return extract_generated_text(data, self.fallback_text)
