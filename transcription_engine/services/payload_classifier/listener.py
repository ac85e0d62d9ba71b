from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol

from transcription_engine.services.logger import ModuleLogger
from transcription_engine.services.payload_classifier.classifier import (
    ClassifiedText,
    RawSideChannelMessage,
    classify_message,
)
from transcription_engine.utils import cancel_task, invoke_callback

if TYPE_CHECKING:
    from transcription_engine.services.manager import BaseAsyncLoggingService

MessageCallback = Callable[[RawSideChannelMessage], Any]
TextFilter = Callable[[ClassifiedText], Awaitable[bool]]
TextHandler = Callable[[ClassifiedText], Awaitable[Any]]

# -------------------------------------------------------------- #
# Transport
# -------------------------------------------------------------- #


class SideChannelTransport(Protocol):
    """Anything that can deliver side-channel messages to listeners."""

    def add_listener(self, callback: MessageCallback) -> None: ...

    def remove_listener(self, callback: MessageCallback) -> None: ...


class InMemorySideChannel:
    """
    In-process side-channel transport.

    ``publish`` delivers a message to every listener in registration order.
    Used by the demo runner and by tests in place of a real data channel.
    """

    def __init__(self):
        self._listeners: list[MessageCallback] = []
        self._sequence = 0

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, callback: MessageCallback) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: MessageCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def publish(self, sender_id: Any, payload: str | bytes | dict) -> RawSideChannelMessage:
        message = RawSideChannelMessage(
            sender_id=sender_id, payload=payload, sequence=self._sequence
        )
        self._sequence += 1

        for callback in list(self._listeners):
            await invoke_callback(callback, message)
        return message


# -------------------------------------------------------------- #
# Side Channel Listener
# -------------------------------------------------------------- #


class SideChannelListener:
    """
    Classifies incoming side-channel messages and dispatches the speech.

    Accepted text runs through registered handlers with filters. By default
    a handler passes through, letting later handlers see the same text; a
    handler registered with ``pass_through=False`` (or returning False)
    stops propagation.
    """

    def __init__(
        self,
        transport: SideChannelTransport,
        logging_service: BaseAsyncLoggingService | None = None,
        watchdog_seconds: float | None = 10.0,
    ):
        self.transport = transport
        self.logger = logging_service or ModuleLogger(__name__)
        self.watchdog_seconds = watchdog_seconds

        self.handlers: list[dict] = []

        self.received = 0
        self.accepted = 0
        self.rejected = 0

        self._attached = False
        self._watchdog_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Handler Registry
    # -------------------------------------------------------------- #

    def register_handler(
        self, filter_func: TextFilter, handler_func: TextHandler, pass_through: bool = True
    ) -> None:
        """Register a handler for accepted text.

        Args:
            filter_func: Async function that takes the ClassifiedText and returns bool
                        (True if handler should process it)
            handler_func: Async function that processes the ClassifiedText
            pass_through: If True, continue to next handler after this one.
                         If False, stop propagation after this handler.
        """
        self.handlers.append(
            {"filter": filter_func, "handler": handler_func, "pass_through": pass_through}
        )

    async def dispatch(self, classified: ClassifiedText) -> None:
        for handler_info in self.handlers:
            try:
                if await handler_info["filter"](classified):
                    result = await handler_info["handler"](classified)

                    if not handler_info["pass_through"] or result is False:
                        break
            except Exception as e:
                # Log error but continue to next handler
                await self.logger.error(
                    f"Error in side-channel handler for {classified.speaker_id}: {e}"
                )

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    @property
    def is_attached(self) -> bool:
        return self._attached

    async def attach(self) -> None:
        if self._attached:
            return
        self.transport.add_listener(self.on_message)
        self._attached = True

        if self.watchdog_seconds:
            self._watchdog_task = asyncio.create_task(self._watchdog())
        await self.logger.info("Side-channel listener attached")

    async def detach(self) -> None:
        if not self._attached:
            return
        self.transport.remove_listener(self.on_message)
        self._attached = False

        await cancel_task(self._watchdog_task)
        self._watchdog_task = None
        await self.logger.info(
            f"Side-channel listener detached (received: {self.received}, "
            f"accepted: {self.accepted}, rejected: {self.rejected})"
        )

    async def _watchdog(self) -> None:
        await asyncio.sleep(self.watchdog_seconds)
        if self.received == 0:
            await self.logger.warning(
                f"No side-channel messages received after {self.watchdog_seconds}s; "
                "server-side transcription may not be enabled for this channel"
            )

    # -------------------------------------------------------------- #
    # Message Handling
    # -------------------------------------------------------------- #

    async def on_message(self, message: RawSideChannelMessage) -> ClassifiedText | None:
        """Transport callback. Never raises back into the transport."""
        self.received += 1

        try:
            classified = classify_message(message)
        except Exception as e:
            self.rejected += 1
            await self.logger.error(
                f"Failed to classify side-channel message #{message.sequence} "
                f"from {message.sender_id}: {e}"
            )
            return None

        if classified is None:
            self.rejected += 1
            return None

        self.accepted += 1
        await self.logger.debug(
            f"Side-channel transcription from {classified.speaker_id} "
            f"({'final' if classified.is_final else 'interim'}): {classified.text[:50]}"
        )
        await self.dispatch(classified)
        return classified

    def get_stats(self) -> dict:
        return {
            "attached": self._attached,
            "received": self.received,
            "accepted": self.accepted,
            "rejected": self.rejected,
        }
