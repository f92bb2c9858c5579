"""
Stream drain - Collect the final agent message from a UI message stream

The agent runtime reports its assembled response through an on_finish
callback, while the stream itself must still be read to the end or the
underlying generation is never released. The collector does both
concurrently and only returns once the callback fired and the stream is
exhausted.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from agent_bridge.errors import StreamDrainError
from agent_bridge.models.conversation import Message
from agent_bridge.stores.protocols import UIMessageStream

logger = logging.getLogger(__name__)

StreamFactory = Callable[[Callable[[Message], None]], UIMessageStream]


class StreamCollector:
    """Drains agent streams with an overall time bound"""

    def __init__(self, timeout_seconds: Optional[float] = 120.0, finish_grace_seconds: float = 1.0):
        # None or 0 waits forever
        self.timeout_seconds = timeout_seconds or None
        # How long on_finish may lag behind the end of the stream
        self.finish_grace_seconds = finish_grace_seconds

    async def collect(self, open_stream: StreamFactory) -> Message:
        """
        Open a stream and wait for its final message

        Args:
            open_stream: Called with the on_finish callback, returns the stream

        Returns:
            The final assistant message passed to on_finish

        Raises:
            StreamDrainError: the stream failed, ended without a final
                message, or did not finish in time
        """
        loop = asyncio.get_running_loop()
        finished: asyncio.Future = loop.create_future()

        def on_finish(response_message: Message):
            if not finished.done():
                finished.set_result(response_message)

        stream = open_stream(on_finish)

        try:
            return await asyncio.wait_for(
                self._wait(stream, finished),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Agent stream did not finish within %ss", self.timeout_seconds)
            await self._release(stream)
            raise StreamDrainError(
                f"Agent stream did not finish within {self.timeout_seconds}s"
            ) from e

    async def _wait(self, stream: UIMessageStream, finished: asyncio.Future) -> Message:
        drain_task = asyncio.create_task(self._drain(stream, finished))
        try:
            response_message = await finished
            await drain_task
            return response_message
        finally:
            if not drain_task.done():
                drain_task.cancel()
                await asyncio.gather(drain_task, return_exceptions=True)
            elif not drain_task.cancelled():
                # Retrieve the error already surfaced through the future
                drain_task.exception()

    async def _drain(self, stream: UIMessageStream, finished: asyncio.Future):
        try:
            await stream.json()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = StreamDrainError(f"Agent stream failed: {e}")
            if not finished.done():
                finished.set_exception(error)
            raise error from e

        if finished.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(finished), timeout=self.finish_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Agent stream ended without a final message")
            error = StreamDrainError("Agent stream ended without a final message")
            if not finished.done():
                finished.set_exception(error)
            raise error

    @staticmethod
    async def _release(stream: Any):
        close = getattr(stream, "aclose", None)
        if close is None:
            return
        try:
            result = close()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Failed to release agent stream: %s", e)
