from typing import Optional, List
import asyncio
import uuid
import structlog
from datetime import datetime

from convo_agent.domain.models.events import StreamEvent
from convo_agent.domain.models.messages import Citation, TurnContext

logger = structlog.get_logger(__name__)


class StreamingResponse:
    """Streams text chunks to one session as a sequence of stream events.

    Chunks are buffered and sent once the buffer is older than
    ``flush_interval`` seconds or longer than ``flush_chars`` characters.
    The final event closes the stream.
    """

    def __init__(
        self,
        context: TurnContext,
        flush_interval: float = 0.1,
        flush_chars: int = 50,
        feedback_loop: bool = False,
    ):
        self.context = context
        self.stream_id = uuid.uuid4().hex
        self.flush_interval = flush_interval
        self.flush_chars = flush_chars
        self.feedback_loop = feedback_loop
        self.message = ""
        self._buffer = ""
        self._citations: List[Citation] = []
        self._sequence = 0
        self._last_send = datetime.utcnow()
        self._ended = False
        self._lock = asyncio.Lock()

    @property
    def sequence(self) -> int:
        """Number of stream events sent so far"""
        return self._sequence

    @property
    def ended(self) -> bool:
        return self._ended

    async def queue_text_chunk(self, text: str, citations: Optional[List[Citation]] = None):
        """Buffer a chunk and send it once the flush threshold is reached"""

        if self._ended:
            raise RuntimeError("The stream has already ended.")

        async with self._lock:
            self._buffer += text
            self.message += text
            if citations:
                self._citations.extend(citations)

            now = datetime.utcnow()
            time_diff = (now - self._last_send).total_seconds()
            if time_diff > self.flush_interval or len(self._buffer) > self.flush_chars:
                await self._send(final=False)
                self._last_send = now

    async def end_stream(self):
        """Flush any remaining buffered content and close the stream"""

        if self._ended:
            return
        self._ended = True

        async with self._lock:
            if self._sequence == 0 and not self._buffer:
                logger.debug("Closing empty stream", stream_id=self.stream_id)
                return
            await self._send(final=True)

    async def _send(self, final: bool):
        channel_data = {"feedback_loop": True} if final and self.feedback_loop else {}
        event = StreamEvent(
            session_id=self.context.session_id,
            stream_id=self.stream_id,
            sequence=self._sequence,
            payload=self._buffer,
            final=final,
            citations=self._citations if final else [],
            channel_data=channel_data,
        )
        self._buffer = ""
        self._sequence += 1
        await self.context.send_event(event)
