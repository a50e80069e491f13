from typing import Optional, List
from abc import ABC, abstractmethod
import structlog

from convo_agent.domain.models.events import MessageEvent
from convo_agent.domain.models.messages import Attachment, Citation, TurnContext
from .streaming_response import StreamingResponse

logger = structlog.get_logger(__name__)


class DeliverySink(ABC):
    """Delivers generated text and attachments for one turn.

    ``end_turn`` is idempotent: the first call flushes, later calls do
    nothing. ``cancel`` is how a host signals that the user stopped the turn;
    the planner checks ``is_cancellation_requested`` after each model call and
    after each batch of tool calls.
    """

    def __init__(self, context: TurnContext, enable_feedback_loop: bool = False):
        self.context = context
        self.enable_feedback_loop = enable_feedback_loop
        self._attachments: List[Attachment] = []
        self._cancelled = False
        self._ended = False

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    @property
    def ended(self) -> bool:
        return self._ended

    def cancel(self):
        """Request cancellation of the current turn"""
        if not self._cancelled:
            logger.info("Turn cancellation requested", session_id=self.context.session_id)
        self._cancelled = True

    async def queue_attachment(self, attachment: Attachment):
        """Queue an attachment to be sent when the turn ends"""
        self._attachments.append(attachment)

    @abstractmethod
    async def queue_text_chunk(self, text: str, citations: Optional[List[Citation]] = None):
        """Queue text to be sent to the user"""

    async def end_turn(self):
        """Send anything still queued and mark the turn finished"""

        if self._ended:
            return
        self._ended = True
        await self._flush()

    @abstractmethod
    async def _flush(self):
        """Deliver queued content exactly once"""


class BufferedSink(DeliverySink):
    """Collects the whole response and sends a single message at end of turn"""

    def __init__(self, context: TurnContext, enable_feedback_loop: bool = False):
        super().__init__(context, enable_feedback_loop)
        self._text = ""
        self._citations: List[Citation] = []

    @property
    def text(self) -> str:
        return self._text

    async def queue_text_chunk(self, text: str, citations: Optional[List[Citation]] = None):
        self._text += text
        if citations:
            self._citations.extend(citations)

    async def _flush(self):
        if not self._text and not self._attachments:
            return

        channel_data = {"feedback_loop": True} if self.enable_feedback_loop else {}
        await self.context.send_event(MessageEvent(
            session_id=self.context.session_id,
            text=self._text,
            attachments=self._attachments,
            citations=self._citations,
            channel_data=channel_data,
        ))


class StreamingSink(DeliverySink):
    """Streams text as it is produced; attachments follow once the stream closes"""

    def __init__(
        self,
        context: TurnContext,
        enable_feedback_loop: bool = False,
        streamer: Optional[StreamingResponse] = None,
    ):
        super().__init__(context, enable_feedback_loop)
        self.streamer = streamer or StreamingResponse(context, feedback_loop=enable_feedback_loop)

    async def queue_text_chunk(self, text: str, citations: Optional[List[Citation]] = None):
        await self.streamer.queue_text_chunk(text, citations)

    async def _flush(self):
        await self.streamer.end_stream()
        if self._attachments:
            await self.context.send_event(MessageEvent(
                session_id=self.context.session_id,
                attachments=self._attachments,
            ))


def create_sink(context: TurnContext, stream: bool, enable_feedback_loop: bool = False) -> DeliverySink:
    """Pick the sink matching the caller's streaming preference"""
    if stream:
        return StreamingSink(context, enable_feedback_loop)
    return BufferedSink(context, enable_feedback_loop)
