from typing import Dict, Any, Optional, List, Literal
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from .messages import Attachment, Citation


class EventType(str, Enum):
    """Event types exchanged with the client"""
    MESSAGE = "message"
    STREAM = "stream"
    COMPONENT = "component"
    ERROR = "error"
    CONNECTION = "connection"
    USER_MESSAGE = "user_message"
    CANCEL = "cancel"


class BaseEvent(BaseModel):
    """Base event model for all outbound and inbound events"""
    type: EventType
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: Optional[str] = None


class MessageEvent(BaseEvent):
    """Complete outbound message with optional attachments"""
    type: Literal[EventType.MESSAGE] = EventType.MESSAGE
    text: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)
    channel_data: Dict[str, Any] = Field(default_factory=dict)


class StreamEvent(BaseEvent):
    """Incremental chunk of a streamed response"""
    type: Literal[EventType.STREAM] = EventType.STREAM
    stream_id: str
    sequence: int
    payload: str
    final: bool = False
    citations: List[Citation] = Field(default_factory=list)
    channel_data: Dict[str, Any] = Field(default_factory=dict)
