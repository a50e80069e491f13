from typing import Dict, Any, Optional, List, Literal, Union
from pydantic import BaseModel, Field
from enum import Enum

from convo_agent.domain.models.events import BaseEvent, EventType
from convo_agent.domain.models.messages import Attachment


class ComponentType(str, Enum):
    """UI component types"""
    PROGRESS = "progress"


class ProgressData(BaseModel):
    """Progress component data"""
    status: str
    step_index: Optional[int] = None
    total_steps: Optional[int] = None


class ComponentPayload(BaseModel):
    """Component event payload"""
    component: ComponentType
    data: Union[ProgressData, Dict[str, Any]]


class ComponentEvent(BaseEvent):
    """Component event for UI status updates"""
    type: Literal[EventType.COMPONENT] = EventType.COMPONENT
    payload: ComponentPayload


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    """Connection status event"""
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected", "reconnecting"]


class UserMessage(BaseEvent):
    """User message event"""
    type: Literal[EventType.USER_MESSAGE] = EventType.USER_MESSAGE
    content: str = ""
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    conversation_id: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
