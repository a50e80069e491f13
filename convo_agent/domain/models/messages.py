from typing import Dict, Any, Optional, List, Union, Callable, Awaitable
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum


class MessageRole(str, Enum):
    """Conversation history roles"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolResponseStatus(str, Enum):
    """Terminal status of a single tool call"""
    COMPLETED = "completed"
    REPLY_SENT = "reply_sent"
    CANCELLED = "cancelled"
    ERROR = "error"


class PromptResponseStatus(str, Enum):
    """Status returned by a model call"""
    SUCCESS = "success"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    TOO_LONG = "too_long"
    CANCELLED = "cancelled"


class Citation(BaseModel):
    """Citation attached to a text chunk"""
    content: str
    title: Optional[str] = None
    url: Optional[str] = None
    filepath: Optional[str] = None


class Attachment(BaseModel):
    """Outbound or inbound message attachment"""
    content_type: str = Field(description="MIME type or card content type")
    content_url: Optional[str] = None
    content: Optional[Any] = None
    name: Optional[str] = None


class ActionCall(BaseModel):
    """A single tool invocation requested by the model"""
    id: str = Field(description="Identifier the tool output must reference")
    name: str = Field(description="Name of the tool to call")
    arguments: Optional[str] = Field(None, description="Raw JSON argument payload")


class Message(BaseModel):
    """Conversation history entry"""
    role: MessageRole
    content: Optional[Union[str, List[Dict[str, Any]]]] = None
    action_calls: Optional[List[ActionCall]] = None
    action_call_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def text(self) -> str:
        """Text portion of the content, ignoring image parts"""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            part.get("text", "") for part in self.content
            if part.get("type") == "text"
        )


class ToolResponse(BaseModel):
    """Result returned by a tool invocation"""
    status: ToolResponseStatus
    content: Optional[str] = None


class PromptResponse(BaseModel):
    """Result returned by a model call"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: PromptResponseStatus
    message: Optional[Message] = None
    error: Optional[BaseException] = None


class Plan(BaseModel):
    """Plan handed back to the caller once a turn settles"""
    type: str = "plan"
    commands: List[Dict[str, Any]] = Field(default_factory=list)


def empty_plan() -> Plan:
    return Plan()


EventSender = Callable[[Any], Awaitable[Any]]


class TurnContext(BaseModel):
    """Context for one inbound user turn"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_id: str = Field(description="Transport session identifier")
    conversation_id: str = Field(description="Conversation identifier used for state")
    user_id: str = Field(description="Identifier of the sending user")
    user_name: Optional[str] = Field(None, description="Display name of the sending user")
    text: Optional[str] = Field(None, description="Text of the inbound message")
    attachments: List[Attachment] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    sender: Optional[EventSender] = Field(None, exclude=True, description="Async callable delivering events")

    async def send_event(self, event: Any) -> Any:
        """Deliver an outbound event through the transport"""
        if self.sender is None:
            raise RuntimeError(f"No sender configured for session '{self.session_id}'")
        return await self.sender(event)
