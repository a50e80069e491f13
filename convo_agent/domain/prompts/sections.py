from typing import Dict, Any, List
from abc import ABC, abstractmethod
import json

from pydantic import BaseModel
import structlog

from convo_agent.domain.models.messages import Attachment, Message, MessageRole
from convo_agent.domain.memory.memory_fork import Memory
from .template import PromptFunctions, render_template
from .tokenizer import Tokenizer

logger = structlog.get_logger(__name__)


class RenderedPromptSection(BaseModel):
    """Output of rendering a prompt section"""
    output: Any
    length: int = 0
    too_long: bool = False


def message_length(message: Message, tokenizer: Tokenizer) -> int:
    """Token cost of a history message including its tool calls"""

    length = len(tokenizer.encode(message.text))
    if message.action_calls:
        calls = [call.model_dump() for call in message.action_calls]
        length += len(tokenizer.encode(json.dumps(calls)))
    return length


class PromptSection(ABC):
    """A piece of a prompt rendered within a token budget"""

    @abstractmethod
    async def render_as_messages(
        self,
        context: Any,
        memory: Memory,
        functions: PromptFunctions,
        tokenizer: Tokenizer,
        max_tokens: int,
    ) -> RenderedPromptSection:
        """Render the section as a list of messages"""

    async def render_as_text(
        self,
        context: Any,
        memory: Memory,
        functions: PromptFunctions,
        tokenizer: Tokenizer,
        max_tokens: int,
    ) -> RenderedPromptSection:
        """Render the section as a single string"""

        rendered = await self.render_as_messages(context, memory, functions, tokenizer, max_tokens)
        text = "\n".join(message.text for message in rendered.output)
        return RenderedPromptSection(output=text, length=len(tokenizer.encode(text)), too_long=rendered.too_long)


class TemplateSection(PromptSection):
    """Template text rendered against memory, emitted as one message"""

    def __init__(self, template: str, role: MessageRole = MessageRole.SYSTEM):
        self.template = template
        self.role = role

    async def render_as_messages(self, context, memory, functions, tokenizer, max_tokens):
        text = await render_template(self.template, context, memory, functions, tokenizer)
        tokens = tokenizer.encode(text)
        too_long = len(tokens) > max_tokens
        if too_long:
            tokens = tokens[:max_tokens]
            text = tokenizer.decode(tokens)

        return RenderedPromptSection(
            output=[Message(role=self.role, content=text)],
            length=len(tokens),
            too_long=too_long,
        )


class UserInputMessage(PromptSection):
    """Renders the inbound user text and image attachments"""

    def __init__(self, input_variable: str = "input", files_variable: str = "input_files"):
        self.input_variable = input_variable
        self.files_variable = files_variable

    async def render_as_messages(self, context, memory, functions, tokenizer, max_tokens):
        text = memory.get_value(self.input_variable) or ""
        files: List[Any] = memory.get_value(self.files_variable) or []

        images = []
        for file in files:
            attachment = file if isinstance(file, Attachment) else Attachment(**file)
            if attachment.content_type.startswith("image/") and attachment.content_url:
                images.append({"type": "image_url", "image_url": {"url": attachment.content_url}})

        if not text and not images:
            return RenderedPromptSection(output=[], length=0)

        tokens = tokenizer.encode(text)
        too_long = len(tokens) > max_tokens
        if too_long:
            text = tokenizer.decode(tokens[:max_tokens])
            tokens = tokens[:max_tokens]

        if images:
            content: Any = [{"type": "text", "text": text}] if text else []
            content.extend(images)
        else:
            content = text

        return RenderedPromptSection(
            output=[Message(role=MessageRole.USER, content=content)],
            length=len(tokens),
            too_long=too_long,
        )


def group_history(history: List[Message]) -> List[List[Message]]:
    """Group history into units that must be kept or dropped together.

    An assistant message that issued tool calls forms a unit with the tool
    messages answering it. Tool messages without a preceding call are dropped.
    """

    units: List[List[Message]] = []
    open_calls: Dict[str, List[Message]] = {}
    for message in history:
        if message.role == MessageRole.TOOL:
            unit = open_calls.get(message.action_call_id or "")
            if unit is None:
                logger.debug("Dropping orphaned tool message", action_call_id=message.action_call_id)
                continue
            unit.append(message)
            continue

        unit = [message]
        units.append(unit)
        open_calls = {}
        if message.action_calls:
            open_calls = {call.id: unit for call in message.action_calls}

    return units


class ConversationHistory(PromptSection):
    """Renders as much trailing history as fits in the token budget"""

    def __init__(self, variable: str, max_tokens: int):
        self.variable = variable
        self.max_tokens = max_tokens

    async def render_as_messages(self, context, memory, functions, tokenizer, max_tokens):
        history: List[Message] = memory.get_value(self.variable) or []
        budget = min(max_tokens, self.max_tokens)

        selected: List[List[Message]] = []
        length = 0
        too_long = False
        for unit in reversed(group_history(history)):
            unit_length = sum(message_length(message, tokenizer) for message in unit)
            if length + unit_length > budget:
                too_long = not selected
                break
            selected.append(unit)
            length += unit_length

        output = [message for unit in reversed(selected) for message in unit]
        return RenderedPromptSection(output=output, length=length, too_long=too_long)


class Prompt(PromptSection):
    """Ordered collection of sections sharing one budget"""

    def __init__(self, sections: List[PromptSection]):
        self.sections = sections

    async def render_as_messages(self, context, memory, functions, tokenizer, max_tokens):
        output: List[Message] = []
        length = 0
        too_long = False
        for section in self.sections:
            remaining = max(max_tokens - length, 0)
            rendered = await section.render_as_messages(context, memory, functions, tokenizer, remaining)
            output.extend(rendered.output)
            length += rendered.length
            too_long = too_long or rendered.too_long

        return RenderedPromptSection(output=output, length=length, too_long=too_long)


class TextSection(PromptSection):
    """Fixed text emitted as one message without template rendering"""

    def __init__(self, text: str, role: MessageRole = MessageRole.USER):
        self.text = text
        self.role = role

    async def render_as_messages(self, context, memory, functions, tokenizer, max_tokens):
        tokens = tokenizer.encode(self.text)
        too_long = len(tokens) > max_tokens
        text = tokenizer.decode(tokens[:max_tokens]) if too_long else self.text
        return RenderedPromptSection(
            output=[Message(role=self.role, content=text)],
            length=min(len(tokens), max_tokens),
            too_long=too_long,
        )
