from typing import Dict, Any, Optional, List
import json
import structlog
from pydantic import BaseModel, ConfigDict, Field

from convo_agent.domain.models.errors import PromptBudgetError
from convo_agent.domain.models.messages import Message, MessageRole
from convo_agent.domain.memory.memory_fork import Memory
from .sections import ConversationHistory, Prompt, PromptSection, TemplateSection, UserInputMessage
from .template import PromptFunctions
from .tokenizer import Tokenizer

logger = structlog.get_logger(__name__)

# Tokens that must be left for conversation history once the developer
# message and tool schemas are accounted for.
MIN_HISTORY_TOKENS = 1000


class CompletionConfig(BaseModel):
    """Model call settings carried with a prompt"""
    model: Optional[str] = None
    max_input_tokens: int = Field(default=2048, ge=1)
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None


class PromptTemplate(BaseModel):
    """A prompt ready to be sent to the model"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = "prompt"
    prompt: PromptSection
    config: CompletionConfig
    actions: Optional[List[Dict[str, Any]]] = None


async def add_input_to_history(
    context: Any,
    memory: Memory,
    functions: PromptFunctions,
    tokenizer: Tokenizer,
    history_variable: str,
    max_input_tokens: int,
    action_outputs: Optional[Any] = None,
) -> None:
    """Append pending tool outputs, or the rendered user input, to history"""

    history: List[Message] = memory.get_value(history_variable) or []

    if action_outputs is not None and len(action_outputs) > 0:
        for action_call_id, output in action_outputs.items():
            history.append(Message(
                role=MessageRole.TOOL,
                content=output if output is not None else "tool called",
                action_call_id=action_call_id,
            ))
    else:
        # Render user input that might contain images or other attachments
        section = UserInputMessage()
        rendered = await section.render_as_messages(context, memory, functions, tokenizer, max_input_tokens)
        history.extend(rendered.output)

    memory.set_value(history_variable, history)


def add_output_to_history(memory: Memory, history_variable: str, message: Message) -> None:
    """Append the model's message to history"""

    history: List[Message] = memory.get_value(history_variable) or []
    history.append(message)
    memory.set_value(history_variable, history)


def add_tool_call_to_history(memory: Memory, history_variable: str, action_call_id: str, content: str) -> None:
    """Append a single tool output to history"""

    history: List[Message] = memory.get_value(history_variable) or []
    history.append(Message(role=MessageRole.TOOL, content=content, action_call_id=action_call_id))
    memory.set_value(history_variable, history)


def create_prompt_template(
    prompt: PromptSection,
    completion: CompletionConfig,
    actions: Optional[List[Dict[str, Any]]] = None,
) -> PromptTemplate:
    return PromptTemplate(prompt=prompt, config=completion, actions=actions)


async def create_prompt_with_history(
    context: Any,
    memory: Memory,
    functions: PromptFunctions,
    tokenizer: Tokenizer,
    developer_message: str,
    history_variable: str,
    completion: CompletionConfig,
    actions: Optional[List[Dict[str, Any]]] = None,
) -> PromptTemplate:
    """Build a developer message + history prompt within the token budget.

    Raises ``PromptBudgetError`` when the fixed overhead leaves fewer than
    ``MIN_HISTORY_TOKENS`` for history. Truncating older history to fit is
    not an error.
    """

    max_input_tokens = completion.max_input_tokens
    developer_section = TemplateSection(developer_message, MessageRole.SYSTEM)
    rendered = await developer_section.render_as_text(context, memory, functions, tokenizer, max_input_tokens)
    consumed_tokens = rendered.length

    if actions:
        for action in actions:
            consumed_tokens += len(tokenizer.encode(json.dumps(action)))

    max_history_tokens = max_input_tokens - consumed_tokens
    if max_history_tokens < MIN_HISTORY_TOKENS:
        logger.error(
            "Prompt budget exhausted",
            max_input_tokens=max_input_tokens,
            consumed_tokens=consumed_tokens,
            available=max_history_tokens,
        )
        raise PromptBudgetError(max_history_tokens, MIN_HISTORY_TOKENS)

    prompt = Prompt([
        developer_section,
        ConversationHistory(history_variable, max_history_tokens),
    ])
    return create_prompt_template(prompt, completion, actions)
