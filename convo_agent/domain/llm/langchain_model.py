from typing import Dict, Any, Optional, List
import json
import time
import uuid
import structlog

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from convo_agent.domain.models.messages import (
    ActionCall, Message, MessageRole, PromptResponse, PromptResponseStatus
)
from convo_agent.domain.prompts.prompt_utilities import PromptTemplate
from convo_agent.domain.prompts.tokenizer import TiktokenTokenizer, Tokenizer
from convo_agent.infrastructure.observability.logging import metrics
from .model import ModelFactory, PromptCompletionModel

logger = structlog.get_logger(__name__)


def to_langchain_messages(messages: List[Message]) -> List[BaseMessage]:
    """Convert history messages to LangChain messages"""

    converted: List[BaseMessage] = []
    for message in messages:
        if message.role == MessageRole.SYSTEM:
            converted.append(SystemMessage(content=message.text))
        elif message.role == MessageRole.USER:
            converted.append(HumanMessage(content=message.content or ""))
        elif message.role == MessageRole.TOOL:
            converted.append(ToolMessage(content=message.text, tool_call_id=message.action_call_id or ""))
        else:
            converted.append(_to_ai_message(message))
    return converted


def _to_ai_message(message: Message) -> AIMessage:
    tool_calls = []
    invalid_tool_calls = []
    for call in message.action_calls or []:
        try:
            args = json.loads(call.arguments) if call.arguments else {}
        except json.JSONDecodeError:
            args = None

        if isinstance(args, dict):
            tool_calls.append({"name": call.name, "args": args, "id": call.id, "type": "tool_call"})
        else:
            invalid_tool_calls.append({
                "name": call.name,
                "args": call.arguments,
                "id": call.id,
                "error": None,
                "type": "invalid_tool_call",
            })

    return AIMessage(
        content=message.text,
        tool_calls=tool_calls,
        invalid_tool_calls=invalid_tool_calls,
    )


def from_langchain_message(message: AIMessage) -> Message:
    """Convert a model reply into a history message"""

    if isinstance(message.content, str):
        text = message.content
    else:
        text = "".join(
            part if isinstance(part, str) else part.get("text", "")
            for part in message.content
            if isinstance(part, str) or part.get("type") == "text"
        )

    calls: List[ActionCall] = []
    for tool_call in getattr(message, "tool_calls", None) or []:
        calls.append(ActionCall(
            id=tool_call.get("id") or f"call_{uuid.uuid4().hex}",
            name=tool_call["name"],
            arguments=json.dumps(tool_call.get("args") or {}),
        ))
    for tool_call in getattr(message, "invalid_tool_calls", None) or []:
        # Keep the raw text so the dispatcher reports the parse error to the model
        calls.append(ActionCall(
            id=tool_call.get("id") or f"call_{uuid.uuid4().hex}",
            name=tool_call.get("name") or "",
            arguments=tool_call.get("args"),
        ))

    return Message(
        role=MessageRole.ASSISTANT,
        content=text,
        action_calls=calls or None,
    )


def _status_for_error(error: BaseException) -> PromptResponseStatus:
    status_code = getattr(error, "status_code", None)
    if status_code == 429 or "RateLimit" in type(error).__name__:
        return PromptResponseStatus.RATE_LIMITED
    return PromptResponseStatus.ERROR


class LangChainCompletionModel(PromptCompletionModel):
    """Completes prompts with a LangChain chat model"""

    def __init__(self, chat_model: BaseChatModel, log_requests: bool = False):
        self.chat_model = chat_model
        self.log_requests = log_requests

    def _invocation_kwargs(self, template: PromptTemplate) -> Dict[str, Any]:
        config = template.config
        kwargs: Dict[str, Any] = {}
        if config.max_tokens is not None:
            kwargs["max_tokens"] = config.max_tokens
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if config.top_p is not None:
            kwargs["top_p"] = config.top_p
        return kwargs

    async def complete_prompt(self, context, memory, functions, tokenizer, template) -> PromptResponse:
        max_input_tokens = template.config.max_input_tokens
        rendered = await template.prompt.render_as_messages(context, memory, functions, tokenizer, max_input_tokens)
        if rendered.too_long:
            logger.warning(
                "Rendered prompt exceeds input budget",
                prompt=template.name,
                length=rendered.length,
                max_input_tokens=max_input_tokens,
            )
            return PromptResponse(
                status=PromptResponseStatus.TOO_LONG,
                error=ValueError(
                    f"The generated prompt length was {rendered.length} tokens "
                    f"which exceeded the max_input_tokens of {max_input_tokens}."
                ),
            )

        messages = to_langchain_messages(rendered.output)
        if self.log_requests:
            logger.info(
                "Model request",
                prompt=template.name,
                messages=[message.model_dump(mode="json") for message in rendered.output],
                tools=[action["function"]["name"] for action in template.actions or []],
            )

        runnable: Any = self.chat_model
        if template.actions:
            runnable = runnable.bind_tools(template.actions)
        kwargs = self._invocation_kwargs(template)
        if kwargs:
            runnable = runnable.bind(**kwargs)

        started = time.perf_counter()
        try:
            reply = await runnable.ainvoke(messages)
        except Exception as e:
            status = _status_for_error(e)
            logger.error("Model call failed", prompt=template.name, status=status.value, error=str(e))
            return PromptResponse(status=status, error=e)
        finally:
            metrics.record_latency("model_call", (time.perf_counter() - started) * 1000)

        if not isinstance(reply, AIMessage):
            logger.error("Model returned an unexpected reply", reply_type=type(reply).__name__)
            return PromptResponse(
                status=PromptResponseStatus.INVALID_RESPONSE,
                error=TypeError(f"Expected an AIMessage, got {type(reply).__name__}"),
            )

        message = from_langchain_message(reply)
        if self.log_requests:
            logger.info("Model response", prompt=template.name, message=message.model_dump(mode="json"))

        return PromptResponse(status=PromptResponseStatus.SUCCESS, message=message)


class LangChainModelFactory(ModelFactory):
    """Hands out one LangChain-backed model and a tiktoken tokenizer"""

    def __init__(
        self,
        chat_model: BaseChatModel,
        tokenizer_model: Optional[str] = None,
        log_requests: bool = False,
    ):
        self.chat_model = chat_model
        self.tokenizer_model = tokenizer_model or "gpt-4o"
        self.log_requests = log_requests

    def create_inference_model(self) -> PromptCompletionModel:
        return LangChainCompletionModel(self.chat_model, log_requests=self.log_requests)

    def create_tokenizer(self) -> Tokenizer:
        return TiktokenTokenizer(self.tokenizer_model)
