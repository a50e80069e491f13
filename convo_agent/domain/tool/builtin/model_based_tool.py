from typing import Dict, Any, Optional
from abc import abstractmethod

from convo_agent.domain.models.messages import MessageRole, PromptResponse, PromptResponseStatus, ToolResponse
from convo_agent.domain.llm.model import ModelConfiguration, ModelFactory
from convo_agent.domain.prompts.prompt_utilities import create_prompt_template
from convo_agent.domain.prompts.sections import Prompt, PromptSection, TextSection
from convo_agent.domain.prompts.template import NoPromptFunctions
from ..tool_registry import ToolDefinition


class ModelBasedTool(ToolDefinition):
    """Base class for tools that make their own model calls"""

    def __init__(self, configuration: ModelConfiguration, model_factory: ModelFactory):
        self.configuration = configuration
        self.model_factory = model_factory

    @abstractmethod
    async def begin_tool(self, context, memory, sink, parameters) -> ToolResponse:
        ...

    async def complete_prompt(
        self,
        context: Any,
        memory: Any,
        sink: Any,
        prompt: PromptSection,
        completion_options: Optional[Dict[str, Any]] = None,
    ) -> PromptResponse:
        """Complete ``prompt`` with a fresh model; reports cancellation if the turn was stopped"""

        model = self.model_factory.create_inference_model()
        tokenizer = self.model_factory.create_tokenizer()
        completion = self.configuration.completion.model_copy(update=completion_options or {})
        template = create_prompt_template(prompt, completion)

        result = await model.complete_prompt(context, memory, NoPromptFunctions(), tokenizer, template)
        if result.status == PromptResponseStatus.SUCCESS and sink.is_cancellation_requested:
            return PromptResponse(status=PromptResponseStatus.CANCELLED)
        return result

    async def complete_text(
        self,
        context: Any,
        memory: Any,
        sink: Any,
        user_message: str,
        developer_message: Optional[str] = None,
    ) -> PromptResponse:
        sections = [TextSection(user_message, MessageRole.USER)]
        if developer_message:
            sections.insert(0, TextSection(developer_message, MessageRole.SYSTEM))
        return await self.complete_prompt(context, memory, sink, Prompt(sections))
