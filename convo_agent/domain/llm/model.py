from typing import Any, Optional
from abc import ABC, abstractmethod
from pydantic import BaseModel, Field

from convo_agent.domain.models.messages import PromptResponse
from convo_agent.domain.memory.memory_fork import Memory
from convo_agent.domain.prompts.prompt_utilities import CompletionConfig, PromptTemplate
from convo_agent.domain.prompts.template import PromptFunctions
from convo_agent.domain.prompts.tokenizer import Tokenizer


class ModelConfiguration(BaseModel):
    """How the planner talks to its model"""
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    stream: bool = Field(default=False, description="Use a streaming delivery sink")
    enable_feedback_loop: bool = Field(default=False, description="Request feedback controls on replies")
    log_requests: bool = Field(default=False, description="Log prompts and responses")
    max_rounds: int = Field(default=25, ge=1, description="Model rounds allowed in one turn")

    @classmethod
    def from_settings(cls, settings: Any) -> "ModelConfiguration":
        return cls(
            completion=CompletionConfig(
                model=settings.model,
                max_input_tokens=settings.max_input_tokens,
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
            ),
            stream=settings.stream,
            enable_feedback_loop=settings.enable_feedback_loop,
            log_requests=settings.log_requests,
            max_rounds=settings.max_rounds,
        )


class PromptCompletionModel(ABC):
    """Completes a rendered prompt"""

    @abstractmethod
    async def complete_prompt(
        self,
        context: Any,
        memory: Memory,
        functions: PromptFunctions,
        tokenizer: Tokenizer,
        template: PromptTemplate,
    ) -> PromptResponse:
        """Call the model; failures are reported through the response status"""


class ModelFactory(ABC):
    """Creates the model and tokenizer used for each round"""

    @abstractmethod
    def create_inference_model(self) -> PromptCompletionModel:
        ...

    @abstractmethod
    def create_tokenizer(self) -> Tokenizer:
        ...
