from typing import Any, Callable, List, Optional, Union

import pytest

from convo_agent.domain.llm.model import ModelConfiguration, ModelFactory, PromptCompletionModel
from convo_agent.domain.memory.storage.memory_storage import MemoryStorage
from convo_agent.domain.memory.turn_state import TurnState
from convo_agent.domain.models.messages import (
    ActionCall, Message, MessageRole, PromptResponse, PromptResponseStatus, TurnContext
)
from convo_agent.domain.orchestration.core.tool_planner import ToolBasedPlanner
from convo_agent.domain.prompts.prompt_utilities import CompletionConfig


class WordTokenizer:
    """One token per whitespace separated word"""

    def __init__(self):
        self.vocab: List[str] = []
        self.ids = {}

    def encode(self, text: str) -> List[int]:
        tokens = []
        for word in text.split():
            if word not in self.ids:
                self.ids[word] = len(self.vocab)
                self.vocab.append(word)
            tokens.append(self.ids[word])
        return tokens

    def decode(self, tokens: List[int]) -> str:
        return " ".join(self.vocab[token] for token in tokens)


ScriptStep = Union[Message, PromptResponse, Callable[[List[Message]], Any]]


class ScriptedModel(PromptCompletionModel):
    """Replays a fixed list of replies and records every rendered prompt"""

    def __init__(self, steps: Optional[List[ScriptStep]] = None):
        self.steps = list(steps or [])
        self.prompts: List[List[Message]] = []
        self.templates = []

    async def complete_prompt(self, context, memory, functions, tokenizer, template) -> PromptResponse:
        rendered = await template.prompt.render_as_messages(
            context, memory, functions, tokenizer, template.config.max_input_tokens
        )
        self.prompts.append(rendered.output)
        self.templates.append(template)
        if not self.steps:
            raise AssertionError("model called more times than scripted")

        step = self.steps.pop(0)
        if callable(step) and not isinstance(step, (Message, PromptResponse)):
            step = step(rendered.output)
        if isinstance(step, Message):
            return PromptResponse(status=PromptResponseStatus.SUCCESS, message=step)
        return step


class ScriptedModelFactory(ModelFactory):
    def __init__(self, model: ScriptedModel):
        self.model = model
        self.tokenizer = WordTokenizer()

    def create_inference_model(self) -> PromptCompletionModel:
        return self.model

    def create_tokenizer(self):
        return self.tokenizer


class RecordingSender:
    """Collects outbound events in the order they were sent"""

    def __init__(self):
        self.events: List[Any] = []

    async def __call__(self, event):
        self.events.append(event)
        return True

    def of_type(self, event_type: str) -> List[Any]:
        return [event for event in self.events if event.type == event_type]


class EchoPlanner(ToolBasedPlanner):
    async def get_developer_message(self, context, state) -> str:
        return "You are a test assistant."


def assistant(text: Optional[str] = None, calls: Optional[List[ActionCall]] = None) -> Message:
    return Message(role=MessageRole.ASSISTANT, content=text, action_calls=calls)


def call(call_id: str, name: str, arguments: Optional[str] = "{}") -> ActionCall:
    return ActionCall(id=call_id, name=name, arguments=arguments)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def context(sender) -> TurnContext:
    return TurnContext(
        session_id="session-1",
        conversation_id="conversation-1",
        user_id="user-1",
        user_name="Ada",
        text="hello there",
        sender=sender,
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
async def state(context, storage) -> TurnState:
    return await TurnState.load(context, storage)


@pytest.fixture
def make_planner():
    """Build a planner over a scripted model"""

    def build(steps, tools=None, planner_cls=EchoPlanner, **config):
        model = ScriptedModel(steps)
        configuration = ModelConfiguration(
            completion=CompletionConfig(max_input_tokens=config.pop("max_input_tokens", 4000)),
            **config,
        )
        planner = planner_cls(configuration, ScriptedModelFactory(model), tools=tools)
        return planner, model

    return build
