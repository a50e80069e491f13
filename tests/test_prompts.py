import pytest

from convo_agent.domain.memory.memory_fork import MemoryFork, ScopedMemory
from convo_agent.domain.models.errors import PromptBudgetError, TemplateRenderError
from convo_agent.domain.models.messages import Attachment, Message, MessageRole
from convo_agent.domain.prompts.prompt_utilities import (
    CompletionConfig, add_input_to_history, create_prompt_with_history
)
from convo_agent.domain.prompts.sections import ConversationHistory, TemplateSection, UserInputMessage, group_history
from convo_agent.domain.prompts.template import NoPromptFunctions, render_template
from convo_agent.domain.tool.tool_executor import ActionOutputs

from conftest import WordTokenizer, assistant, call


class UpperFunctions:
    def has_function(self, name):
        return name == "upper"

    async def invoke_function(self, name, context, memory, tokenizer, args):
        return " ".join(arg.upper() for arg in args)


@pytest.fixture
def memory():
    return MemoryFork(ScopedMemory())


@pytest.fixture
def tokenizer():
    return WordTokenizer()


async def test_render_template_variables_and_functions(context, memory, tokenizer):
    memory.set_value("temp.persona", "You are kind.")
    memory.set_value("conversation.variables", {"step": "1"})

    text = await render_template(
        '{{$temp.persona}} {{$conversation.variables}} {{$missing}} {{upper "big cat" dog}}',
        context, memory, UpperFunctions(), tokenizer,
    )

    assert text == 'You are kind. {"step": "1"}  BIG CAT DOG'


async def test_render_template_unknown_function(context, memory, tokenizer):
    with pytest.raises(TemplateRenderError):
        await render_template("{{nope}}", context, memory, NoPromptFunctions(), tokenizer)


async def test_template_section_truncates(context, memory, tokenizer):
    section = TemplateSection("one two three four")

    rendered = await section.render_as_messages(context, memory, NoPromptFunctions(), tokenizer, 2)

    assert rendered.too_long
    assert rendered.output[0].text == "one two"
    assert rendered.length == 2


async def test_user_input_includes_images(context, memory, tokenizer):
    memory.set_value("temp.input", "what is this?")
    memory.set_value("temp.input_files", [
        Attachment(content_type="image/png", content_url="https://example.com/cat.png"),
        Attachment(content_type="application/pdf", content_url="https://example.com/doc.pdf"),
    ])

    rendered = await UserInputMessage().render_as_messages(context, memory, NoPromptFunctions(), tokenizer, 100)

    message = rendered.output[0]
    assert message.role == MessageRole.USER
    assert message.content == [
        {"type": "text", "text": "what is this?"},
        {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
    ]


def test_group_history_keeps_calls_with_their_outputs():
    history = [
        Message(role=MessageRole.TOOL, content="orphan", action_call_id="x"),
        Message(role=MessageRole.USER, content="hi"),
        assistant(calls=[call("a", "lookup"), call("b", "lookup")]),
        Message(role=MessageRole.TOOL, content="A", action_call_id="a"),
        Message(role=MessageRole.TOOL, content="B", action_call_id="b"),
        assistant("done"),
    ]

    units = group_history(history)

    assert [[m.text for m in unit] for unit in units] == [["hi"], ["", "A", "B"], ["done"]]


async def test_history_truncation_never_splits_a_tool_unit(context, memory, tokenizer):
    memory.set_value("conversation.history", [
        Message(role=MessageRole.USER, content="first question here"),
        assistant(calls=[call("a", "lookup")]),
        Message(role=MessageRole.TOOL, content="a very long tool output that will not fit", action_call_id="a"),
        assistant("short answer"),
    ])
    section = ConversationHistory("conversation.history", 5)

    rendered = await section.render_as_messages(context, memory, NoPromptFunctions(), tokenizer, 5)

    assert [m.text for m in rendered.output] == ["short answer"]
    assert not rendered.too_long


async def test_history_flags_newest_entry_that_cannot_fit(context, memory, tokenizer):
    memory.set_value("conversation.history", [
        assistant("ok"),
        Message(role=MessageRole.USER, content="one two three four five six"),
    ])
    section = ConversationHistory("conversation.history", 5)

    rendered = await section.render_as_messages(context, memory, NoPromptFunctions(), tokenizer, 5)

    assert rendered.output == []
    assert rendered.too_long


async def test_add_input_uses_outputs_in_issue_order(context, memory, tokenizer):
    memory.set_value("temp.input", "ignored when outputs are pending")
    outputs = ActionOutputs([call("a", "x"), call("b", "y")])
    outputs.set("b", "second")
    outputs.set("a", "first")

    await add_input_to_history(
        context, memory, NoPromptFunctions(), tokenizer, "conversation.history", 100, outputs
    )

    history = memory.get_value("conversation.history")
    assert [(m.role, m.action_call_id, m.text) for m in history] == [
        (MessageRole.TOOL, "a", "first"),
        (MessageRole.TOOL, "b", "second"),
    ]


async def test_add_input_renders_user_text(context, memory, tokenizer):
    memory.set_value("temp.input", "hello")

    await add_input_to_history(context, memory, NoPromptFunctions(), tokenizer, "conversation.history", 100)

    assert [m.text for m in memory.get_value("conversation.history")] == ["hello"]


async def test_prompt_budget_counts_tool_schemas(context, memory, tokenizer):
    actions = [{"type": "function", "function": {"name": "lookup", "description": "x"}}]
    completion = CompletionConfig(max_input_tokens=1005)

    # "be helpful" is two tokens; the schema pushes the remainder below the floor
    with pytest.raises(PromptBudgetError) as exc_info:
        await create_prompt_with_history(
            context, memory, NoPromptFunctions(), tokenizer, "be helpful", "conversation.history", completion, actions
        )
    assert exc_info.value.available_tokens < 1000

    template = await create_prompt_with_history(
        context, memory, NoPromptFunctions(), tokenizer, "be helpful", "conversation.history", completion
    )
    assert template.config.max_input_tokens == 1005
