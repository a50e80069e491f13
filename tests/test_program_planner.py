from datetime import datetime

import pytest

from convo_agent.domain.llm.model import ModelConfiguration
from convo_agent.domain.models.messages import MessageRole
from convo_agent.domain.orchestration.program.program_planner import DEFAULT_PERSONA, Program, ProgramPlanner

from conftest import ScriptedModel, ScriptedModelFactory, assistant, call


def build_planner(steps, program, **options):
    model = ScriptedModel(steps)
    planner = ProgramPlanner(ModelConfiguration(), ScriptedModelFactory(model), program=program, **options)
    return planner, model


async def test_developer_message_carries_program_and_variables(context, state):
    state.set_value("conversation.variables", {"step": "2"})
    state.set_value("user.variables", {"timezone": "UTC"})
    planner, model = build_planner(
        [assistant("Welcome back.")],
        Program(code="1. Greet the user\n2. Ask for their order", data="menu: tea, coffee"),
        instructions="Be brief.",
    )

    await planner.run_turn(context, state)

    developer_message = model.prompts[0][0]
    assert developer_message.role == MessageRole.SYSTEM
    text = developer_message.text
    assert text.startswith(DEFAULT_PERSONA)
    assert "<PROGRAM>\n1. Greet the user\n2. Ask for their order" in text
    assert "menu: tea, coffee" in text
    assert '{"step": "2"}' in text
    assert '{"timezone": "UTC"}' in text
    assert "user_name: Ada\nuser_id: user-1" in text
    assert text.endswith("Be brief.")


async def test_turn_variables_are_set_before_the_turn(context, state):
    planner, _ = build_planner([assistant("ok")], Program(code="say hi"), persona="You are a barista.")

    await planner.run_turn(context, state)

    assert state.get_value("temp.program_code") == "say hi"
    assert state.get_value("temp.program_name") == ""
    assert state.get_value("temp.persona") == "You are a barista."
    assert datetime.fromisoformat(state.get_value("temp.date")).tzinfo is not None


async def test_instructions_already_set_for_the_turn_are_kept(context, state):
    state.set_value("temp.instructions", "Answer in French.")
    planner, _ = build_planner([assistant("ok")], Program(code="say hi"), instructions="Be brief.")

    await planner.run_turn(context, state)

    assert state.get_value("temp.instructions") == "Answer in French."


async def test_user_info_can_be_excluded(context, state):
    planner, model = build_planner([assistant("ok")], Program(code="say hi"), exclude_user_info=True)

    await planner.run_turn(context, state)

    assert "user_id" not in model.prompts[0][0].text
    assert not state.has_value("temp.user_info")


async def test_named_program_uses_its_own_history(context, state):
    async def factory(context, state, planner):
        return Program(code="take the order", name="ordering")

    planner, _ = build_planner([assistant("What would you like?")], factory)

    await planner.run_turn(context, state)

    assert state.get_value("temp.history_variable_name") == "conversation.ordering_history"
    assert len(state.get_value("conversation.ordering_history")) == 2
    assert not state.has_value("conversation.history")


async def test_set_variable_is_always_registered(context, state):
    planner, model = build_planner(
        [
            assistant(calls=[call("a", "set_variable", '{"scope": "conversation", "name": "size", "value": "large"}')]),
            assistant("Noted."),
        ],
        lambda context, state, planner: Program(code="track the size"),
    )

    await planner.run_turn(context, state)

    assert [schema.name for schema in planner.tools] == ["set_variable"]
    assert state.get_value("conversation.variables") == {"size": "large"}
    # The second round sees the updated variables in its developer message
    assert '{"size": "large"}' in model.prompts[1][0].text
