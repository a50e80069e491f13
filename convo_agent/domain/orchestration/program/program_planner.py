from typing import List, Any, Optional, Callable, Awaitable, Union
from datetime import datetime, timezone
import inspect

from pydantic import BaseModel, Field
import structlog

from convo_agent.domain.llm.model import ModelConfiguration, ModelFactory
from convo_agent.domain.memory.memory_fork import Memory
from convo_agent.domain.models.messages import TurnContext
from convo_agent.domain.prompts.template import PromptFunctions
from convo_agent.domain.streaming.delivery_sink import DeliverySink
from convo_agent.domain.tool.builtin.set_variable import SetVariableTool
from convo_agent.domain.tool.tool_registry import ToolDefinition
from convo_agent.infrastructure.observability.tracing import TurnTracer
from ..core.tool_planner import DEFAULT_HISTORY_VARIABLE, ToolBasedPlanner

logger = structlog.get_logger(__name__)

DEFAULT_PERSONA = "You are a helpful chat bot."

DEVELOPER_MESSAGE = """{{$temp.persona}}
The PROGRAM below defines how you should manage conversations with a user.

<PROGRAM>
{{$temp.program_code}}

<PROGRAM_DATA>
{{$temp.program_data}}

<SYSTEM_VARIABLES>
date: {{$temp.date}}
{{$temp.variables}}

<CONVERSATION_VARIABLES>
{{$conversation.variables}}

<USER_VARIABLES>
{{$user.variables}}
{{$temp.user_info}}

<INSTRUCTIONS>
Run the specified PROGRAM by executing each step.
Use the conversation history and VARIABLES to track where you are in the program.
Use PROGRAM_DATA for additional context.
{{$temp.instructions}}"""


class Program(BaseModel):
    """Script the model runs, with optional reference data"""
    code: str = Field(description="Program text injected into the developer message")
    name: Optional[str] = Field(None, description="Gives the program its own history variable")
    data: Optional[str] = Field(None, description="Additional context for the program")


ProgramFactory = Callable[[TurnContext, Memory, "ProgramPlanner"], Union[Program, Awaitable[Program]]]


class ProgramPlanner(ToolBasedPlanner):
    """Tool-based planner whose developer message runs a program script"""

    def __init__(
        self,
        model: ModelConfiguration,
        model_factory: ModelFactory,
        program: Union[Program, ProgramFactory],
        exclude_user_info: bool = False,
        instructions: Optional[str] = None,
        persona: Optional[str] = None,
        tools: Optional[List[ToolDefinition]] = None,
        functions: Optional[PromptFunctions] = None,
        tracer: Optional[TurnTracer] = None,
    ):
        super().__init__(
            model,
            model_factory,
            tools=[SetVariableTool(), *(tools or [])],
            functions=functions,
            tracer=tracer,
        )
        self.program = program
        self.exclude_user_info = exclude_user_info
        self.instructions = instructions
        self.persona = persona or DEFAULT_PERSONA

    async def resolve_program(self, context: TurnContext, state: Memory) -> Program:
        if isinstance(self.program, Program):
            return self.program

        program = self.program(context, state, self)
        if inspect.isawaitable(program):
            program = await program
        return program

    async def get_developer_message(self, context: TurnContext, state: Memory) -> str:
        return DEVELOPER_MESSAGE

    def get_history_variable(self, context: TurnContext, state: Memory) -> str:
        program_name = state.get_value("temp.program_name")
        history_variable = f"conversation.{program_name}_history" if program_name else DEFAULT_HISTORY_VARIABLE
        state.set_value("temp.history_variable_name", history_variable)
        return history_variable

    async def on_before_turn(self, context: TurnContext, state: Memory, sink: DeliverySink) -> bool:
        # The program is picked once per turn so every round runs the same one
        program = await self.resolve_program(context, state)
        state.set_value("temp.program_code", program.code)
        state.set_value("temp.program_name", program.name or "")
        state.set_value("temp.program_data", program.data or "")

        state.set_value("temp.persona", self.persona)
        if self.instructions and not state.get_value("temp.instructions"):
            state.set_value("temp.instructions", self.instructions)

        state.set_value("temp.date", datetime.now(timezone.utc).isoformat())

        if not self.exclude_user_info:
            state.set_value("temp.user_info", f"user_name: {context.user_name or ''}\nuser_id: {context.user_id}")

        logger.debug("Program selected", program_name=program.name, session_id=context.session_id)
        return True
