from typing import TypedDict, List, Dict, Any, Optional
from abc import ABC, abstractmethod
from enum import Enum
import time
import uuid

from langgraph.graph import StateGraph, END
from langgraph.errors import GraphRecursionError
import structlog

from convo_agent.domain.llm.model import ModelConfiguration, ModelFactory, PromptCompletionModel
from convo_agent.domain.memory.memory_fork import Memory, MemoryFork
from convo_agent.domain.models.errors import ModelCallError, RoundLimitError
from convo_agent.domain.models.messages import (
    ActionCall, Plan, PromptResponseStatus, ToolResponse, ToolResponseStatus, TurnContext, empty_plan
)
from convo_agent.domain.prompts.prompt_utilities import (
    add_input_to_history, add_output_to_history, add_tool_call_to_history, create_prompt_with_history
)
from convo_agent.domain.prompts.template import NoPromptFunctions, PromptFunctions
from convo_agent.domain.prompts.tokenizer import Tokenizer
from convo_agent.domain.streaming.delivery_sink import DeliverySink, create_sink
from convo_agent.domain.tool.tool_executor import ActionOutputs, ToolExecutor
from convo_agent.domain.tool.tool_registry import ToolDefinition, ToolMap, ToolRegistry, ToolSchema
from convo_agent.infrastructure.observability.logging import agent_logger, bind_turn_context, metrics
from convo_agent.infrastructure.observability.tracing import TurnTracer

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_VARIABLE = "conversation.history"

# Graph steps taken per round: add_input, complete_prompt, dispatch_tools
_STEPS_PER_ROUND = 3


class RoundStatus(str, Enum):
    """Where a completion round goes next"""
    DISPATCH = "dispatch"
    CONTINUE = "continue"
    REPLY_SENT = "reply_sent"
    DONE = "done"
    CANCELLED = "cancelled"


class RoundState(TypedDict):
    """State threaded through the completion rounds of one turn"""
    context: TurnContext
    memory: MemoryFork
    sink: DeliverySink
    developer_message: str
    history_variable: str
    tools: ToolMap
    model: Optional[PromptCompletionModel]
    tokenizer: Optional[Tokenizer]
    pending_calls: List[ActionCall]
    action_outputs: Optional[ActionOutputs]
    text_sent: bool
    status: RoundStatus
    round_index: int


class ToolBasedPlanner(ABC):
    """Drives model rounds for a turn, running the tools the model asks for.

    Each turn forks the caller's state, loops model call -> tool dispatch
    until the model stops calling tools (or a tool sends the reply itself),
    and merges the fork back only if the turn settles successfully.
    Subclasses supply the developer message and may override the hooks.
    """

    def __init__(
        self,
        model: ModelConfiguration,
        model_factory: ModelFactory,
        tools: Optional[List[ToolDefinition]] = None,
        functions: Optional[PromptFunctions] = None,
        tracer: Optional[TurnTracer] = None,
    ):
        self.model_config = model
        self.model_factory = model_factory
        self.functions = functions or NoPromptFunctions()
        self.tracer = tracer or TurnTracer()
        self.registry = ToolRegistry()
        for tool in tools or []:
            self.tool(tool)
        self.executor = ToolExecutor(begin_tool=self.on_begin_tool, tracer=self.tracer)
        self.workflow = self._create_workflow()

    @property
    def tools(self) -> List[ToolSchema]:
        """Schemas of the registered tools"""
        return self.registry.get_schemas()

    def tool(self, tool: ToolDefinition) -> "ToolBasedPlanner":
        """Register a tool, replacing any tool with the same name"""
        self.registry.register_tool(tool)
        return self

    def _create_workflow(self):
        """Create the completion round graph"""

        workflow = StateGraph(RoundState)

        workflow.add_node("add_input", self.add_input_node)
        workflow.add_node("complete_prompt", self.complete_prompt_node)
        workflow.add_node("dispatch_tools", self.dispatch_tools_node)
        workflow.add_node("fold_outputs", self.fold_outputs_node)

        workflow.set_entry_point("add_input")
        workflow.add_edge("add_input", "complete_prompt")

        workflow.add_conditional_edges(
            "complete_prompt",
            self.route_after_completion,
            {
                "dispatch": "dispatch_tools",
                "done": END,
                "cancelled": END,
            }
        )

        workflow.add_conditional_edges(
            "dispatch_tools",
            self.route_after_dispatch,
            {
                "continue": "add_input",
                "reply_sent": "fold_outputs",
                "cancelled": END,
            }
        )

        workflow.add_edge("fold_outputs", END)

        return workflow.compile()

    async def begin_task(self, context: TurnContext, state: Memory, sink: Optional[DeliverySink] = None) -> Plan:
        return await self.run_turn(context, state, sink)

    async def continue_task(self, context: TurnContext, state: Memory, sink: Optional[DeliverySink] = None) -> Plan:
        return await self.run_turn(context, state, sink)

    async def run_turn(self, context: TurnContext, state: Memory, sink: Optional[DeliverySink] = None) -> Plan:
        """Run one turn against ``state``; always returns the empty plan.

        Pass ``sink`` to keep a handle for cancelling the turn from outside;
        otherwise one is created from the model configuration.
        """

        planner = type(self).__name__
        bind_turn_context(context.session_id, context.conversation_id, trace_id=uuid.uuid4().hex)
        if sink is None:
            sink = create_sink(context, self.model_config.stream, self.model_config.enable_feedback_loop)

        if not await self.on_before_turn(context, state, sink):
            agent_logger.log_turn_event("skipped", planner, context.session_id)
            return empty_plan()

        started = time.perf_counter()
        outcome = "failed"
        try:
            developer_message = await self.get_developer_message(context, state)
            history_variable = self.get_history_variable(context, state)
            tools = await self.get_tool_map(context, state)

            # Conversation changes are deferred until the turn settles
            memory = MemoryFork(state)

            agent_logger.log_turn_event("started", planner, context.session_id, {
                "history_variable": history_variable,
                "tools": list(tools.keys()),
            })

            with self.tracer.span("turn", input=context.text, metadata={"planner": planner}) as span:
                final_state = await self._run_rounds(RoundState(
                    context=context,
                    memory=memory,
                    sink=sink,
                    developer_message=developer_message,
                    history_variable=history_variable,
                    tools=tools,
                    model=None,
                    tokenizer=None,
                    pending_calls=[],
                    action_outputs=None,
                    text_sent=False,
                    status=RoundStatus.CONTINUE,
                    round_index=0,
                ))
                self.tracer.update(span, output={"status": final_state["status"].value})

            if final_state["status"] == RoundStatus.CANCELLED:
                outcome = "cancelled"
                return empty_plan()

            memory.merge_changes(state)
            outcome = "settled"
            agent_logger.log_turn_event("settled", planner, context.session_id, {
                "rounds": final_state["round_index"],
                "changed": memory.changed_paths,
            })
            return empty_plan()
        finally:
            metrics.record_latency("turn", (time.perf_counter() - started) * 1000, tags={"planner": planner})
            metrics.increment_counter(f"turns.{outcome}")
            if outcome == "cancelled":
                agent_logger.log_turn_event("cancelled", planner, context.session_id)
            elif outcome == "failed":
                agent_logger.log_turn_event("failed", planner, context.session_id)

            try:
                await self.on_after_turn(context, state, sink)
            finally:
                await sink.end_turn()

    async def _run_rounds(self, initial: RoundState) -> RoundState:
        max_rounds = self.model_config.max_rounds
        try:
            return await self.workflow.ainvoke(
                initial,
                config={"recursion_limit": max_rounds * _STEPS_PER_ROUND + 2},
            )
        except GraphRecursionError:
            raise RoundLimitError(max_rounds)

    async def add_input_node(self, state: RoundState) -> Dict[str, Any]:
        """Append pending tool outputs or the user input to history"""

        round_index = state["round_index"] + 1
        if round_index > self.model_config.max_rounds:
            logger.error("Round limit reached", max_rounds=self.model_config.max_rounds)
            raise RoundLimitError(self.model_config.max_rounds)

        model = self.model_factory.create_inference_model()
        tokenizer = self.model_factory.create_tokenizer()

        await add_input_to_history(
            state["context"],
            state["memory"],
            self.functions,
            tokenizer,
            state["history_variable"],
            self.model_config.completion.max_input_tokens,
            state["action_outputs"],
        )

        return {
            "model": model,
            "tokenizer": tokenizer,
            "action_outputs": None,
            "pending_calls": [],
            "round_index": round_index,
        }

    async def complete_prompt_node(self, state: RoundState) -> Dict[str, Any]:
        """Call the model and send any text it produced"""

        context = state["context"]
        memory = state["memory"]
        sink = state["sink"]
        tokenizer = state["tokenizer"]
        history_variable = state["history_variable"]

        actions = [tool.definition.to_openai_tool() for tool in state["tools"].values()]
        template = await create_prompt_with_history(
            context,
            memory,
            self.functions,
            tokenizer,
            state["developer_message"],
            history_variable,
            self.model_config.completion,
            actions,
        )

        with metrics.measure("round", tags={"round": str(state["round_index"])}):
            response = await state["model"].complete_prompt(context, memory, self.functions, tokenizer, template)

        if response.status == PromptResponseStatus.CANCELLED or sink.is_cancellation_requested:
            logger.info("Turn cancelled during model call", round_index=state["round_index"])
            return {"status": RoundStatus.CANCELLED}
        if response.status != PromptResponseStatus.SUCCESS:
            raise ModelCallError(response.status.value, response.error)

        message = response.message
        add_output_to_history(memory, history_variable, message)

        text_sent = state["text_sent"]
        if message.text:
            # Start a new paragraph if text already went out this turn
            text = f"\n\n{message.text}" if text_sent else message.text
            await self.on_send_text(context, memory, sink, text)
            text_sent = True

        calls = message.action_calls or []
        if not calls:
            return {"status": RoundStatus.DONE, "text_sent": text_sent}

        return {
            "status": RoundStatus.DISPATCH,
            "pending_calls": calls,
            "text_sent": text_sent,
        }

    async def dispatch_tools_node(self, state: RoundState) -> Dict[str, Any]:
        """Run every requested tool concurrently and collect their outputs"""

        sink = state["sink"]
        outputs, statuses = await self.executor.execute_all(
            state["context"],
            state["memory"],
            sink,
            state["tools"],
            state["pending_calls"],
        )

        if sink.is_cancellation_requested:
            logger.info("Turn cancelled during tool calls", round_index=state["round_index"])
            return {"status": RoundStatus.CANCELLED, "action_outputs": outputs}

        # A tool that replied directly ends the turn; the model gets no further round
        if ToolResponseStatus.REPLY_SENT in statuses:
            return {"status": RoundStatus.REPLY_SENT, "action_outputs": outputs}

        return {"status": RoundStatus.CONTINUE, "action_outputs": outputs}

    async def fold_outputs_node(self, state: RoundState) -> Dict[str, Any]:
        """Record the final round's tool outputs in history"""

        outputs = state["action_outputs"]
        for call_id, output in outputs.items():
            add_tool_call_to_history(state["memory"], state["history_variable"], call_id, output)
        return {"status": RoundStatus.DONE, "action_outputs": None}

    def route_after_completion(self, state: RoundState) -> str:
        status = state["status"]
        to_node = "dispatch_tools" if status == RoundStatus.DISPATCH else "end"
        agent_logger.log_round_transition(
            state["context"].session_id, state["round_index"], "complete_prompt", to_node, status.value
        )
        return status.value

    def route_after_dispatch(self, state: RoundState) -> str:
        status = state["status"]
        to_node = {
            RoundStatus.CONTINUE: "add_input",
            RoundStatus.REPLY_SENT: "fold_outputs",
        }.get(status, "end")
        agent_logger.log_round_transition(
            state["context"].session_id, state["round_index"], "dispatch_tools", to_node, status.value
        )
        return status.value

    @abstractmethod
    async def get_developer_message(self, context: TurnContext, state: Memory) -> str:
        """Developer message template for this turn"""

    def get_history_variable(self, context: TurnContext, state: Memory) -> str:
        return DEFAULT_HISTORY_VARIABLE

    async def get_tool_map(self, context: TurnContext, state: Memory) -> ToolMap:
        return self.registry.as_map()

    async def on_before_turn(self, context: TurnContext, state: Memory, sink: DeliverySink) -> bool:
        """Return False to skip the turn entirely"""
        return True

    async def on_after_turn(self, context: TurnContext, state: Memory, sink: DeliverySink) -> None:
        """Runs after every turn that got past ``on_before_turn``, even failed ones"""

    async def on_send_text(self, context: TurnContext, memory: Memory, sink: DeliverySink, text: str) -> None:
        await sink.queue_text_chunk(text)

    async def on_begin_tool(
        self,
        context: TurnContext,
        memory: Memory,
        sink: DeliverySink,
        tool: ToolDefinition,
        parameters: Optional[Dict[str, Any]],
    ) -> ToolResponse:
        return await tool.begin_tool(context, memory, sink, parameters)
