# Concurrent tool dispatch
from typing import Dict, List, Any, Optional, Callable, Awaitable, Tuple
import asyncio
import time
import structlog

from convo_agent.domain.models.errors import ToolProtocolError
from convo_agent.domain.models.messages import ActionCall, ToolResponse, ToolResponseStatus
from convo_agent.infrastructure.observability.logging import agent_logger, metrics
from convo_agent.infrastructure.observability.tracing import TurnTracer
from .tool_registry import ToolDefinition, ToolMap
from .tool_validator import ToolArgumentError, ToolParameterValidator, parse_tool_arguments

logger = structlog.get_logger(__name__)

BeginToolHook = Callable[[Any, Any, Any, ToolDefinition, Optional[Dict[str, Any]]], Awaitable[ToolResponse]]


class ActionOutputs:
    """Tool outputs for one round, keyed by call id.

    Each id is written at most once. ``items`` yields outputs in the order the
    model issued the calls, whatever order they completed in.
    """

    def __init__(self, calls: Optional[List[ActionCall]] = None):
        self._order = [call.id for call in calls or []]
        self._outputs: Dict[str, str] = {}

    def set(self, call_id: str, output: str) -> None:
        if call_id in self._outputs:
            logger.warning("Ignoring duplicate output for tool call", call_id=call_id)
            return
        self._outputs[call_id] = output

    def get(self, call_id: str) -> Optional[str]:
        return self._outputs.get(call_id)

    def items(self) -> List[Tuple[str, str]]:
        ordered = [(call_id, self._outputs[call_id]) for call_id in self._order if call_id in self._outputs]
        extra = [(call_id, output) for call_id, output in self._outputs.items() if call_id not in self._order]
        return ordered + extra

    def as_dict(self) -> Dict[str, str]:
        return dict(self.items())

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._outputs

    def __len__(self) -> int:
        return len(self._outputs)


async def default_begin_tool(context, memory, sink, tool: ToolDefinition, parameters) -> ToolResponse:
    return await tool.begin_tool(context, memory, sink, parameters)


class ToolExecutor:
    """Runs the tool calls of one model response and records their outputs"""

    def __init__(self, begin_tool: Optional[BeginToolHook] = None, tracer: Optional[TurnTracer] = None):
        self.begin_tool = begin_tool or default_begin_tool
        self.tracer = tracer or TurnTracer()

    async def execute_all(
        self,
        context: Any,
        memory: Any,
        sink: Any,
        tools: ToolMap,
        calls: List[ActionCall],
    ) -> Tuple[ActionOutputs, List[ToolResponseStatus]]:
        """Run every call concurrently and wait for all of them to settle"""

        outputs = ActionOutputs(calls)
        statuses = await asyncio.gather(*[
            self.execute(context, memory, sink, tools, call, outputs)
            for call in calls
        ])
        return outputs, list(statuses)

    async def execute(
        self,
        context: Any,
        memory: Any,
        sink: Any,
        tools: ToolMap,
        call: ActionCall,
        outputs: ActionOutputs,
    ) -> ToolResponseStatus:
        """Run a single call; never raises for tool-side failures"""

        session_id = getattr(context, "session_id", "")
        started = time.perf_counter()
        status, error = await self._execute(context, memory, sink, tools, call, outputs)
        duration_ms = (time.perf_counter() - started) * 1000

        metrics.record_latency("tool_execution", duration_ms, tags={"tool": call.name})
        metrics.increment_counter(f"tool_calls.{status.value}")
        agent_logger.log_tool_execution(
            tool_name=call.name,
            call_id=call.id,
            session_id=session_id,
            status=status.value,
            duration_ms=duration_ms,
            error=error,
        )
        return status

    async def _execute(self, context, memory, sink, tools, call, outputs) -> Tuple[ToolResponseStatus, Optional[str]]:
        name = call.name
        tool = tools.get(name)
        if tool is None:
            outputs.set(call.id, f"A tool named '{name}' wasn't found.")
            return ToolResponseStatus.ERROR, "tool not found"

        try:
            parameters = parse_tool_arguments(call.arguments)
        except ToolArgumentError as e:
            outputs.set(call.id, f"Error parsing parameters for tool '{name}': {e}")
            return ToolResponseStatus.ERROR, str(e)

        try:
            if tool.definition.strict:
                # A malformed schema raises here and is reported like any tool failure
                result = ToolParameterValidator.validate_tool_call(tool.definition.parameters, parameters)
                if not result.is_valid:
                    fixes = "\n".join(result.errors)
                    outputs.set(call.id, f"Error calling tool '{name}': invalid parameters. Fix them and try again:\n{fixes}")
                    return ToolResponseStatus.ERROR, "schema validation failed"

            with self.tracer.span("tool_execution", input=parameters, metadata={"tool_name": name, "call_id": call.id}) as span:
                response = await self.begin_tool(context, memory, sink, tool, parameters)
                status = self._record_response(name, call.id, response, sink, outputs)
                self.tracer.update(span, output=outputs.get(call.id), metadata={"status": status.value})
            return status, None
        except Exception as e:
            logger.exception("Tool call failed", tool_name=name, call_id=call.id)
            outputs.set(call.id, f"Error calling tool '{name}': {e}")
            return ToolResponseStatus.ERROR, str(e)

    def _record_response(self, name: str, call_id: str, response: Any, sink: Any, outputs: ActionOutputs) -> ToolResponseStatus:
        raw_status = getattr(response, "status", None)
        try:
            status = ToolResponseStatus(raw_status)
        except ValueError:
            raise ToolProtocolError(f"Unexpected tool response status: {raw_status}")

        if status in (ToolResponseStatus.COMPLETED, ToolResponseStatus.REPLY_SENT):
            outputs.set(call_id, response.content or "tool completed")
        elif status == ToolResponseStatus.CANCELLED:
            # A tool cancelling on its own is reported like a completion;
            # when the whole turn is cancelled its output is dropped.
            if not sink.is_cancellation_requested:
                outputs.set(call_id, "tool was cancelled")
        else:
            outputs.set(call_id, f"Error calling tool '{name}': {response.content}")

        return status
