from typing import Dict, List, Any, Optional, Callable, Iterator, Union
from abc import ABC, abstractmethod
import asyncio
import inspect

from pydantic import BaseModel, Field
import structlog

from convo_agent.domain.models.messages import ToolResponse, ToolResponseStatus

logger = structlog.get_logger(__name__)


class ToolSchema(BaseModel):
    """Schema the model sees for a tool"""
    name: str = Field(description="Unique tool name")
    description: str = Field(description="What the tool does and when to use it")
    parameters: Optional[Dict[str, Any]] = Field(None, description="JSON schema for the arguments")
    strict: bool = Field(default=False, description="Validate arguments against the schema before calling")

    model_config = {"frozen": True}

    def to_openai_tool(self) -> Dict[str, Any]:
        """Function-calling tool definition in the OpenAI wire format"""
        function: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters or {"type": "object", "properties": {}},
        }
        if self.strict:
            function["strict"] = True
        return {"type": "function", "function": function}


class ToolDefinition(ABC):
    """A named capability the model may invoke"""

    definition: ToolSchema

    @property
    def name(self) -> str:
        return self.definition.name

    @abstractmethod
    async def begin_tool(
        self,
        context: Any,
        memory: Any,
        sink: Any,
        parameters: Optional[Dict[str, Any]],
    ) -> ToolResponse:
        """Run the tool and report how it ended"""


ToolHandler = Callable[..., Any]


class FunctionTool(ToolDefinition):
    """Tool backed by a plain callable.

    The handler receives ``(context, memory, sink, parameters)`` and may be
    sync or async. Returning a string (or None) counts as a completed call.
    Sync handlers run in a worker thread.
    """

    def __init__(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        parameters: Optional[Dict[str, Any]] = None,
        strict: bool = False,
    ):
        self.definition = ToolSchema(
            name=name,
            description=description,
            parameters=parameters,
            strict=strict,
        )
        self.handler = handler

    async def begin_tool(self, context, memory, sink, parameters) -> ToolResponse:
        if inspect.iscoroutinefunction(self.handler):
            result = await self.handler(context, memory, sink, parameters)
        else:
            result = await asyncio.to_thread(self.handler, context, memory, sink, parameters)

        if isinstance(result, ToolResponse):
            return result
        return ToolResponse(
            status=ToolResponseStatus.COMPLETED,
            content=None if result is None else str(result),
        )


ToolMap = Dict[str, ToolDefinition]


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self, tools: Optional[List[ToolDefinition]] = None):
        self.tools: ToolMap = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a tool, replacing any tool with the same name"""

        if tool.name in self.tools:
            logger.warning("Replacing registered tool", tool_name=tool.name)
        self.tools[tool.name] = tool

    def unregister_tool(self, name: str) -> Optional[ToolDefinition]:
        return self.tools.pop(name, None)

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return self.tools.get(name)

    def get_schemas(self) -> List[ToolSchema]:
        """Schemas of all registered tools in registration order"""
        return [tool.definition for tool in self.tools.values()]

    def as_map(self) -> ToolMap:
        """Snapshot of the registry safe to hand to a single turn"""
        return dict(self.tools)

    def __contains__(self, name: object) -> bool:
        return name in self.tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self.tools.values())

    def __len__(self) -> int:
        return len(self.tools)


def tool(
    name: str,
    description: str,
    parameters: Optional[Dict[str, Any]] = None,
    strict: bool = False,
) -> Callable[[ToolHandler], FunctionTool]:
    """Decorator turning a handler function into a ``FunctionTool``"""

    def wrap(handler: ToolHandler) -> FunctionTool:
        return FunctionTool(name, description, handler, parameters=parameters, strict=strict)

    return wrap
