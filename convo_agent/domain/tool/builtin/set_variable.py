from typing import Dict, Any
import structlog

from convo_agent.domain.models.messages import ToolResponse, ToolResponseStatus
from ..tool_registry import ToolDefinition, ToolSchema

logger = structlog.get_logger(__name__)


class SetVariableTool(ToolDefinition):
    """Lets the model set or clear program variables.

    Variables live in a ``variables`` dict under the ``user`` or
    ``conversation`` scope. An empty value deletes the variable.
    """

    definition = ToolSchema(
        name="set_variable",
        description="Sets a program variable to a value. Both user and conversation scoped variables can be set.",
        strict=True,
        parameters={
            "type": "object",
            "required": ["scope", "name", "value"],
            "properties": {
                "scope": {
                    "type": "string",
                    "enum": ["conversation", "user"],
                    "description": (
                        "The scope in which the variable is set. User variables are visible only to the user "
                        "but for all conversations while conversation variables are visible to all users for "
                        "the current conversation."
                    ),
                },
                "name": {
                    "type": "string",
                    "description": "The name of the variable to set.",
                },
                "value": {
                    "type": "string",
                    "description": "The value to assign to the variable. Empty string will clear the variable.",
                },
            },
            "additionalProperties": False,
        },
    )

    async def begin_tool(self, context, memory, sink, parameters) -> ToolResponse:
        parameters = parameters or {}
        scope = "user" if parameters.get("scope") == "user" else "conversation"
        variable_name = f"{scope}.variables"
        variables: Dict[str, Any] = memory.get_value(variable_name) or {}

        name = parameters.get("name", "")
        value = parameters.get("value")
        status = ToolResponseStatus.COMPLETED
        if value:
            variables[name] = value
            content = "variable updated"
        elif name in variables:
            del variables[name]
            content = "variable deleted"
        else:
            status = ToolResponseStatus.ERROR
            content = "variable not found"

        memory.set_value(variable_name, variables)
        logger.debug("Program variable set", scope=scope, name=name, result=content)
        return ToolResponse(status=status, content=content)
