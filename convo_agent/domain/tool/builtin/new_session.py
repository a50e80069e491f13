from typing import List
import structlog

from convo_agent.domain.models.messages import Message, MessageRole, ToolResponse, ToolResponseStatus
from ..tool_registry import ToolDefinition, ToolSchema

logger = structlog.get_logger(__name__)

HISTORY_VARIABLE_NAME = "temp.history_variable_name"
DEFAULT_HISTORY_VARIABLE = "conversation.history"


class NewSessionTool(ToolDefinition):
    """Clears conversation history up to the current request and resets conversation variables"""

    definition = ToolSchema(
        name="new_session",
        description=(
            "Starts a new session by clearing the conversation history and any set CONVERSATION_VARIABLES. "
            "This will not clear USER_VARIABLES."
        ),
    )

    async def begin_tool(self, context, memory, sink, parameters) -> ToolResponse:
        history_variable = memory.get_value(HISTORY_VARIABLE_NAME) or DEFAULT_HISTORY_VARIABLE
        history: List[Message] = memory.get_value(history_variable) or []

        # Drop everything before the current request. The assistant message
        # that called this tool stays so its tool reply remains paired.
        last_user_index = None
        for index, message in enumerate(history):
            if message.role == MessageRole.USER:
                last_user_index = index
        if last_user_index is None:
            return ToolResponse(status=ToolResponseStatus.ERROR, content="Error: No user messages found in history.")

        memory.set_value(history_variable, history[last_user_index:])
        memory.set_value("conversation.variables", {})
        logger.info("New session started", history_variable=history_variable, dropped=last_user_index)
        return ToolResponse(status=ToolResponseStatus.COMPLETED, content="New session started.")
