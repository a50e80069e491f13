from typing import Optional


class ConvoAgentError(Exception):
    """Base class for all orchestration errors"""


class InvalidMemoryPathError(ConvoAgentError):
    """Raised when a memory path can't be resolved to a scope and name"""

    def __init__(self, path: str, reason: str = "invalid path"):
        super().__init__(f"Invalid memory path '{path}': {reason}")
        self.path = path


class PromptBudgetError(ConvoAgentError):
    """Raised when the fixed prompt overhead leaves too little room for history"""

    def __init__(self, available_tokens: int, minimum_tokens: int):
        super().__init__("Not enough tokens for conversation history")
        self.available_tokens = available_tokens
        self.minimum_tokens = minimum_tokens


class ModelCallError(ConvoAgentError):
    """Raised when the model returns anything other than success or cancelled"""

    def __init__(self, status: str, error: Optional[BaseException] = None):
        message = f"AI request failed with status '{status}'"
        if error is not None:
            message = f"{message}: {error}"
        super().__init__(message)
        self.status = status
        self.error = error


class ToolProtocolError(ConvoAgentError):
    """Raised when a tool returns a status outside the tool response contract"""


class RoundLimitError(ConvoAgentError):
    """Raised when a turn needs more model rounds than allowed"""

    def __init__(self, max_rounds: int):
        super().__init__(f"Turn exceeded the maximum of {max_rounds} model rounds")
        self.max_rounds = max_rounds


class TemplateRenderError(ConvoAgentError):
    """Raised when a prompt template references something that can't be rendered"""
