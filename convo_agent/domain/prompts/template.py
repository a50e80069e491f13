from typing import Any, List, Protocol
import json
import re

from pydantic import BaseModel

from convo_agent.domain.models.errors import TemplateRenderError
from convo_agent.domain.memory.memory_fork import Memory
from .tokenizer import Tokenizer

# {{$temp.persona}} or {{functionName arg1 "arg two"}}
_TEMPLATE_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_ARGUMENT_PATTERN = re.compile(r"\"([^\"]*)\"|'([^']*)'|`([^`]*)`|(\S+)")


class PromptFunctions(Protocol):
    """Functions callable from a prompt template"""

    def has_function(self, name: str) -> bool:
        ...

    async def invoke_function(
        self, name: str, context: Any, memory: Memory, tokenizer: Tokenizer, args: List[str]
    ) -> Any:
        ...


class NoPromptFunctions:
    """Function registry with nothing in it"""

    def has_function(self, name: str) -> bool:
        return False

    async def invoke_function(
        self, name: str, context: Any, memory: Memory, tokenizer: Tokenizer, args: List[str]
    ) -> Any:
        raise TemplateRenderError(f"Function '{name}' is not defined.")


def value_to_text(value: Any) -> str:
    """Render a memory value the way it should appear in a prompt"""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json(exclude_none=True)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=_json_default, ensure_ascii=False)
    return str(value)


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    return str(value)


def _parse_arguments(text: str) -> List[str]:
    return [next(group for group in match.groups() if group is not None)
            for match in _ARGUMENT_PATTERN.finditer(text)]


async def render_template(
    template: str,
    context: Any,
    memory: Memory,
    functions: PromptFunctions,
    tokenizer: Tokenizer,
) -> str:
    """Substitute ``{{$path}}`` variables and ``{{function args}}`` calls"""

    parts: List[str] = []
    position = 0
    for match in _TEMPLATE_PATTERN.finditer(template):
        parts.append(template[position:match.start()])
        position = match.end()

        expression = match.group(1).strip()
        if not expression:
            continue

        if expression.startswith("$"):
            parts.append(value_to_text(memory.get_value(expression[1:])))
            continue

        tokens = _parse_arguments(expression)
        name, args = tokens[0], tokens[1:]
        if not functions.has_function(name):
            raise TemplateRenderError(f"Function '{name}' is not defined.")
        result = await functions.invoke_function(name, context, memory, tokenizer, args)
        parts.append(value_to_text(result))

    parts.append(template[position:])
    return "".join(parts)
