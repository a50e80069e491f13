# Argument parsing & schema validation
from typing import Dict, Any, List, Optional
import json

import jsonschema
from pydantic import BaseModel, Field


class ToolArgumentError(ValueError):
    """Raised when a raw argument payload can't be turned into parameters"""


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


def parse_tool_arguments(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse the model's raw argument text into a parameter dict"""

    if raw is None or not raw.strip():
        return None

    try:
        parameters = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ToolArgumentError(str(e)) from e

    if not isinstance(parameters, dict):
        raise ToolArgumentError(f"expected a JSON object but got {type(parameters).__name__}")

    return parameters


class ToolParameterValidator:
    @staticmethod
    def validate_tool_call(schema: Optional[Dict[str, Any]], parameters: Optional[Dict[str, Any]]) -> ValidationResult:
        if not schema:
            return ValidationResult(is_valid=True)

        validator_cls = jsonschema.validators.validator_for(schema)
        validator = validator_cls(schema)
        errors = sorted(validator.iter_errors(parameters or {}), key=lambda e: list(e.path))
        if not errors:
            return ValidationResult(is_valid=True)

        return ValidationResult(
            is_valid=False,
            errors=[corrective_action(error) for error in errors],
        )


def corrective_action(error: jsonschema.ValidationError) -> str:
    """Describe how the model should fix a schema violation"""

    prop = ".".join(str(part) for part in error.path) or "instance"
    target = "the JSON object" if prop == "instance" else f'"{prop}"'
    value = error.validator_value

    if error.validator == "type":
        arg = ",".join(value) if isinstance(value, list) else str(value)
        return f'convert {target} to a {arg}'
    if error.validator == "anyOf":
        return f"convert {target} to one of the allowed types in the provided schema."
    if error.validator == "additionalProperties":
        extras = [key for key in error.instance if key not in error.schema.get("properties", {})]
        return f'remove the "{",".join(extras)}" property from {target}'
    if error.validator == "required":
        missing = [key for key in value if key not in (error.instance or {})]
        return f'add the "{",".join(missing)}" property to {target}'
    if error.validator == "enum":
        return f'change the {target} property to be one of these values: {", ".join(map(str, value))}'
    if error.validator == "const":
        return f"change the {target} property to be {value}"
    if error.validator == "uniqueItems":
        return f"remove all duplicate items from {target}"
    if error.validator == "format":
        return f"change the {target} property to be a {value}"
    return f"{target} {error.message}. Fix that"
