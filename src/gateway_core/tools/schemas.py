"""Parameter validation against a tool's JSON Schema (object subset)."""

from __future__ import annotations

from typing import Any

_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
    "null": (type(None),),
}


def _matches(value: Any, expected: str) -> bool:
    types = _TYPES.get(expected)
    if types is None:
        return True
    # bool is an int subclass; never accept it for numeric types
    if expected in ("number", "integer") and isinstance(value, bool):
        return False
    return isinstance(value, types)


def validate_parameters(schema: dict[str, Any], parameters: Any) -> tuple[bool, list[str]]:
    """Validate *parameters* against *schema*. Returns (valid, errors).

    Supports ``type: object``, ``required``, per-property ``type`` and
    ``enum``, and ``additionalProperties: false``. An empty schema accepts
    anything.
    """
    if not schema:
        return True, []

    errors: list[str] = []
    if schema.get("type", "object") == "object" and not isinstance(parameters, dict):
        errors.append(f"Expected object, got {type(parameters).__name__}")
        return False, errors

    for name in schema.get("required", []):
        if name not in parameters:
            errors.append(f"Missing required field: {name}")

    props: dict[str, Any] = schema.get("properties", {})
    for key, val in parameters.items():
        if key not in props:
            if schema.get("additionalProperties", True) is False:
                errors.append(f"Unexpected field: {key}")
            continue
        prop = props[key]
        prop_type = prop.get("type")
        if isinstance(prop_type, str) and not _matches(val, prop_type):
            errors.append(f"Field '{key}': expected {prop_type}, got {type(val).__name__}")
        elif isinstance(prop_type, list) and not any(_matches(val, t) for t in prop_type):
            errors.append(f"Field '{key}': expected one of {prop_type}, got {type(val).__name__}")
        if "enum" in prop and val not in prop["enum"]:
            errors.append(f"Field '{key}': {val!r} not in {prop['enum']}")

    return len(errors) == 0, errors
