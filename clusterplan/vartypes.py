from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Optional

PRIMITIVE_TYPES = ("string", "number", "bool", "any")
COLLECTION_TYPES = ("list", "map")

_COLLECTION_RE = re.compile(r"^(list|map)\((.+)\)$")


@dataclass(frozen=True)
class TypeSpec:
    """
    A parsed variable type expression such as ``string`` or ``map(list(string))``.
    """

    kind: str
    element: Optional["TypeSpec"] = None

    def __str__(self) -> str:
        if self.kind in COLLECTION_TYPES:
            return f"{self.kind}({self.element or 'any'})"
        return self.kind


ANY = TypeSpec("any")


def parse_type(expr: str) -> TypeSpec:
    """
    Parses a variable type expression.

    Args:
        expr (str): The type expression, e.g. "string", "list", "list(number)".

    Returns:
        TypeSpec: The parsed type.

    Raises:
        ValueError: If the expression is not a supported type.
    """
    expr = expr.strip()
    if expr in PRIMITIVE_TYPES:
        return TypeSpec(expr)
    if expr in COLLECTION_TYPES:
        return TypeSpec(expr, ANY)

    match = _COLLECTION_RE.match(expr)
    if not match:
        raise ValueError(f"Unsupported variable type '{expr}'")

    return TypeSpec(match.group(1), parse_type(match.group(2)))


def type_name_of(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "map"
    return type(value).__name__


def check_type(value: Any, spec: TypeSpec, path: str) -> List[str]:
    """
    Checks a value against a type, returning every mismatch found.

    A null value satisfies any type. Elements of collections are checked recursively
    and reported with their index or key appended to ``path``.
    """
    if value is None or spec.kind == "any":
        return []

    actual = type_name_of(value)
    if spec.kind in PRIMITIVE_TYPES:
        if actual != spec.kind:
            return [f"{path}: expected {spec}, got {actual}"]
        return []

    if actual != spec.kind:
        return [f"{path}: expected {spec}, got {actual}"]

    element = spec.element or ANY
    errors: List[str] = []
    if spec.kind == "list":
        for i, item in enumerate(value):
            errors.extend(check_type(item, element, f"{path}[{i}]"))
    else:
        for key, item in value.items():
            if not isinstance(key, str):
                errors.append(f"{path}: map keys must be strings, got {key!r}")
                continue
            errors.extend(check_type(item, element, f"{path}[{key!r}]"))
    return errors
