from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Tuple

from clusterplan.config import IDENTIFIER_RE

# `$${` escapes a literal `${`
INTERPOLATION_RE = re.compile(r"(\$?)\$\{([^}]*)\}")

SEGMENT_RE = re.compile(r"^(?:[A-Za-z_][A-Za-z0-9_-]*|\d+)$")


@dataclass(frozen=True)
class Reference:
    """
    A parsed ``${...}`` reference.

    ``kind`` is one of "var", "module" or "resource". ``target`` is the declaration the
    reference points at (e.g. "var.region", "module.workers", "subnet.public") and
    ``path`` is what follows it.
    """

    kind: str
    target: str
    path: Tuple[str, ...]
    text: str


def parse_reference(text: str) -> Reference:
    """
    Parses the body of a ``${...}`` interpolation.

    Args:
        text (str): The body, e.g. "cluster.eks_cluster.name".

    Returns:
        Reference: The parsed reference.

    Raises:
        ValueError: If the body is not a reference.
    """
    text = text.strip()
    parts = text.split(".")
    if not text or not all(SEGMENT_RE.match(p) for p in parts):
        raise ValueError(f"Malformed reference '${{{text}}}'")

    head = parts[0]
    if head == "var":
        if len(parts) < 2 or not IDENTIFIER_RE.match(parts[1]):
            raise ValueError(f"Malformed variable reference '${{{text}}}'")
        return Reference("var", f"var.{parts[1]}", tuple(parts[2:]), text)

    if head == "module":
        if len(parts) < 3:
            raise ValueError(
                f"Module references must name an output: '${{{text}}}'"
            )
        return Reference("module", f"module.{parts[1]}", tuple(parts[2:]), text)

    if len(parts) < 2 or not IDENTIFIER_RE.match(head):
        raise ValueError(f"Malformed reference '${{{text}}}'")
    return Reference("resource", f"{head}.{parts[1]}", tuple(parts[2:]), text)


@dataclass(frozen=True)
class Unknown:
    """
    A value that is only known once the apply engine has created a resource.

    ``address`` and ``path`` identify the resource attribute when the value is a
    direct attribute reference. ``parts`` holds the pieces of an interpolated
    string, so the string can be rendered once every piece is known.
    """

    expression: str
    address: Optional[str] = None
    path: Tuple[str, ...] = ()
    parts: Tuple[Any, ...] = ()

    def __str__(self) -> str:
        return "(known after apply)"


def is_known(value: Any) -> bool:
    """
    Returns whether a value contains no Unknown anywhere.
    """
    if isinstance(value, Unknown):
        return False
    if isinstance(value, dict):
        return all(is_known(v) for v in value.values())
    if isinstance(value, list):
        return all(is_known(v) for v in value)
    return True


def find_references(value: Any) -> Iterator[str]:
    """
    Yields the body of every ``${...}`` reference found in a value, recursively.
    """
    if isinstance(value, str):
        for match in INTERPOLATION_RE.finditer(value):
            if not match.group(1):
                yield match.group(2)
    elif isinstance(value, dict):
        for item in value.values():
            yield from find_references(item)
    elif isinstance(value, list):
        for item in value:
            yield from find_references(item)


def find_unclosed(value: Any) -> Iterator[str]:
    """
    Yields every string in a value that opens a ``${`` it never closes.
    """
    if isinstance(value, str):
        rest = INTERPOLATION_RE.sub("", value).replace("$${", "")
        if "${" in rest:
            yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from find_unclosed(item)
    elif isinstance(value, list):
        for item in value:
            yield from find_unclosed(item)


def to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def join_parts(parts: List[Any], expression: str) -> Any:
    """
    Joins the pieces of an interpolated string, or returns an Unknown if any is unknown.
    """
    if all(is_known(p) for p in parts):
        return "".join(to_string(p) for p in parts)
    return Unknown(expression, parts=tuple(parts))


def interpolate(value: Any, lookup: Callable[[str], Any]) -> Any:
    """
    Replaces every ``${...}`` reference in a value.

    A string that is exactly one reference takes the referenced value, type
    included. References inside a longer string are rendered into it.

    Args:
        value (Any): The value, possibly nested lists and maps.
        lookup (Callable[[str], Any]): Returns the value of a reference body.

    Returns:
        Any: The interpolated value.
    """
    if isinstance(value, dict):
        return {k: interpolate(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate(v, lookup) for v in value]
    if not isinstance(value, str):
        return value

    match = INTERPOLATION_RE.fullmatch(value)
    if match and not match.group(1):
        return lookup(match.group(2))

    parts: List[Any] = []
    rendered: List[str] = []
    pos = 0
    for match in INTERPOLATION_RE.finditer(value):
        literal = value[pos : match.start()]
        pos = match.end()
        if match.group(1):
            literal += "${" + match.group(2) + "}"
            parts.append(literal)
            rendered.append(literal)
            continue
        parts.append(literal)
        rendered.append(literal)
        resolved = lookup(match.group(2))
        parts.append(resolved)
        if isinstance(resolved, Unknown):
            rendered.append("${" + resolved.expression + "}")
        else:
            rendered.append(to_string(resolved))
    parts.append(value[pos:])
    rendered.append(value[pos:])

    return join_parts(parts, "".join(rendered))


def get_path(value: Any, path: Tuple[str, ...]) -> Any:
    """
    Indexes into nested maps and lists.

    Raises:
        KeyError: If a key or index along the path does not exist.
    """
    for segment in path:
        if isinstance(value, Unknown):
            return value
        if isinstance(value, dict) and segment in value:
            value = value[segment]
        elif isinstance(value, list) and segment.isdigit() and int(segment) < len(value):
            value = value[int(segment)]
        else:
            raise KeyError(segment)
    return value
