from __future__ import annotations

from io import StringIO
from typing import Any, Dict

from ruamel.yaml import YAML


def to_yaml(obj: Dict[Any, Any]) -> str:
    """
    Converts an dictionary to a YAML string.

    Args:
        obj (dict): The dictionary to be converted.

    Returns:
        str: The YAML string.
    """
    yaml = YAML()
    yaml.indent(mapping=2, sequence=4, offset=2)
    buf = StringIO()
    yaml.dump(obj, buf)
    return buf.getvalue()


def write_file(path: str, content: str) -> None:
    """
    Writes a string to a file, replacing its content.
    """
    with open(path, "w") as f:
        f.write(content)
