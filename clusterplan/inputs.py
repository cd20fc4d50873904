from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from clusterplan.config import Variable, load_yaml
from clusterplan.constants import VAR_ENV_PREFIX, VARS_FILE_SUFFIXES
from clusterplan.errors import MissingRequiredInputError, ParseError, ValidationError
from clusterplan.logger import logger
from clusterplan.vartypes import TypeSpec


def parse_var_assignment(assignment: str) -> Tuple[str, str]:
    """
    Splits a ``name=value`` assignment as given on the command line.

    Raises:
        ValueError: If the assignment has no '=' or the name is empty.
    """
    name, sep, value = assignment.partition("=")
    name = name.strip()
    if not sep or not name:
        raise ValueError(f"Invalid variable assignment '{assignment}', expected name=value")
    return name, value


def coerce_raw(raw: Any, spec: TypeSpec) -> Any:
    """
    Converts a raw string value into the shape its declared type expects.

    Strings stay as they are for string variables. For other types the string is
    read as a YAML flow value, e.g. ``["a", "b"]`` or ``{k: v}``. A string that does
    not parse is kept, so type validation can report it.
    """
    if not isinstance(raw, str) or spec.kind == "string":
        return raw
    try:
        value = load_yaml(raw)
    except ParseError:
        return raw
    if spec.kind == "any" and not isinstance(value, (list, dict)):
        return raw
    return value


def read_vars_file(path: str) -> Dict[str, Any]:
    """
    Reads a vars file: a YAML (or JSON) mapping of variable name to value.

    Raises:
        ParseError: If the file cannot be read or is not a mapping.
    """
    try:
        with open(path, "r") as file:
            data = load_yaml(file.read(), source=path)
    except OSError as e:
        raise ParseError(f"Cannot read vars file: {e.strerror}", path)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError("A vars file must be a mapping of variable names to values", path)
    return data


def discover_vars_files(directory: str) -> List[str]:
    """
    Returns the vars files found in a configuration directory, sorted by name.
    """
    if not os.path.isdir(directory):
        return []
    return [
        os.path.join(directory, f)
        for f in sorted(os.listdir(directory))
        if f.endswith(VARS_FILE_SUFFIXES)
    ]


def bind_inputs(
    variables: Mapping[str, Variable],
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    var_files: Sequence[str] = (),
) -> Dict[str, Any]:
    """
    Resolves a concrete value for every declared variable.

    The first source that supplies a value wins:
    explicit override > environment variable ``CLUSTERPLAN_VAR_<name>`` > vars files
    (a later file wins over an earlier one) > declared default.

    Args:
        variables (Mapping[str, Variable]): The declared variables.
        overrides (Optional[Mapping[str, Any]]): Explicit values. String values of
            non-string variables are parsed, as for the command line.
        environ (Optional[Mapping[str, str]]): The environment. Defaults to os.environ.
        var_files (Sequence[str]): Paths of vars files, lowest precedence first.

    Returns:
        Dict[str, Any]: The bound value of every variable.

    Raises:
        ValidationError: If an explicit override names an undeclared variable,
            or is null for a variable without a default.
        MissingRequiredInputError: If required variables received no value, or only
            a null one from the environment or a vars file.
    """
    overrides = dict(overrides or {})
    environ = os.environ if environ is None else environ

    undeclared = sorted(set(overrides) - set(variables))
    if undeclared:
        raise ValidationError(
            [f"var.{name}: no variable named '{name}' is declared" for name in undeclared]
        )

    file_values: Dict[str, Any] = {}
    for path in var_files:
        for name, value in read_vars_file(path).items():
            if name not in variables:
                logger.warning(
                    f"Value for undeclared variable '{name}' in {path} is ignored."
                )
                continue
            file_values[name] = value

    bound: Dict[str, Any] = {}
    missing: List[str] = []
    nulls: List[str] = []
    for name in sorted(variables):
        variable = variables[name]
        env_name = f"{VAR_ENV_PREFIX}{name}"

        if name in overrides:
            value, origin = coerce_raw(overrides[name], variable.type_spec), "override"
        elif env_name in environ:
            value, origin = coerce_raw(environ[env_name], variable.type_spec), env_name
        elif name in file_values:
            value, origin = file_values[name], "vars file"
        elif not variable.required:
            value, origin = variable.default, "default"
        else:
            missing.append(name)
            continue

        if value is None and variable.required:
            # An empty value does not satisfy a variable without a default
            if origin == "override":
                nulls.append(f"var.{name}: a value is required, got null")
            else:
                missing.append(name)
            continue

        shown = "(sensitive)" if variable.sensitive else repr(value)
        logger.debug(f"var.{name} = {shown} from {origin}")
        bound[name] = value

    if missing:
        raise MissingRequiredInputError(missing)
    if nulls:
        raise ValidationError(nulls)

    return bound
