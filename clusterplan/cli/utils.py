from __future__ import annotations

from typing import Dict, List, Optional

import typer

from clusterplan.errors import ResolutionError
from clusterplan.inputs import parse_var_assignment
from clusterplan.logger import logger
from clusterplan.resolver import Resolver
from clusterplan.state import State, StateStore


def process_var_assignments(assignments: List[str]) -> Dict[str, str]:
    """
    Parses ``--var name=value`` options into a mapping.

    Args:
        assignments (List[str]): The raw option values.

    Returns:
        Dict[str, str]: Variable name to raw value.

    Raises:
        ValueError: If an assignment is malformed.
        typer.Exit: If a variable is assigned more than once.
    """
    values: Dict[str, str] = {}
    for assignment in assignments:
        name, value = parse_var_assignment(assignment)
        if name in values:
            logger.error(f"Variable '{name}' is assigned more than once.")
            raise typer.Exit(1)
        values[name] = value
    return values


def load_resolver(
    directory: str, assignments: List[str], var_files: List[str]
) -> Resolver:
    """
    Loads, binds, validates and resolves the configuration in a directory.

    Any resolution failure is logged and ends the command with exit code 1.

    Args:
        directory (str): The directory of the root declaration documents.
        assignments (List[str]): ``name=value`` variable overrides.
        var_files (List[str]): Extra vars files, lowest precedence first.

    Returns:
        Resolver: A resolver whose references are resolved.
    """
    try:
        overrides = process_var_assignments(assignments)
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    try:
        resolver = Resolver.load([directory])
        resolver.bind_inputs(overrides=overrides, var_files=var_files)
        resolver.validate()
        resolver.resolve_references()
    except ResolutionError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    return resolver


def load_state(state_file: Optional[str]) -> State:
    try:
        return StateStore(state_file).load()
    except ResolutionError as e:
        logger.error(str(e))
        raise typer.Exit(1)
