from __future__ import annotations

import json
from typing import List, Optional

import typer
from tabulate import tabulate

from clusterplan.cli.utils import load_resolver, load_state
from clusterplan.errors import ResolutionError
from clusterplan.logger import logger
from clusterplan.plan import display_value
from clusterplan.utils import to_yaml, write_file

DIRECTORY_HELP = (
    "Path to the directory holding the declaration documents. Every *.yaml "
    "and *.yml file in it is loaded, except vars files (*.vars.yaml)."
)

VAR_HELP = "Set a variable, e.g. --var cluster_name=demo. Can be repeated."

VAR_FILE_HELP = (
    "Path to a vars file, a YAML mapping of variable names to values. Can be "
    "repeated, later files take precedence."
)

STATE_HELP = (
    "Path to the state snapshot recorded by the apply engine. If omitted, the plan "
    "is made against an empty state."
)


def validate(
    directory: str = typer.Option(".", "--dir", "-d", help=DIRECTORY_HELP),
    variables: List[str] = typer.Option([], "--var", help=VAR_HELP),
    var_files: List[str] = typer.Option([], "--var-file", help=VAR_FILE_HELP),
) -> None:
    """
    Checks that the configuration loads, its inputs are valid and every reference resolves.
    """
    resolver = load_resolver(directory, variables, var_files)
    resources = len(resolver.graph.topological_order())
    logger.info(f"The configuration is valid ({resources} node(s) resolved).")


def plan(
    directory: str = typer.Option(".", "--dir", "-d", help=DIRECTORY_HELP),
    variables: List[str] = typer.Option([], "--var", help=VAR_HELP),
    var_files: List[str] = typer.Option([], "--var-file", help=VAR_FILE_HELP),
    state_file: Optional[str] = typer.Option(None, "--state", "-s", help=STATE_HELP),
    out: Optional[str] = typer.Option(
        None,
        "--out",
        "-o",
        help="Write the plan as JSON to this path, for the apply engine to execute.",
    ),
    destroy: bool = typer.Option(
        False,
        "--destroy",
        help="Plan the removal of every resource recorded in the state.",
    ),
    detailed_exitcode: bool = typer.Option(
        False,
        "--detailed-exitcode",
        help="Exit with code 2 instead of 0 when the plan contains changes.",
    ),
) -> None:
    """
    Shows the changes the apply engine would make to reach the configuration.
    """
    resolver = load_resolver(directory, variables, var_files)
    state = load_state(state_file)

    try:
        result = resolver.plan(state, destroy=destroy)
    except ResolutionError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    logger.info(result.render())

    if out:
        write_file(out, result.to_json())
        logger.info(f"Saved the plan to {out}")

    if detailed_exitcode and result.has_changes:
        raise typer.Exit(2)


def output(
    directory: str = typer.Option(".", "--dir", "-d", help=DIRECTORY_HELP),
    variables: List[str] = typer.Option([], "--var", help=VAR_HELP),
    var_files: List[str] = typer.Option([], "--var-file", help=VAR_FILE_HELP),
    state_file: Optional[str] = typer.Option(None, "--state", "-s", help=STATE_HELP),
    as_json: bool = typer.Option(False, "--json", help="Print the outputs as JSON."),
) -> None:
    """
    Shows the output values of the configuration. Values only known once the
    resources exist are shown as "(known after apply)".
    """
    resolver = load_resolver(directory, variables, var_files)
    state = load_state(state_file)

    try:
        result = resolver.plan(state)
    except ResolutionError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    values = {
        name: display_value(o.value, o.sensitive) for name, o in result.outputs.items()
    }
    if not values:
        logger.info("The configuration declares no outputs.")
        return

    if as_json:
        logger.info(json.dumps(values, indent=2, sort_keys=True))
    else:
        logger.info(to_yaml(values).rstrip())


def graph(
    directory: str = typer.Option(".", "--dir", "-d", help=DIRECTORY_HELP),
    variables: List[str] = typer.Option([], "--var", help=VAR_HELP),
    var_files: List[str] = typer.Option([], "--var-file", help=VAR_FILE_HELP),
) -> None:
    """
    Shows the dependency edges between the declarations.
    """
    resolver = load_resolver(directory, variables, var_files)
    edges = resolver.graph.edges()
    if not edges:
        logger.info("No dependencies between declarations.")
        return
    logger.info(tabulate(edges, headers=["Declaration", "Depends on"]))
