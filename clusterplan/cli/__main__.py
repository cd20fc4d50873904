import typer

from clusterplan import __version__
from clusterplan.cli.plan import graph, output, plan, validate
from clusterplan.logger import setup_logger


def version_callback(version: bool) -> None:
    if version:
        typer.echo(f"clusterplan CLI Version: {__version__}")
        raise typer.Exit()


cli = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})


@cli.callback()
def main_options(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    setup_logger(verbose)


cli.command(help="Validate the configuration.")(validate)

cli.command(help="Show the changes needed to reach the configuration.")(plan)

cli.command(help="Show output values.")(output)

cli.command(help="Show the dependency graph.")(graph)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
