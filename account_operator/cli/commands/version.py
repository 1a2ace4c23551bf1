import click

from account_operator.cli.commands.main import cli_start
from account_operator.version import __version__


@cli_start.command()
@click.option(
    "-s",
    "--short",
    "short",
    default=False,
    is_flag=True,
    required=False,
    help="Display only the short version number.",
)
def version(short: bool) -> None:
    """
    Displays the version of the operator package.
    """
    if short:
        click.echo(__version__)
    else:
        click.echo(f"AWS account operator version: {__version__}")
