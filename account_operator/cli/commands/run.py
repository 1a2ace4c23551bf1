import asyncio

import click

from account_operator.cli.commands.main import cli_start
from account_operator.config.settings import LogLevelType
from account_operator.version import __version__


@cli_start.command()
@click.argument("manifests", default=".", type=click.Path(exists=True))
@click.option(
    "-c",
    "--config",
    "config_path",
    default="./config.yaml",
    type=click.Path(),
    help="""Path to the operator configuration yaml.
            Values can also be set with OPERATOR__ prefixed environment variables.""",
)
@click.option(
    "-l",
    "--log-level",
    "log_level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default=None,
    help="""Override the logging level from the configuration.""",
)
@click.option(
    "-O",
    "--once",
    "once",
    type=bool,
    is_flag=True,
    help="""Reconcile until nothing is left to do and exit.""",
)
def run(
    manifests: str,
    config_path: str,
    log_level: LogLevelType | None,
    once: bool,
) -> None:
    """
    Runs the operator against the objects defined in MANIFESTS.

    MANIFESTS: A yaml file or a directory of yaml files. Defaults to the current directory.
    """
    from account_operator.run import run_operator

    click.echo(f"Starting AWS account operator {__version__}")
    asyncio.run(run_operator(manifests, config_path, log_level, once))
