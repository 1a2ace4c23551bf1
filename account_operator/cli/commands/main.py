import click


@click.group
def cli_start() -> None:
    # Operator root command
    pass
