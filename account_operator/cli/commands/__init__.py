from .main import cli_start
from .run import run
from .version import version

__all__ = ["cli_start", "run", "version"]
