"""
Command line interface for the lark CLI.

Importing the command modules registers them on the root ``cli`` group.
"""

from dotenv import load_dotenv

from .main import cli
from . import auth_commands, config_commands  # noqa: F401


def main() -> None:
    """Console script entry point."""
    load_dotenv()
    cli(prog_name="lark")


__all__ = ["cli", "main"]
