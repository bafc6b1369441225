"""lark CLI - credential and access-token core.

This package manages Lark/Feishu app credentials, tenant and user access
tokens and OAuth scopes for the ``lark`` command line tool.
"""
from .auth import TokenResolver, run_with_token
from .core import AppState

__version__ = "0.2.0"
__all__ = ["AppState", "TokenResolver", "run_with_token"]
