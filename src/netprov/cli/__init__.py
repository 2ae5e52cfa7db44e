"""
CLI commands for netprov.
"""

from netprov.cli.plan import plan_command
from netprov.cli.up import up_command

__all__ = [
    "plan_command",
    "up_command",
]
