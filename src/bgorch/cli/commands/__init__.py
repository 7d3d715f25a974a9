# bgorch/cli/commands: Command modules for the bgorch CLI.
#
# Each module in this package provides one CLI command.

from .profiles import profiles
from .run import run

__all__ = [
    "profiles",
    "run",
]
