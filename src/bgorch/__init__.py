"""bgorch - background command orchestrator.

Decides per invocation whether a CLI subcommand runs in the foreground or is
detached as a supervised background job, and manages every background job
from admission to shutdown.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
