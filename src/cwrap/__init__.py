from importlib.metadata import version
from ._models import CommandSpec, RunConfig
from .cwrap_main import execute

__version__ = version("cwrap")


__all__ = [
    "CommandSpec",
    "RunConfig",
    "execute",
    "__version__",
]
