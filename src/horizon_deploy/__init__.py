"""Validation, layer ordering and atomic OSTree deployment for HorizonOS."""

__version__ = "0.1.0"

# Export protocol interfaces for type hints and dependency injection
from horizon_deploy.protocols import CommandRunner, FileSystem

__all__ = [
    "__version__",
    "CommandRunner",
    "FileSystem",
]
