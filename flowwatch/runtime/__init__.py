"""Runtime-mutable thresholds and the command interface that edits them."""
from .settings import (
    RuntimeConfig,
    SymbolRuntimeConfig,
    ConfigChange,
    ConfigValidationError,
)
from .commands import CommandHandler, CommandReply

__all__ = [
    "RuntimeConfig",
    "SymbolRuntimeConfig",
    "ConfigChange",
    "ConfigValidationError",
    "CommandHandler",
    "CommandReply",
]
