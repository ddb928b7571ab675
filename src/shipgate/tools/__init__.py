"""External tool invocation."""

from shipgate.tools.invoker import (
    DEFAULT_TIMEOUT_SECONDS,
    SecretRef,
    ToolInvoker,
    ToolSpec,
)

__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "SecretRef",
    "ToolInvoker",
    "ToolSpec",
]
