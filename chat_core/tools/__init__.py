"""工具声明与分发。"""

from .definitions import ToolCall, ToolDef, ToolParam, ToolResult, ToolSpec
from .executor import ToolRegistry, default_registry, default_tools, validate_arguments

__all__ = [
    "ToolCall",
    "ToolDef",
    "ToolParam",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "default_registry",
    "default_tools",
    "validate_arguments",
]
