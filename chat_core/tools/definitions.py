"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在编排器中分发和执行模型触发的工具调用（ToolCall / ToolResult / ToolSpec）。
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict

from chat_core.domain.models import FunctionCallPart


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass
class ToolDef:
    """一个可供 LLM 调用的工具定义。

    usage_hint 写进提示词里的工具说明，告诉模型什么时候该用这个工具。
    """

    name: str
    description: str
    params: Dict[str, ToolParam]
    usage_hint: str = ""


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。"""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_part(cls, part: FunctionCallPart) -> "ToolCall":
        return cls(name=part.name, arguments=dict(part.args or {}))


@dataclass
class ToolResult:
    """工具执行结果的封装（始终是文本，失败时也是）。"""

    name: str
    content: str


ToolHandler = Callable[[Dict[str, Any]], str]


@dataclass
class ToolSpec:
    """注册表中的一项：声明 + 处理函数。"""

    definition: ToolDef
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.definition.name
