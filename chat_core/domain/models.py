"""统一的对话与模型调用数据模型。

本模块定义了回复生成核心在不同 Provider 之间共享的标准数据结构：

- ConversationTurn: 持久化在历史中的一轮发言（user / model）。
- TextPart / FunctionCallPart / FunctionResponsePart / UnknownPart:
  模型响应中的“片段”，构成一个带标签的联合类型。
- ContentTurn / ModelRequest / ModelResponse: 发给 Provider 的请求与解析后的响应。
- InvocationOutcome: 一次 get_response 的最终结果。

所有 Provider 适配器（如 GeminiClient）都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from chat_core.tools.definitions import ToolDef


# 历史记录中只允许出现这两种角色
Role = Literal["user", "model"]

# 发给模型的内容轮次角色；function 轮次携带工具执行结果
ContentRole = Literal["user", "model", "function"]

_MODEL_ROLE_ALIASES = {"model", "assistant", "bot"}


def normalize_role(raw: Any) -> Role:
    """把任意角色名归一化为 user / model 两个取值。"""

    if isinstance(raw, str) and raw.strip().lower() in _MODEL_ROLE_ALIASES:
        return "model"
    return "user"


@dataclass(frozen=True)
class ConversationTurn:
    """历史中的一条发言，创建后不可变。"""

    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationTurn":
        return cls(role=normalize_role(data.get("role")), content=str(data.get("content") or ""))


@dataclass(frozen=True)
class TextPart:
    """纯文本片段。"""

    text: str


@dataclass(frozen=True)
class FunctionCallPart:
    """模型请求调用某个工具。"""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FunctionResponsePart:
    """回传给模型的工具执行结果。"""

    name: str
    content: str

    def to_wire(self) -> Dict[str, Any]:
        return {"name": self.name, "response": {"content": self.content}}


@dataclass(frozen=True)
class UnknownPart:
    """无法识别的片段，保留原始 JSON 供日志排查。"""

    raw: Dict[str, Any]


Part = Union[TextPart, FunctionCallPart, FunctionResponsePart, UnknownPart]


@dataclass
class ContentTurn:
    """发给模型的一轮内容，由若干片段组成。"""

    role: ContentRole
    parts: List[Part]


@dataclass
class ModelRequest:
    """一次完整的模型调用请求。

    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体。
    tools 为空表示本次调用不声明任何工具。
    cancel_event 由调用方置位，流式 Provider 在读取过程中检查它。
    """

    contents: List[ContentTurn]
    tools: Optional[List["ToolDef"]] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    cancel_event: Optional[threading.Event] = field(default=None, compare=False, repr=False)


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ModelResponse:
    """一次模型调用的解析结果。

    - provider: Provider 名（如 "gemini"）。
    - model: 实际使用的模型名。
    - parts: 按顺序排列的响应片段。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    parts: List[Part]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def function_calls(self) -> List[FunctionCallPart]:
        return [p for p in self.parts if isinstance(p, FunctionCallPart)]


TierName = Literal["primary", "secondary", "local"]


@dataclass
class InvocationOutcome:
    """get_response 的成功结果。

    model_name_used 记录真正产出最终文本的那一层模型，
    而不一定是最先收到请求的那一层。
    """

    text: str
    elapsed_ms: float
    model_name_used: str
    tier: TierName
    persisted: bool = False
