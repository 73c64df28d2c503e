"""Provider 抽象接口。

编排器不直接依赖具体厂商的 HTTP 接口，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 GeminiClient、OllamaClient）。
- 负责：将 ModelRequest 转成具体 API 请求，并把响应 JSON 解析为 ModelResponse。

这样可以在不改编排器代码的前提下接入更多模型后端。
"""

from dataclasses import dataclass
from typing import Protocol

from chat_core.domain.models import ModelRequest, ModelResponse, TierName


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - model_name: 实际调用的模型名，会出现在 InvocationOutcome 中。
    - supports_tools: 是否支持函数调用；不支持时编排器不声明工具。
    - invoke(req): 执行一次非流式调用，返回统一的 ModelResponse。
      配额/限流必须抛 RateLimitError，其余失败抛其他 BusinessError 子类。
    """

    name: str
    model_name: str
    supports_tools: bool

    def invoke(self, req: ModelRequest) -> ModelResponse:
        ...


@dataclass
class ProviderTier:
    """回退链中的一层。"""

    tier: TierName
    client: ProviderClient

    @property
    def escalate_on_any_error(self) -> bool:
        # 只有第二层在任意错误时继续往下走；主模型只有配额错误才切换
        return self.tier == "secondary"
