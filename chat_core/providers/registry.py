"""Provider 与模型配置。

每个 Provider 在这里登记基础 URL、默认模型和生成参数默认值。
settings 中的同名字段优先，registry 里的值只在配置缺省时使用。"""

from dataclasses import dataclass
from typing import Mapping

from chat_core.domain.exceptions import ValidationError


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    default_model: str
    max_tokens: int
    default_temperature: float
    supports_tools: bool


GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    default_model="gemini-2.0-flash",
    max_tokens=8192,
    default_temperature=0.7,
    supports_tools=True,
)

# 本地兜底：Ollama 的 /api/generate 不支持函数调用
OLLAMA_CONFIG = ProviderConfig(
    name="ollama",
    base_url="http://localhost:11434",
    default_model="gemma3",
    max_tokens=2048,
    default_temperature=0.7,
    supports_tools=False,
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
    "ollama": OLLAMA_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {name!r}")
