"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口与回退层 (base)。
- 维护 Provider 默认配置 (registry)。
- 提供具体实现 (gemini_client、ollama_client)。
"""

import logging
from typing import List, Optional

from chat_core.config.settings import settings as default_settings
from chat_core.providers.base import ProviderClient, ProviderTier
from chat_core.providers.gemini_client import GeminiClient
from chat_core.providers.ollama_client import OllamaClient
from chat_core.providers.registry import get_provider_config


def create_provider(
    name: str,
    model_name: Optional[str] = None,
    cfg=None,
    logger: Optional[logging.Logger] = None,
) -> ProviderClient:
    """根据名称创建 Provider 实例，未知名称抛 ValidationError。"""

    cfg = cfg or default_settings
    provider_cfg = get_provider_config(name)
    model = model_name or provider_cfg.default_model
    if provider_cfg.name == "ollama":
        return OllamaClient(cfg, model_name=model, logger=logger)
    return GeminiClient(cfg, model_name=model, logger=logger)


def build_provider_tiers(cfg=None, logger: Optional[logging.Logger] = None) -> List[ProviderTier]:
    """按配置构造回退链：主模型 → 第二层（可选）→ 本地兜底（可选）。"""

    cfg = cfg or default_settings
    tiers = [ProviderTier("primary", create_provider(cfg.primary_provider, cfg.primary_model, cfg, logger))]
    if cfg.secondary_enabled:
        tiers.append(
            ProviderTier("secondary", create_provider(cfg.secondary_provider, cfg.secondary_model, cfg, logger))
        )
    if cfg.local_fallback_enabled:
        tiers.append(ProviderTier("local", create_provider("ollama", cfg.ollama_model, cfg, logger)))
    return tiers


__all__ = [
    "GeminiClient",
    "OllamaClient",
    "ProviderClient",
    "ProviderTier",
    "build_provider_tiers",
    "create_provider",
]
