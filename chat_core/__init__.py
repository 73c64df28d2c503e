"""Chat Core 顶层包。

该包提供聊天助手的回复生成核心，
包括配置加载、领域模型、Provider 回退链、工具分发、
提示词拼装与有界会话历史存储等能力。
"""

from chat_core.api.service import ChatService, build_chat_service, run_chat

__all__ = ["ChatService", "build_chat_service", "run_chat"]
