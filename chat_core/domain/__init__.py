"""领域层模型与协议。

包含：
- models: 统一的 ConversationTurn / ModelRequest / ModelResponse 模型。
- history: 会话历史的存储模型及 HistoryStore 抽象。
- exceptions: 业务异常类型定义。
"""
