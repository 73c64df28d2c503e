"""提示词拼装。

单轮请求发给模型的是一整段文本，固定顺序为：
系统提示词 → 当前时间 → 工具说明 → 会话历史 → 用户消息。
这里的函数都是纯函数，不读取历史存储，也不做任何 I/O。
"""

from typing import Iterable, Optional, Sequence

from chat_core.domain.models import ConversationTurn
from chat_core.tools.definitions import ToolDef

TOOL_RULES_TITLE = "【工具调用规则】"
TOOL_RULES_INTRO = "你可以使用下面这些工具（函数）。请根据用户的请求选择合适的工具并返回函数调用。"
HISTORY_TITLE = "会话历史:"
USER_MESSAGE_TITLE = "用户消息:"


def build_tool_instructions(tool_defs: Iterable[ToolDef]) -> str:
    """根据工具声明生成“有哪些工具、什么时候用”的说明块。

    没有任何工具时返回空字符串。
    """

    lines = [f"- {t.name}: {t.usage_hint or t.description}" for t in tool_defs]
    if not lines:
        return ""
    return "\n".join([TOOL_RULES_TITLE, TOOL_RULES_INTRO, *lines])


def _history_role(turn: ConversationTurn) -> str:
    return "assistant" if turn.role == "model" else "user"


def build_prompt(
    system_prompt: str,
    tool_instructions: str,
    history: Sequence[ConversationTurn],
    user_message: str,
    timestamp: Optional[str] = None,
) -> str:
    sections = []
    if system_prompt:
        sections.append(system_prompt.rstrip())
    if timestamp:
        sections.append(f"Now is {timestamp}")
    if tool_instructions:
        sections.append(tool_instructions.rstrip())
    if history:
        history_lines = [f"{_history_role(t)}: {t.content}" for t in history]
        sections.append("\n".join([HISTORY_TITLE, *history_lines]))
    sections.append(f"{USER_MESSAGE_TITLE}\n{user_message}")
    return "\n\n".join(sections)


class PromptAssembler:
    """绑定一组工具声明的提示词拼装器，工具说明只在构造时生成一次。"""

    def __init__(self, tool_defs: Iterable[ToolDef] = ()):
        self.tool_instructions = build_tool_instructions(tool_defs)

    def assemble(
        self,
        system_prompt: str,
        history: Sequence[ConversationTurn],
        user_message: str,
        timestamp: Optional[str] = None,
        include_tools: bool = True,
    ) -> str:
        return build_prompt(
            system_prompt,
            self.tool_instructions if include_tools else "",
            history,
            user_message,
            timestamp=timestamp,
        )
