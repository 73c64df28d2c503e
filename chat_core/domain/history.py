from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

from .models import ConversationTurn


@dataclass
class ThreadHistory:
    thread_id: str
    user_id: str
    turns: List[ConversationTurn] = field(default_factory=list)
    last_updated_at: Optional[datetime] = None


class HistoryStore(Protocol):
    def add(self, user_id: str, thread_id: str, user_msg: str, model_msg: str) -> None:
        ...

    def get(self, user_id: str, thread_id: str) -> List[ConversationTurn]:
        ...

    def clear(self, user_id: str, thread_id: str) -> None:
        ...

    def clear_all_by_thread_id(self, thread_id: str) -> None:
        ...

    def close(self) -> None:
        ...
