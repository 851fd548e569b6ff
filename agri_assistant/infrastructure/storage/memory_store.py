import threading
from typing import List, Optional, Tuple

from agri_assistant.domain.conversation import ConversationStore, Turn


class InMemoryConversationStore(ConversationStore):
    """进程内、只追加的会话历史。

    可选的开场白作为第一条 assistant 回合写入，构造请求时会被跳过。
    """

    def __init__(self, greeting: Optional[str] = None):
        self._lock = threading.Lock()
        self._turns: List[Turn] = []
        if greeting:
            self._turns.append(Turn(role="assistant", text=greeting))

    def append(self, turn: Turn) -> None:
        with self._lock:
            self._turns.append(turn)

    def extend(self, turns: List[Turn]) -> None:
        """一次性追加多条回合（用户回合 + 助手回合一起提交）。"""
        with self._lock:
            self._turns.extend(turns)

    def turns(self) -> Tuple[Turn, ...]:
        with self._lock:
            return tuple(self._turns)

    def __len__(self) -> int:
        with self._lock:
            return len(self._turns)
