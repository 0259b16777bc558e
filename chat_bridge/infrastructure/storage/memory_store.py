import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

from chat_bridge.domain.conversation import ConversationStore
from chat_bridge.domain.models import ChatSession


class InMemoryConversationStore(ConversationStore):
    """进程内的会话续接状态存储，不做持久化。

    每个 chat 一把锁：同一 chat 的读写互斥，不同 chat 之间互不阻塞。
    对外只返回 ChatSession 副本，调用方无法绕过锁修改内部状态。
    """

    def __init__(self):
        self._sessions: Dict[int, ChatSession] = {}
        self._locks: Dict[int, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _entry(self, chat_id: int) -> Tuple[threading.RLock, ChatSession]:
        with self._registry_lock:
            session = self._sessions.get(chat_id)
            if session is None:
                session = ChatSession(chat_id=chat_id)
                self._sessions[chat_id] = session
                self._locks[chat_id] = threading.RLock()
            return self._locks[chat_id], session

    @contextmanager
    def locked(self, chat_id: int) -> Iterator[ChatSession]:
        """在 chat 锁内暴露可变的 ChatSession，供需要读-改-写的调用方使用。"""

        lock, session = self._entry(chat_id)
        with lock:
            yield session

    def get_or_create(self, chat_id: int) -> ChatSession:
        with self.locked(chat_id) as session:
            return session.snapshot()

    def reset(self, chat_id: int) -> None:
        with self.locked(chat_id) as session:
            session.conversation_id = None
            session.last_message_id = None

    def update(self, chat_id: int, conversation_id: Optional[str], last_message_id: Optional[str]) -> None:
        with self.locked(chat_id) as session:
            session.conversation_id = conversation_id
            session.last_message_id = last_message_id

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._sessions)
