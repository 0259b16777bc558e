from typing import Optional, Protocol

from .models import ChatSession


class ConversationStore(Protocol):
    def get_or_create(self, chat_id: int) -> ChatSession:
        ...

    def reset(self, chat_id: int) -> None:
        ...

    def update(self, chat_id: int, conversation_id: Optional[str], last_message_id: Optional[str]) -> None:
        ...
