"""AI 后端抽象接口。

上层 ConversationBridge 不直接依赖具体后端的 HTTP 细节，而是依赖此协议：

- send(...) 立即完成鉴权，并返回一个惰性的 StreamFragment 迭代器。
- 迭代器按后端产出顺序给出增量，最后恰好给出一个 final 增量。

续接 ID 由调用方在迭代成功结束后写回 ConversationStore。
"""

from typing import Iterator, Optional, Protocol

from chat_bridge.domain.models import ChatSession, StreamFragment


class ChatBackend(Protocol):
    """流式对话后端协议。"""

    name: str

    def send(
        self,
        chat_id: int,
        prompt: str,
        session_token: Optional[str],
        continuation: ChatSession,
    ) -> Iterator[StreamFragment]:
        ...
