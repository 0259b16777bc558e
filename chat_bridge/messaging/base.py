"""消息平台客户端抽象接口。

投影器与分发器只依赖这个最小接口（发送、编辑、删除、typing 状态），
不关心底层是 Bot API 长轮询还是其他传输方式。
"""

from typing import List, Optional, Protocol, Tuple

from chat_bridge.domain.models import InboundUpdate


class MessagingClient(Protocol):
    """消息平台客户端协议。"""

    username: str

    def send_message(self, chat_id: int, reply_to_message_id: Optional[int], text: str) -> int:
        ...

    def edit_message(self, chat_id: int, message_id: int, text: str) -> None:
        ...

    def delete_message(self, chat_id: int, message_id: int) -> None:
        ...

    def send_typing(self, chat_id: int) -> None:
        ...

    def get_updates(self, offset: Optional[int], timeout: int) -> Tuple[List[InboundUpdate], Optional[int]]:
        """拉取更新，返回 (可处理的更新, 下一次的 offset)。"""

        ...
