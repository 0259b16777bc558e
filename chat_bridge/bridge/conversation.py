"""对话桥接核心模块。

串联一次完整的交互：读取 chat 的续接状态 -> 调用后端流式接口 ->
交给投影器渲染 -> 成功后写回新的续接 ID。
"""

import logging
import time
from typing import Any, Dict
from uuid import uuid4

from chat_bridge.bridge.projector import LiveOutputProjector
from chat_bridge.domain.models import AIExchange, ProjectionResult
from chat_bridge.infrastructure.logging.logger import logger
from chat_bridge.infrastructure.storage.memory_store import InMemoryConversationStore
from chat_bridge.providers.base import ChatBackend
from chat_bridge.session.provider import SessionProvider


class ConversationBridge:
    def __init__(
        self,
        store: InMemoryConversationStore,
        backend: ChatBackend,
        projector: LiveOutputProjector,
        sessions: SessionProvider,
    ):
        self._store = store
        self._backend = backend
        self._projector = projector
        self._sessions = sessions

    def converse(self, chat_id: int, reply_to_message_id: int, prompt: str) -> ProjectionResult:
        """执行一轮对话并把回答流式渲染到 chat。

        同一 chat 的调用必须串行（由分发循环保证），因此读取快照与写回之间
        不会有同 chat 的其他交互插入。

        Raises:
            AuthExpiredError / NetworkError / BackendError: 后端失败，续接状态保持不变。
        """

        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "chat_id": chat_id,
        }
        snapshot = self._store.get_or_create(chat_id)
        self._log(
            logging.INFO,
            "Sending message to backend",
            log_ctx,
            backend=self._backend.name,
            fresh=snapshot.is_fresh,
            prompt_chars=len(prompt),
        )

        fragments = self._backend.send(chat_id, prompt, self._sessions.current_token(), snapshot)
        exchange = AIExchange(chat_id=chat_id, prompt=prompt, session=snapshot, fragments=fragments)
        result = self._projector.project(chat_id, reply_to_message_id, exchange)

        final = result.final
        self._store.update(chat_id, final.conversation_id, final.message_id)
        elapsed = time.time() - start_time
        self._log(
            logging.INFO,
            "Completed exchange",
            log_ctx,
            elapsed_seconds=round(elapsed, 2),
            answer_chars=len(final.text),
            messages=len(result.messages),
            edits=result.edits,
            conversation_id=final.conversation_id,
        )
        return result

    def reset(self, chat_id: int) -> None:
        self._store.reset(chat_id)
        self._log(logging.INFO, "Conversation reset", {"chat_id": chat_id})

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
