"""Update polling loop and per-chat task scheduling."""

from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Deque, Dict, Optional

from chat_bridge.bridge.dispatcher import Dispatcher
from chat_bridge.domain.exceptions import PlatformApiError
from chat_bridge.infrastructure.logging.logger import logger
from chat_bridge.messaging.base import MessagingClient


# getUpdates 失败后的等待时间（秒）
POLL_ERROR_BACKOFF = 3.0


class ChatSerialExecutor:
    """线程池 + 每个 chat 一个 FIFO 队列。

    不同 chat 的任务并行执行；同一 chat 的任务按提交顺序逐个执行，
    任一时刻每个 chat 最多只有一个任务在运行。
    """

    def __init__(self, max_workers: int):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="chat")
        self._queues: Dict[int, Deque[Callable[[], None]]] = {}
        self._lock = threading.Lock()

    def submit(self, chat_id: int, task: Callable[[], None]) -> None:
        with self._lock:
            pending = self._queues.get(chat_id)
            if pending is not None:
                # 已有工作线程在处理该 chat，排队即可
                pending.append(task)
                return
            self._queues[chat_id] = deque([task])
        self._pool.submit(self._drain, chat_id)

    def _drain(self, chat_id: int) -> None:
        while True:
            with self._lock:
                pending = self._queues[chat_id]
                if not pending:
                    del self._queues[chat_id]
                    return
                task = pending.popleft()
            try:
                task()
            except Exception:  # noqa: BLE001 - 单个更新失败不能影响其他 chat
                logger.exception("Unhandled error while processing update", extra={"extra": {"chat_id": chat_id}})

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


class BotRunner:
    """Consumes the update feed until ``stop_event`` is set."""

    def __init__(
        self,
        client: MessagingClient,
        dispatcher: Dispatcher,
        *,
        poll_timeout: int = 10,
        max_workers: int = 8,
        executor: Optional[ChatSerialExecutor] = None,
    ):
        self._client = client
        self._dispatcher = dispatcher
        self._poll_timeout = poll_timeout
        self._executor = executor or ChatSerialExecutor(max_workers)
        self.offset: Optional[int] = None

    def run(self, stop_event: threading.Event) -> None:
        """Poll, dispatch, and on stop wait for in-flight tasks to finish."""

        try:
            while not stop_event.is_set():
                try:
                    updates, self.offset = self._client.get_updates(self.offset, self._poll_timeout)
                except PlatformApiError as e:
                    logger.warning(f"Couldn't fetch updates: {e.message}", extra={"extra": {"code": e.code}})
                    stop_event.wait(e.retry_after or POLL_ERROR_BACKOFF)
                    continue
                for update in updates:
                    if stop_event.is_set():
                        # 停止后不再接收新更新，offset 不前移，重启后会重新投递
                        self.offset = update.update_id
                        break
                    self._executor.submit(update.chat_id, lambda u=update: self._dispatcher.handle(u))
        finally:
            logger.info("Stopping: waiting for in-flight chats to finish")
            self._executor.shutdown(wait=True)
            self._acknowledge()

    def _acknowledge(self) -> None:
        """把已处理的 offset 告知 Telegram，避免重启后重复处理。"""

        if self.offset is None:
            return
        try:
            self._client.get_updates(self.offset, 0)
        except PlatformApiError as e:
            logger.warning(f"Couldn't acknowledge updates: {e.message}")
