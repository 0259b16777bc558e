"""流式回答到 Telegram 消息的投影器。

Telegram 没有原生的“流式消息”，只能先发一条消息再反复编辑。
LiveOutputProjector 把后端的 StreamFragment 序列渲染成这种“正在打字”的效果：

1. 第一个增量到达时立即发送一条新消息（空文本时发送占位符）。
2. 之后的增量只保留最新的累计文本（last write wins），
   每隔 min_edit_interval 最多编辑一次；间隔到期时即使没有新增量也会刷新。
3. final 增量到达时无视间隔，立即用完整文本做最后一次编辑。

增量序列由一个泵线程读取并放入队列，主循环用带超时的 queue.get
实现定时刷新，因此慢速的后端流不会阻塞其他 chat。
"""

import functools
import queue
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from chat_bridge.bridge.formatting import ensure_formatting, split_message
from chat_bridge.domain.exceptions import BackendError, PlatformApiError
from chat_bridge.domain.models import LiveMessage, ProjectionResult, StreamFragment
from chat_bridge.infrastructure.logging.logger import logger
from chat_bridge.messaging.base import MessagingClient


PLACEHOLDER = "..."
# 单次重试等待的上限（秒），避免 retry_after 过大时长时间卡住工作线程
MAX_RETRY_DELAY = 30.0


class LiveOutputProjector:
    def __init__(
        self,
        client: MessagingClient,
        *,
        min_edit_interval: float = 1.0,
        max_message_length: int = 4096,
        max_attempts: int = 3,
        retry_backoff: float = 0.5,
        typing_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client
        self._min_edit_interval = min_edit_interval
        self._max_length = max_message_length
        self._max_attempts = max(1, max_attempts)
        self._retry_backoff = retry_backoff
        self._typing_interval = typing_interval
        self._clock = clock
        self._sleep = sleep

    def project(
        self,
        chat_id: int,
        reply_to_message_id: Optional[int],
        fragments: Iterable[StreamFragment],
        min_edit_interval: Optional[float] = None,
    ) -> ProjectionResult:
        """把增量序列渲染到 chat 中，返回最终状态。

        后端错误（NetworkError/BackendError/AuthExpiredError）会在刷新完已缓冲的文本后原样抛出；
        Telegram 调用失败在重试耗尽后只记录到 result.delivery_errors，不会中断消费。
        """

        interval = self._min_edit_interval if min_edit_interval is None else min_edit_interval
        result = ProjectionResult()
        ctx: Dict[str, Any] = {"chat_id": chat_id, "reply_to": reply_to_message_id}
        channel: "queue.Queue[Tuple[str, Any]]" = queue.Queue()
        pump = threading.Thread(
            target=_pump,
            args=(fragments, channel),
            name=f"fragments-{chat_id}",
            daemon=True,
        )
        pump.start()

        pending: Optional[str] = None
        last_flush = self._clock()
        last_typing = self._clock()
        while True:
            if pending is not None:
                timeout = max(0.0, interval - (self._clock() - last_flush))
            else:
                timeout = self._typing_interval
            try:
                kind, payload = channel.get(timeout=timeout)
            except queue.Empty:
                if pending is not None:
                    self._render(result, chat_id, reply_to_message_id, pending, final=False, ctx=ctx)
                    pending = None
                    last_flush = self._clock()
                last_typing = self._maybe_typing(chat_id, last_typing, ctx)
                continue

            if kind == "error":
                if pending is not None:
                    # 出错时的刷新仍是中间编辑，同样要遵守编辑间隔
                    self._sleep(max(0.0, interval - (self._clock() - last_flush)))
                    self._render(result, chat_id, reply_to_message_id, pending, final=False, ctx=ctx)
                raise payload
            if kind == "end":
                break

            fragment: StreamFragment = payload
            if fragment.is_final:
                result.final = fragment
                break
            if not result.messages:
                self._render(result, chat_id, reply_to_message_id, fragment.text, final=False, ctx=ctx)
                last_flush = self._clock()
                continue
            pending = fragment.text
            if self._clock() - last_flush >= interval:
                self._render(result, chat_id, reply_to_message_id, pending, final=False, ctx=ctx)
                pending = None
                last_flush = self._clock()
            last_typing = self._maybe_typing(chat_id, last_typing, ctx)

        pump.join(timeout=1.0)
        if result.final is None:
            raise BackendError(code="INCOMPLETE_STREAM", message="answer stream ended without a final fragment")
        self._render(result, chat_id, reply_to_message_id, result.final.text, final=True, ctx=ctx)
        if result.delivery_errors:
            self._log_warning("Answer delivered incompletely", ctx, errors=result.delivery_errors)
        return result

    # ---- 渲染 ----

    def _render(
        self,
        result: ProjectionResult,
        chat_id: int,
        reply_to: Optional[int],
        text: str,
        *,
        final: bool,
        ctx: Dict[str, Any],
    ) -> None:
        """把累计文本同步到 Telegram。

        分页只按原始文本计算；中间渲染再逐页补全未闭合的代码块（不超过长度上限）。
        超长部分拆成后续消息，未变化的页不编辑，多出来的旧消息会被删除。
        """

        pages = split_message(text or PLACEHOLDER, self._max_length)
        if not final:
            pages = [ensure_formatting(page, self._max_length) for page in pages]
        for index, page in enumerate(pages):
            if index < len(result.messages):
                live = result.messages[index]
                if live.text == page:
                    continue
                call = functools.partial(self._client.edit_message, chat_id, live.message_id, page)
                try:
                    self._with_retries(call, "editMessageText", ctx)
                except PlatformApiError as e:
                    # 保留旧文本，下次刷新时会带着更新的文本重试
                    result.delivery_errors.append(f"edit {live.message_id}: {e.message}")
                    continue
                live.text = page
                result.edits += 1
            else:
                call = functools.partial(self._client.send_message, chat_id, reply_to, page)
                try:
                    message_id = self._with_retries(call, "sendMessage", ctx)
                except PlatformApiError as e:
                    result.delivery_errors.append(f"send page {index}: {e.message}")
                    break
                result.messages.append(LiveMessage(chat_id=chat_id, message_id=message_id, text=page))

        for live in result.messages[len(pages):]:
            call = functools.partial(self._client.delete_message, chat_id, live.message_id)
            try:
                self._with_retries(call, "deleteMessage", ctx)
            except PlatformApiError as e:
                result.delivery_errors.append(f"delete {live.message_id}: {e.message}")
                continue
            result.messages.remove(live)

    def _with_retries(self, call: Callable[[], Any], method: str, ctx: Dict[str, Any]) -> Any:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return call()
            except PlatformApiError as e:
                if not e.retryable or attempt >= self._max_attempts:
                    self._log_warning(
                        "Telegram call failed",
                        ctx,
                        method=method,
                        attempt=attempt,
                        code=e.code,
                        error=e.message,
                    )
                    raise
                delay = e.retry_after if e.retry_after is not None else self._retry_backoff * attempt
                self._sleep(min(delay, MAX_RETRY_DELAY))
        raise AssertionError("unreachable")

    def _maybe_typing(self, chat_id: int, last_typing: float, ctx: Dict[str, Any]) -> float:
        now = self._clock()
        if now - last_typing < self._typing_interval:
            return last_typing
        try:
            self._client.send_typing(chat_id)
        except PlatformApiError as e:
            self._log_warning("Couldn't send typing indicator", ctx, error=e.message)
        return now

    @staticmethod
    def _log_warning(message: str, ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(ctx)
        payload.update(fields)
        logger.warning(message, extra={"extra": payload})


def _pump(fragments: Iterable[StreamFragment], channel: "queue.Queue[Tuple[str, Any]]") -> None:
    """在独立线程中消费增量序列，异常通过队列交给投影线程重新抛出。"""

    try:
        for fragment in fragments:
            channel.put(("fragment", fragment))
    except Exception as exc:  # noqa: BLE001 - 异常需要跨线程传递
        channel.put(("error", exc))
    else:
        channel.put(("end", None))
