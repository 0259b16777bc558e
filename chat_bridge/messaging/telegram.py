"""Telegram Bot API 适配器。

本模块负责：

1. 把 send/edit/delete/typing/getUpdates 转换为 Bot API 的 HTTP 调用。
2. 把 Bot API 的错误响应统一包装为 PlatformApiError，并标记是否可重试。
3. 把原始 update JSON 解析为 InboundUpdate（只保留文本消息）。

两个 Telegram 特有的细节在这里处理：
- 编辑成完全相同的文本会返回 "message is not modified"，视为成功。
- Markdown 实体解析失败时，自动以纯文本重发一次。
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx

from chat_bridge.domain.exceptions import PlatformApiError
from chat_bridge.domain.models import InboundUpdate
from chat_bridge.infrastructure.logging.logger import logger


_NOT_MODIFIED = "message is not modified"
_CANT_PARSE = "can't parse entities"


class TelegramClient:
    """Telegram Bot API 客户端实现。

    httpx.Client 本身是线程安全的，多个 chat 的工作线程共用同一个连接池。
    """

    name = "telegram"

    def __init__(self, settings, token: Optional[str] = None, http_client: Optional[httpx.Client] = None):
        self._settings = settings
        self._token = token or settings.telegram_token
        self._base = f"{settings.telegram_api_url.rstrip('/')}/bot{self._token}"
        self._parse_mode = getattr(settings, "parse_mode", None) or None
        self._http = http_client or httpx.Client(timeout=settings.http_timeout, trust_env=False)
        self.username = ""

    # ---- 对外接口 ----

    def get_me(self) -> str:
        """校验 token 并记录机器人用户名。"""

        me = self._call("getMe", {})
        self.username = me.get("username") or ""
        return self.username

    def get_updates(self, offset: Optional[int], timeout: int, limit: int = 100) -> Tuple[List[InboundUpdate], Optional[int]]:
        params: Dict[str, Any] = {"timeout": timeout, "limit": limit, "allowed_updates": ["message"]}
        if offset is not None:
            params["offset"] = offset
        # 读超时要比长轮询时间更长，否则空闲时会误报超时
        raw_updates = self._call("getUpdates", params, timeout=timeout + self._settings.http_timeout)
        updates: List[InboundUpdate] = []
        next_offset = offset
        for raw in raw_updates or []:
            update_id = raw.get("update_id")
            if isinstance(update_id, int):
                next_offset = max(next_offset or 0, update_id + 1)
            parsed = parse_update(raw)
            if parsed is not None:
                updates.append(parsed)
        return updates, next_offset

    def send_message(self, chat_id: int, reply_to_message_id: Optional[int], text: str) -> int:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to_message_id:
            payload["reply_to_message_id"] = reply_to_message_id
            payload["allow_sending_without_reply"] = True
        result = self._call_formatted("sendMessage", payload)
        return int(result["message_id"])

    def edit_message(self, chat_id: int, message_id: int, text: str) -> None:
        payload = {"chat_id": chat_id, "message_id": message_id, "text": text}
        try:
            self._call_formatted("editMessageText", payload)
        except PlatformApiError as e:
            if _NOT_MODIFIED in e.message:
                return
            raise

    def delete_message(self, chat_id: int, message_id: int) -> None:
        self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    def send_typing(self, chat_id: int) -> None:
        self._call("sendChatAction", {"chat_id": chat_id, "action": "typing"})

    def close(self) -> None:
        self._http.close()

    # ---- 辅助方法 ----

    def _call_formatted(self, method: str, payload: Dict[str, Any]) -> Any:
        if not self._parse_mode:
            return self._call(method, payload)
        try:
            return self._call(method, {**payload, "parse_mode": self._parse_mode})
        except PlatformApiError as e:
            if _CANT_PARSE not in e.message:
                raise
            logger.info(
                "Markdown rejected by Telegram, resending as plain text",
                extra={"extra": {"method": method, "chat_id": payload.get("chat_id")}},
            )
            return self._call(method, payload)

    def _call(self, method: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        kwargs: Dict[str, Any] = {"json": payload}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            resp = self._http.post(f"{self._base}/{method}", **kwargs)
        except httpx.RequestError as e:
            raise PlatformApiError(code="NETWORK_ERROR", message=str(e), retryable=True, method=method)
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise PlatformApiError(
                code="PLATFORM_ERROR",
                message=f"unexpected response from {method}: HTTP {resp.status_code}",
                http_status=resp.status_code,
                retryable=resp.status_code >= 500,
                method=method,
            )
        if data.get("ok"):
            return data.get("result")

        status = int(data.get("error_code") or resp.status_code or 400)
        description = data.get("description") or f"{method} failed"
        retry_after = (data.get("parameters") or {}).get("retry_after")
        raise PlatformApiError(
            code="RATE_LIMIT" if status == 429 else "PLATFORM_ERROR",
            message=description,
            http_status=status,
            retryable=status == 429 or status >= 500,
            retry_after=float(retry_after) if retry_after is not None else None,
            method=method,
        )


def parse_update(raw: Dict[str, Any]) -> Optional[InboundUpdate]:
    """把一条原始 update 解析为 InboundUpdate，非文本消息返回 None。"""

    message = raw.get("message")
    if not isinstance(message, dict):
        return None
    text = message.get("text") or ""
    if not text:
        return None
    chat = message.get("chat") or {}
    sender = message.get("from") or {}

    is_command = False
    command = ""
    command_args = ""
    command_target: Optional[str] = None
    for entity in message.get("entities") or []:
        if entity.get("type") == "bot_command" and entity.get("offset") == 0:
            length = int(entity.get("length") or 0)
            name, _, target = text[1:length].partition("@")
            is_command = True
            command = name
            command_target = target or None
            command_args = text[length:].strip()
            break

    return InboundUpdate(
        update_id=int(raw.get("update_id") or 0),
        chat_id=int(chat.get("id")),
        message_id=int(message.get("message_id")),
        user_id=int(sender.get("id") or 0),
        text=text,
        chat_kind=chat.get("type") or "private",
        is_command=is_command,
        command=command,
        command_args=command_args,
        command_target=command_target,
    )
