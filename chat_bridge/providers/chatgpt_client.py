"""ChatGPT Web 后端适配器。

本模块负责：

1. 用 session token（浏览器 Cookie）换取短期 access token，并按过期时间缓存。
2. 把用户消息与会话续接 ID 转换为 /backend-api/conversation 请求体。
3. 发起流式 HTTP 请求并处理网络/鉴权/服务端异常。
4. 将 SSE 事件解析为统一的 StreamFragment 序列。

后端每个事件携带的是“截至目前的完整回答”（content.parts），
这里会同时给出累计文本 text 和本次新增的 delta。
"""

import json
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, Optional, Tuple
from uuid import uuid4

import httpx

from chat_bridge.domain.exceptions import AuthExpiredError, BackendError, NetworkError, RateLimitError
from chat_bridge.domain.models import ChatSession, StreamFragment
from chat_bridge.infrastructure.logging.logger import logger
from chat_bridge.providers.registry import CHATGPT_CONFIG, BackendConfig
from chat_bridge.session.provider import SESSION_COOKIE


USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/108.0.0.0 Safari/537.36"


class ChatGPTClient:
    """ChatGPT 后端客户端实现。

    - name: 后端名称（供日志使用）。
    - send: 对外统一调用入口，返回惰性的 StreamFragment 迭代器。
    """

    name = "chatgpt"

    def __init__(
        self,
        settings,
        backend: BackendConfig = CHATGPT_CONFIG,
        on_token_refresh: Optional[Callable[[str], None]] = None,
    ):
        self._settings = settings
        self._backend = backend
        self._on_token_refresh = on_token_refresh
        # session token -> (access token, 过期时间戳)
        self._access_tokens: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    @property
    def _base_url(self) -> str:
        base = getattr(self._settings, "chatgpt_base_url", None) or self._backend.base_url
        return base.rstrip("/")

    @property
    def _model(self) -> str:
        return getattr(self._settings, "chatgpt_model", None) or self._backend.default_model

    def send(
        self,
        chat_id: int,
        prompt: str,
        session_token: Optional[str],
        continuation: ChatSession,
    ) -> Iterator[StreamFragment]:
        """发送一轮对话。

        鉴权在调用时立即完成（失败直接抛 AuthExpiredError），
        之后的网络读取都发生在迭代返回值的过程中。
        """

        access_token = self.ensure_auth(session_token)
        payload = self._build_payload(prompt, continuation)
        return self._stream(payload, access_token, session_token, continuation)

    # ---- 鉴权 ----

    def ensure_auth(self, session_token: Optional[str]) -> str:
        """返回可用的 access token，缓存未命中时请求 session 端点。"""

        if not session_token:
            raise AuthExpiredError(
                code="NO_SESSION",
                message="No ChatGPT session token set. Use /setToken <token> to set one.",
                http_status=401,
            )
        with self._lock:
            cached = self._access_tokens.get(session_token)
        if cached and cached[1] > time.time():
            return cached[0]

        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.get(
                    f"{self._base_url}{self._backend.session_path}",
                    headers={
                        "Cookie": f"{SESSION_COOKIE}={session_token}",
                        "User-Agent": USER_AGENT,
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code in (401, 403):
            raise AuthExpiredError(
                code="AUTH_EXPIRED",
                message="ChatGPT rejected the session token. Use /setToken to set a new one.",
                http_status=resp.status_code,
            )
        if resp.status_code >= 400:
            raise BackendError(code="BACKEND_ERROR", message=_error_detail(resp), http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            raise BackendError(code="BACKEND_ERROR", message="invalid session response", http_status=resp.status_code)
        access_token = (data or {}).get("accessToken")
        if not access_token:
            raise AuthExpiredError(
                code="AUTH_EXPIRED",
                message="ChatGPT session token is invalid or expired. Use /setToken to set a new one.",
                http_status=401,
            )

        expires_at = _parse_expiry(data.get("expires"), self._backend.default_token_ttl)
        with self._lock:
            self._access_tokens[session_token] = (access_token, expires_at)

        # 后端可能轮换 session cookie，新值需要保存下来
        rotated = resp.cookies.get(SESSION_COOKIE) if resp.cookies else None
        if rotated and rotated != session_token and self._on_token_refresh:
            logger.info("ChatGPT session token rotated")
            self._on_token_refresh(rotated)
        return access_token

    def forget(self, session_token: Optional[str]) -> None:
        """丢弃缓存的 access token（例如后端返回 401 时）。"""

        if not session_token:
            return
        with self._lock:
            self._access_tokens.pop(session_token, None)

    # ---- 流式 ----

    def _stream(
        self,
        payload: dict,
        access_token: str,
        session_token: Optional[str],
        continuation: ChatSession,
    ) -> Iterator[StreamFragment]:
        last_text = ""
        conversation_id = continuation.conversation_id
        message_id: Optional[str] = None
        received = False
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    f"{self._base_url}{self._backend.conversation_path}",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "text/event-stream",
                        "Content-Type": "application/json",
                        "User-Agent": USER_AGENT,
                    },
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self._raise_for_status(resp, session_token)
                    for line in resp.iter_lines():
                        data_str = _event_data(line)
                        if not data_str:
                            continue
                        if data_str == "[DONE]":
                            break
                        try:
                            event = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        parsed = self._parse_event(event)
                        if parsed is None:
                            continue
                        text, event_conversation_id, event_message_id = parsed
                        conversation_id = event_conversation_id or conversation_id
                        message_id = event_message_id or message_id
                        received = True
                        if text == last_text:
                            continue
                        delta = text[len(last_text):] if text.startswith(last_text) else text
                        last_text = text
                        yield StreamFragment(
                            kind="delta",
                            text=text,
                            delta=delta,
                            conversation_id=conversation_id,
                            message_id=message_id,
                        )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

        if not received:
            raise BackendError(code="EMPTY_RESPONSE", message="ChatGPT returned an empty response")
        yield StreamFragment(
            kind="final",
            text=last_text,
            conversation_id=conversation_id,
            message_id=message_id,
        )

    # ---- 辅助方法 ----

    def _build_payload(self, prompt: str, continuation: ChatSession) -> dict:
        """将用户消息与续接 ID 转成 conversation 请求 JSON。"""

        payload: Dict[str, Any] = {
            "action": "next",
            "messages": [
                {
                    "id": str(uuid4()),
                    "role": "user",
                    "author": {"role": "user"},
                    "content": {"content_type": "text", "parts": [prompt]},
                }
            ],
            "model": self._model,
            # 新会话没有父消息，后端要求随机给一个
            "parent_message_id": continuation.last_message_id or str(uuid4()),
        }
        if continuation.conversation_id:
            payload["conversation_id"] = continuation.conversation_id
        return payload

    def _raise_for_status(self, resp, session_token: Optional[str]) -> None:
        if resp.status_code in (401, 403):
            self.forget(session_token)
            raise AuthExpiredError(
                code="AUTH_EXPIRED",
                message=_error_detail(resp) or "ChatGPT session expired. Use /setToken to set a new one.",
                http_status=resp.status_code,
            )
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message=_error_detail(resp) or "ChatGPT rate limit", http_status=429)
        raise BackendError(code="BACKEND_ERROR", message=_error_detail(resp), http_status=resp.status_code)

    @staticmethod
    def _parse_event(event: Dict[str, Any]) -> Optional[Tuple[str, Optional[str], Optional[str]]]:
        """解析单个 SSE 事件，返回 (累计文本, conversation_id, message_id)。

        非助手消息（例如回显的用户消息）返回 None；带 error 字段的事件抛出 BackendError。
        """

        error = event.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise BackendError(code="BACKEND_ERROR", message=message or "ChatGPT returned an error")
        message = event.get("message")
        if not isinstance(message, dict):
            return None
        role = (message.get("author") or {}).get("role") or message.get("role")
        if role and role != "assistant":
            return None
        content = message.get("content") or {}
        parts = content.get("parts") or []
        text = "".join(p for p in parts if isinstance(p, str))
        return text, event.get("conversation_id"), message.get("id")


def _event_data(line: str) -> str:
    """取出 SSE 行中的 data 部分，event/id 等其他字段返回空串。"""

    line = line.strip()
    if not line or line.startswith(":"):
        return ""
    if line.startswith("data:"):
        return line[5:].strip()
    if line.startswith(("event:", "id:", "retry:")):
        return ""
    return line


def _error_detail(resp) -> str:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:300]
    if isinstance(data, dict):
        detail = data.get("detail")
        if isinstance(detail, dict):
            detail = detail.get("message")
        if detail:
            return str(detail)
    return (resp.text or "").strip()[:300]


def _parse_expiry(raw: Any, default_ttl: float) -> float:
    now = time.time()
    fallback = now + default_ttl
    if not raw:
        return fallback
    try:
        expires = datetime.fromisoformat(str(raw).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return fallback
    return min(expires, fallback)
