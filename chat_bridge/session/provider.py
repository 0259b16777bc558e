"""ChatGPT 会话 token 的获取与保存。

当前激活的 token 只有一份，由 SessionProvider 持有：
- current_token(): 后端客户端在每次请求前读取，/setToken 后立即生效。
- persist_token(): 写入持久化配置并替换当前 token。
- acquire_session(): 启动时没有 token 且未开启 manual_auth 时调用，
  在终端里提示用户粘贴浏览器 Cookie 中的 session token。
"""

from __future__ import annotations

import sys
import threading
from typing import Callable, Optional

from chat_bridge.config.persistent import PersistentConfig
from chat_bridge.domain.exceptions import SessionError, ValidationError
from chat_bridge.infrastructure.logging.logger import logger


SESSION_COOKIE = "__Secure-next-auth.session-token"

_PROMPT = (
    f"Log in at https://chat.openai.com, copy the value of the {SESSION_COOKIE} cookie "
    "and paste it here: "
)


class SessionProvider:
    def __init__(
        self,
        config: PersistentConfig,
        *,
        prompt: Callable[[str], str] = input,
        interactive: Optional[bool] = None,
    ):
        self._config = config
        self._prompt = prompt
        self._interactive = sys.stdin.isatty() if interactive is None else interactive
        self._lock = threading.Lock()
        self._token: Optional[str] = config.session_token

    def current_token(self) -> Optional[str]:
        with self._lock:
            return self._token

    def persist_token(self, token: str) -> None:
        token = (token or "").strip()
        if not token:
            raise ValidationError(code="EMPTY_TOKEN", message="token must not be empty")
        with self._lock:
            self._config.set_session_token(token)
            self._token = token
        logger.info("Session token updated", extra={"extra": {"token_length": len(token)}})

    def acquire_session(self) -> str:
        """交互式获取 session token；非交互环境直接失败。"""

        if not self._interactive:
            raise SessionError(
                code="SESSION_UNAVAILABLE",
                message="no session token stored and stdin is not interactive; set MANUAL_AUTH=true and use /setToken",
            )
        try:
            token = self._prompt(_PROMPT).strip()
        except EOFError:
            raise SessionError(code="SESSION_UNAVAILABLE", message="no session token provided")
        if not token:
            raise SessionError(code="SESSION_UNAVAILABLE", message="no session token provided")
        return token
