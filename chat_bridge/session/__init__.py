"""ChatGPT 会话凭证管理。"""

from chat_bridge.session.provider import SESSION_COOKIE, SessionProvider

__all__ = ["SESSION_COOKIE", "SessionProvider"]
