"""消息平台集成层（目前只有 Telegram）。"""

from chat_bridge.messaging.base import MessagingClient
from chat_bridge.messaging.telegram import TelegramClient, parse_update

__all__ = ["MessagingClient", "TelegramClient", "parse_update"]
