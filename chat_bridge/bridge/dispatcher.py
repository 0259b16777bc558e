"""入站更新分发。

classify() 是纯函数：只根据更新内容、机器人用户名和白名单决定路由，
不保留任何跨更新的状态。Dispatcher 负责执行路由结果：
拒绝、回复命令或发起对话。
"""

from __future__ import annotations

from typing import Callable, Dict, Literal, Set

from chat_bridge.bridge.conversation import ConversationBridge
from chat_bridge.config.settings import is_user_allowed
from chat_bridge.domain.exceptions import BusinessError, PlatformApiError
from chat_bridge.domain.models import InboundUpdate
from chat_bridge.infrastructure.logging.logger import logger
from chat_bridge.messaging.base import MessagingClient
from chat_bridge.session.provider import SessionProvider


Route = Literal["unauthorized", "command", "converse", "ignore"]

MESSAGE_UNAUTHORIZED = "You are not authorized to use this bot."
MESSAGE_START = (
    "Send a message to start talking with ChatGPT. You can use /reload at any point to clear the "
    "conversation history and start from scratch (don't worry, it won't delete the Telegram messages)."
)
MESSAGE_HELP = (
    "/reload - clear chatGPT conversation history (Telegram messages will not be deleted)\n"
    "/setToken <token> - set the openAI session token"
)
MESSAGE_TOKEN_MISSING = "Please provide a token. Example: /setToken eyJhB..."
MESSAGE_TOKEN_SET = "Token set successfully."
MESSAGE_RELOADED = "Started a new conversation. Enjoy!"
MESSAGE_UNKNOWN = "Unknown command. Send /help to see a list of commands."


def mentions_bot(text: str, bot_username: str) -> bool:
    if not bot_username:
        return False
    # Telegram 用户名不区分大小写
    mention = f"@{bot_username}".lower()
    lowered = text.lower()
    return lowered.startswith(mention) or lowered.endswith(mention)


def strip_mention(text: str, bot_username: str) -> str:
    """去掉消息首尾的 @botname，得到真正的提问内容。"""

    if not bot_username:
        return text
    mention = f"@{bot_username}".lower()
    if text.lower().startswith(mention):
        text = text[len(mention):]
    if text.lower().endswith(mention):
        text = text[: -len(mention)]
    return text.strip()


def classify(update: InboundUpdate, *, bot_username: str, allowed_user_ids: Set[int]) -> Route:
    """决定一条更新的处理方式。"""

    if update.is_command and update.command_target and update.command_target.lower() != bot_username.lower():
        # 群里发给其他机器人的命令
        return "ignore"
    if not is_user_allowed(update.user_id, allowed_user_ids):
        return "unauthorized"
    if update.is_command:
        return "command"
    if update.is_private or (update.is_group and mentions_bot(update.text, bot_username)):
        return "converse"
    return "ignore"


class Dispatcher:
    def __init__(
        self,
        client: MessagingClient,
        bridge: ConversationBridge,
        sessions: SessionProvider,
        *,
        allowed_user_ids: Set[int],
    ):
        self._client = client
        self._bridge = bridge
        self._sessions = sessions
        self._allowed_user_ids = set(allowed_user_ids)
        self._commands: Dict[str, Callable[[InboundUpdate], str]] = {
            "help": lambda update: MESSAGE_HELP,
            "start": lambda update: MESSAGE_START,
            "setToken": self._set_token,
            "settoken": self._set_token,
            "reload": self._reload,
        }

    def handle(self, update: InboundUpdate) -> Route:
        route = classify(
            update,
            bot_username=self._client.username,
            allowed_user_ids=self._allowed_user_ids,
        )
        if route == "unauthorized":
            logger.info(
                f"User {update.user_id} is not allowed to use this bot",
                extra={"extra": {"chat_id": update.chat_id, "user_id": update.user_id}},
            )
            self._reply(update, MESSAGE_UNAUTHORIZED)
        elif route == "command":
            handler = self._commands.get(update.command)
            text = handler(update) if handler else MESSAGE_UNKNOWN
            self._reply(update, text)
        elif route == "converse":
            self._converse(update)
        return route

    # ---- 路由处理 ----

    def _converse(self, update: InboundUpdate) -> None:
        try:
            self._client.send_typing(update.chat_id)
        except PlatformApiError as e:
            logger.warning(f"Couldn't send typing indicator: {e.message}", extra={"extra": {"chat_id": update.chat_id}})

        prompt = strip_mention(update.text, self._client.username)
        try:
            self._bridge.converse(update.chat_id, update.message_id, prompt)
        except BusinessError as e:
            logger.warning(
                f"Exchange failed: {e.message}",
                extra={"extra": {"chat_id": update.chat_id, "code": e.code}},
            )
            self._reply(update, f"Error: {e.message}")

    def _set_token(self, update: InboundUpdate) -> str:
        token = update.command_args.strip()
        if not token:
            return MESSAGE_TOKEN_MISSING
        try:
            self._sessions.persist_token(token)
        except BusinessError as e:
            return f"Error: {e.message}"
        return MESSAGE_TOKEN_SET

    def _reload(self, update: InboundUpdate) -> str:
        self._bridge.reset(update.chat_id)
        return MESSAGE_RELOADED

    def _reply(self, update: InboundUpdate, text: str) -> None:
        try:
            self._client.send_message(update.chat_id, update.message_id, text)
        except PlatformApiError as e:
            logger.error(
                f"Error sending message: {e.message}",
                extra={"extra": {"chat_id": update.chat_id, "code": e.code}},
            )
