"""进程入口：装配各组件并运行 Telegram 长轮询循环。"""

from __future__ import annotations

import signal
import sys
import threading
from typing import Optional

from chat_bridge.bridge import BotRunner, ConversationBridge, Dispatcher, LiveOutputProjector
from chat_bridge.config.persistent import PersistentConfig
from chat_bridge.config.settings import Settings, settings
from chat_bridge.domain.exceptions import BusinessError
from chat_bridge.infrastructure.logging.logger import logger
from chat_bridge.infrastructure.storage.memory_store import InMemoryConversationStore
from chat_bridge.messaging.telegram import TelegramClient
from chat_bridge.providers import create_backend
from chat_bridge.session.provider import SessionProvider


def bootstrap_session(cfg: Settings, sessions: SessionProvider) -> None:
    """没有已保存的 token 且未开启 manual_auth 时获取并保存会话。"""

    if sessions.current_token() or cfg.manual_auth:
        return
    token = sessions.acquire_session()
    sessions.persist_token(token)


def install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main(stop_event: Optional[threading.Event] = None) -> int:
    try:
        settings.validate_startup()
        persistent = PersistentConfig.load_or_create(settings.persistent_config_path)
        sessions = SessionProvider(persistent)
        bootstrap_session(settings, sessions)
    except BusinessError as e:
        logger.critical(f"Startup failed: {e.message}", extra={"extra": {"code": e.code}})
        return 1

    backend = create_backend(on_token_refresh=sessions.persist_token)
    logger.info("Started ChatGPT")

    client = TelegramClient(settings)
    try:
        client.get_me()
    except BusinessError as e:
        logger.critical(f"Couldn't start Telegram bot: {e.message}", extra={"extra": {"code": e.code}})
        client.close()
        return 1

    store = InMemoryConversationStore()
    projector = LiveOutputProjector(
        client,
        min_edit_interval=settings.edit_wait_seconds,
        max_message_length=settings.max_message_length,
        max_attempts=settings.edit_retries,
        typing_interval=settings.typing_interval_seconds,
    )
    bridge = ConversationBridge(store, backend, projector, sessions)
    dispatcher = Dispatcher(client, bridge, sessions, allowed_user_ids=settings.allowed_user_ids)
    runner = BotRunner(
        client,
        dispatcher,
        poll_timeout=settings.poll_timeout,
        max_workers=settings.max_workers,
    )

    if stop_event is None:
        stop_event = threading.Event()
        install_signal_handlers(stop_event)
    logger.info(f"Started Telegram bot! Message @{client.username} to start.")
    try:
        runner.run(stop_event)
    finally:
        client.close()
    logger.info("Stopped")
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
