"""AI 后端集成层。

该包下的模块负责：
- 定义后端抽象接口 (base)。
- 维护后端端点与模型配置 (registry)。
- 提供 ChatGPT Web 后端的具体实现 (chatgpt_client)。
"""

from typing import Callable, Optional

from chat_bridge.config.settings import settings
from chat_bridge.providers.base import ChatBackend
from chat_bridge.providers.chatgpt_client import ChatGPTClient
from chat_bridge.providers.registry import get_backend_config


def create_backend(
    name: str = "chatgpt",
    on_token_refresh: Optional[Callable[[str], None]] = None,
) -> ChatBackend:
    """根据名称创建后端实例，目前只支持 chatgpt。"""

    backend_cfg = get_backend_config(name)
    return ChatGPTClient(settings, backend=backend_cfg, on_token_refresh=on_token_refresh)
