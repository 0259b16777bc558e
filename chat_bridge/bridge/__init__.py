"""流式对话桥接核心。

- projector: 把 StreamFragment 序列渲染为被反复编辑的 Telegram 消息。
- conversation: 串联续接状态、后端流与投影器的一次完整交互。
- dispatcher: 入站更新的鉴权、路由与命令处理。
- runner: 长轮询循环与按 chat 串行的任务调度。
"""

from chat_bridge.bridge.conversation import ConversationBridge
from chat_bridge.bridge.dispatcher import Dispatcher, classify
from chat_bridge.bridge.projector import LiveOutputProjector
from chat_bridge.bridge.runner import BotRunner, ChatSerialExecutor

__all__ = [
    "BotRunner",
    "ChatSerialExecutor",
    "ConversationBridge",
    "Dispatcher",
    "LiveOutputProjector",
    "classify",
]
