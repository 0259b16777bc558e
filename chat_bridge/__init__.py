"""chat_bridge 顶层包。

该包把 ChatGPT 的流式回答桥接到 Telegram：
按 chat 维护会话续接状态、调用后端流式接口，
并把增量回答以限速编辑的方式渲染为“正在打字”的消息。
"""
