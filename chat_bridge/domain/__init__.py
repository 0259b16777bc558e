"""领域层模型与协议。

包含：
- models: ChatSession / StreamFragment / LiveMessage / InboundUpdate 等模型。
- conversation: 会话续接状态的 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
