"""桥接层共享的数据模型。

本模块定义了 Telegram 与 ChatGPT 之间传递的标准数据结构：

- ChatSession: 每个 Telegram chat 一份的会话续接状态。
- StreamFragment: 后端流式回答的一个增量（delta）或终结标记（final）。
- AIExchange: 一次请求的临时上下文，持有只能消费一次的增量序列。
- LiveMessage: 正在被反复编辑、用于模拟“打字”效果的 Telegram 消息。
- InboundUpdate: 从 Telegram 更新流中解析出的入站消息。

Provider 适配器与 Telegram 客户端都只依赖这些模型，
并负责在各自的 JSON 格式和这些模型之间做转换。
"""

from dataclasses import dataclass, field, replace
from typing import Iterator, List, Literal, Optional


FragmentKind = Literal["delta", "final"]

# Telegram chat.type 字段
ChatKind = Literal["private", "group", "supergroup", "channel"]


@dataclass
class ChatSession:
    """单个 chat 的会话续接状态。

    - chat_id: Telegram chat 标识，不可变。
    - conversation_id: 后端多轮会话句柄，首次成功交互前为空。
    - last_message_id: 上一轮回答的消息 ID，后端据此接续上下文。
    """

    chat_id: int
    conversation_id: Optional[str] = None
    last_message_id: Optional[str] = None

    @property
    def is_fresh(self) -> bool:
        return self.conversation_id is None and self.last_message_id is None

    def snapshot(self) -> "ChatSession":
        """返回一份副本，调用方持有副本不会影响存储中的状态。"""

        return replace(self)


@dataclass(frozen=True)
class StreamFragment:
    """流式回答的一个单元。

    kind:
        - "delta": 中间增量，delta 为本次新增文本，text 为累计文本。
        - "final": 终结标记，text 为完整回答，并携带新的续接 ID。
    """

    kind: FragmentKind
    text: str
    delta: str = ""
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.kind == "final"


class AIExchange:
    """一次后端请求的临时上下文。

    增量序列只能被一个消费者完整遍历一次，重复遍历会抛出 RuntimeError。
    """

    def __init__(self, chat_id: int, prompt: str, session: ChatSession, fragments: Iterator[StreamFragment]):
        self.chat_id = chat_id
        self.prompt = prompt
        self.session = session
        self._fragments = fragments
        self._consumed = False

    def __iter__(self) -> Iterator[StreamFragment]:
        if self._consumed:
            raise RuntimeError(f"fragments of chat {self.chat_id} already consumed")
        self._consumed = True
        return iter(self._fragments)


@dataclass
class LiveMessage:
    """正在被渐进编辑的 Telegram 消息，text 为最后一次实际发送的文本。"""

    chat_id: int
    message_id: int
    text: str


@dataclass
class ProjectionResult:
    """一次投影的结果。

    - final: 后端的终结增量；流异常中止时为空。
    - messages: 本次回答占用的全部 Telegram 消息（超长时会拆分成多条）。
    - edits: 实际发出的编辑次数。
    - delivery_errors: 重试耗尽后仍失败的发送/编辑错误信息。
    """

    final: Optional[StreamFragment] = None
    messages: List[LiveMessage] = field(default_factory=list)
    edits: int = 0
    delivery_errors: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(m.text for m in self.messages)


@dataclass
class InboundUpdate:
    """Telegram 入站消息（仅文本消息）。

    - command: 去掉斜杠与 @botname 后的命令名，非命令时为空。
    - command_target: 命令中 @ 后面的机器人用户名（如 /help@my_bot）。
    """

    update_id: int
    chat_id: int
    message_id: int
    user_id: int
    text: str
    chat_kind: ChatKind = "private"
    is_command: bool = False
    command: str = ""
    command_args: str = ""
    command_target: Optional[str] = None

    @property
    def is_private(self) -> bool:
        return self.chat_kind == "private"

    @property
    def is_group(self) -> bool:
        return self.chat_kind in ("group", "supergroup")
