from chat_bridge.bridge.conversation import ConversationBridge
from chat_bridge.bridge.dispatcher import (
    MESSAGE_HELP,
    MESSAGE_RELOADED,
    MESSAGE_TOKEN_MISSING,
    MESSAGE_TOKEN_SET,
    MESSAGE_UNAUTHORIZED,
    MESSAGE_UNKNOWN,
    Dispatcher,
    classify,
    strip_mention,
)
from chat_bridge.bridge.projector import LiveOutputProjector
from chat_bridge.config.persistent import PersistentConfig
from chat_bridge.domain.exceptions import AuthExpiredError, NetworkError
from chat_bridge.domain.models import InboundUpdate, StreamFragment
from chat_bridge.infrastructure.storage.memory_store import InMemoryConversationStore
from chat_bridge.session.provider import SessionProvider


class FakeMessaging:
    username = "bridge_bot"

    def __init__(self):
        self.sent = []
        self.edits = []
        self.deleted = []
        self.typing = []

    def send_message(self, chat_id, reply_to_message_id, text):
        self.sent.append((chat_id, reply_to_message_id, text))
        return 1000 + len(self.sent)

    def edit_message(self, chat_id, message_id, text):
        self.edits.append((chat_id, message_id, text))

    def delete_message(self, chat_id, message_id):
        self.deleted.append((chat_id, message_id))

    def send_typing(self, chat_id):
        self.typing.append(chat_id)


class FakeBackend:
    name = "fake"

    def __init__(self, answers=None, error=None, stream_error=None):
        self.calls = []
        self._answers = answers or ["Hel", "Hello there"]
        self._error = error
        self._stream_error = stream_error

    def send(self, chat_id, prompt, session_token, continuation):
        self.calls.append(
            {
                "chat_id": chat_id,
                "prompt": prompt,
                "token": session_token,
                "conversation_id": continuation.conversation_id,
                "last_message_id": continuation.last_message_id,
            }
        )
        if self._error:
            raise self._error
        return self._stream(chat_id)

    def _stream(self, chat_id):
        for text in self._answers:
            yield StreamFragment(kind="delta", text=text)
        if self._stream_error:
            raise self._stream_error
        yield StreamFragment(
            kind="final",
            text=self._answers[-1] + "!",
            conversation_id=f"conv-{chat_id}",
            message_id=f"msg-{len(self.calls)}",
        )


def build(tmp_path, backend=None, allowed=()):
    client = FakeMessaging()
    backend = backend or FakeBackend()
    store = InMemoryConversationStore()
    sessions = SessionProvider(PersistentConfig.load_or_create(tmp_path / "chatgpt.json"), interactive=False)
    sessions.persist_token("initial-token")
    projector = LiveOutputProjector(client, min_edit_interval=0.0, sleep=lambda s: None)
    bridge = ConversationBridge(store, backend, projector, sessions)
    dispatcher = Dispatcher(client, bridge, sessions, allowed_user_ids=set(allowed))
    return dispatcher, client, backend, store, sessions


def update(text, *, chat_id=900, user_id=7, chat_kind="private", command=None, args=""):
    return InboundUpdate(
        update_id=1,
        chat_id=chat_id,
        message_id=55,
        user_id=user_id,
        text=text,
        chat_kind=chat_kind,
        is_command=command is not None,
        command=command or "",
        command_args=args,
    )


def test_classify_routes():
    allowed = {7}
    assert classify(update("hi"), bot_username="bridge_bot", allowed_user_ids=allowed) == "converse"
    assert classify(update("hi", user_id=8), bot_username="bridge_bot", allowed_user_ids=allowed) == "unauthorized"
    assert classify(update("hi", user_id=8), bot_username="bridge_bot", allowed_user_ids=set()) == "converse"
    assert classify(update("/help", command="help"), bot_username="bridge_bot", allowed_user_ids=allowed) == "command"
    group_plain = update("hello all", chat_kind="group")
    assert classify(group_plain, bot_username="bridge_bot", allowed_user_ids=allowed) == "ignore"
    group_mention = update("@bridge_bot what is 2+2?", chat_kind="supergroup")
    assert classify(group_mention, bot_username="bridge_bot", allowed_user_ids=allowed) == "converse"
    trailing = update("what is 2+2? @bridge_bot", chat_kind="group")
    assert classify(trailing, bot_username="bridge_bot", allowed_user_ids=allowed) == "converse"
    assert classify(update("news", chat_kind="channel"), bot_username="bridge_bot", allowed_user_ids=allowed) == "ignore"


def test_command_for_other_bot_is_ignored():
    other = update("/help@other_bot", command="help")
    other.command_target = "other_bot"
    assert classify(other, bot_username="bridge_bot", allowed_user_ids=set()) == "ignore"


def test_strip_mention():
    assert strip_mention("@bridge_bot  hello", "bridge_bot") == "hello"
    assert strip_mention("hello @bridge_bot", "bridge_bot") == "hello"
    assert strip_mention("hello", "bridge_bot") == "hello"


def test_private_message_streams_answer(tmp_path):
    dispatcher, client, backend, store, _ = build(tmp_path, allowed=[7])
    assert dispatcher.handle(update("Hello")) == "converse"

    assert client.typing[0] == 900
    assert client.sent[0] == (900, 55, "Hel")
    assert client.edits[-1][2] == "Hello there!"
    assert [e[2] for e in client.edits].count("Hello there!") == 1
    assert backend.calls[0]["prompt"] == "Hello"
    assert backend.calls[0]["token"] == "initial-token"
    session = store.get_or_create(900)
    assert session.conversation_id == "conv-900"
    assert session.last_message_id == "msg-1"


def test_second_message_continues_conversation(tmp_path):
    dispatcher, _, backend, _, _ = build(tmp_path)
    dispatcher.handle(update("first"))
    dispatcher.handle(update("second"))
    assert backend.calls[1]["conversation_id"] == "conv-900"
    assert backend.calls[1]["last_message_id"] == "msg-1"


def test_unauthorized_user_gets_rejected_without_backend_call(tmp_path):
    dispatcher, client, backend, _, _ = build(tmp_path, allowed=[1])
    assert dispatcher.handle(update("Hello", user_id=7)) == "unauthorized"
    assert client.sent == [(900, 55, MESSAGE_UNAUTHORIZED)]
    assert backend.calls == []


def test_set_token_updates_credentials(tmp_path):
    dispatcher, client, backend, _, sessions = build(tmp_path)
    dispatcher.handle(update("/setToken abc123", command="setToken", args="abc123"))
    assert client.sent[-1][2] == MESSAGE_TOKEN_SET
    assert sessions.current_token() == "abc123"

    dispatcher.handle(update("Hello"))
    assert backend.calls[-1]["token"] == "abc123"


def test_set_token_without_value(tmp_path):
    dispatcher, client, _, _, sessions = build(tmp_path)
    dispatcher.handle(update("/setToken", command="setToken"))
    assert client.sent[-1][2] == MESSAGE_TOKEN_MISSING
    assert sessions.current_token() == "initial-token"


def test_reload_clears_only_issuing_chat(tmp_path):
    dispatcher, client, backend, store, _ = build(tmp_path)
    store.update(900, "X", "m-x")
    store.update(901, "Y", "m-y")

    dispatcher.handle(update("/reload", command="reload"))
    assert client.sent[-1][2] == MESSAGE_RELOADED
    assert store.get_or_create(900).is_fresh
    assert store.get_or_create(901).conversation_id == "Y"

    dispatcher.handle(update("fresh start"))
    assert backend.calls[-1]["conversation_id"] is None
    assert backend.calls[-1]["last_message_id"] is None


def test_help_and_unknown_commands(tmp_path):
    dispatcher, client, _, _, _ = build(tmp_path)
    dispatcher.handle(update("/help", command="help"))
    dispatcher.handle(update("/frobnicate", command="frobnicate"))
    assert client.sent[0][2] == MESSAGE_HELP
    assert client.sent[1][2] == MESSAGE_UNKNOWN


def test_auth_expired_reports_error_and_keeps_session(tmp_path):
    backend = FakeBackend(error=AuthExpiredError(code="AUTH_EXPIRED", message="session expired"))
    dispatcher, client, _, store, _ = build(tmp_path, backend=backend)
    store.update(900, "X", "m-x")

    dispatcher.handle(update("Hello"))
    assert client.sent == [(900, 55, "Error: session expired")]
    assert client.edits == []
    session = store.get_or_create(900)
    assert session.conversation_id == "X"
    assert session.last_message_id == "m-x"


def test_group_mention_is_stripped_from_prompt(tmp_path):
    dispatcher, _, backend, _, _ = build(tmp_path)
    dispatcher.handle(update("@bridge_bot tell me a joke", chat_kind="group"))
    assert backend.calls[0]["prompt"] == "tell me a joke"


def test_failure_mid_stream_keeps_partial_answer_and_session(tmp_path):
    backend = FakeBackend(answers=["partial"], stream_error=NetworkError(code="NETWORK_ERROR", message="connection reset"))
    dispatcher, client, _, store, _ = build(tmp_path, backend=backend)
    store.update(900, "X", "m-x")

    dispatcher.handle(update("Hello"))

    assert client.sent == [(900, 55, "partial"), (900, 55, "Error: connection reset")]
    assert client.edits == []
    assert client.deleted == []
    session = store.get_or_create(900)
    assert session.conversation_id == "X"
    assert session.last_message_id == "m-x"


def test_bot_username_match_ignores_case(tmp_path):
    command = update("/help@Bridge_Bot", command="help")
    command.command_target = "Bridge_Bot"
    assert classify(command, bot_username="bridge_bot", allowed_user_ids=set()) == "command"

    mention = update("@BRIDGE_BOT tell me a joke", chat_kind="group")
    assert classify(mention, bot_username="bridge_bot", allowed_user_ids=set()) == "converse"

    dispatcher, _, backend, _, _ = build(tmp_path)
    dispatcher.handle(mention)
    assert backend.calls[0]["prompt"] == "tell me a joke"
