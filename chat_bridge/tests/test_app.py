import threading

from chat_bridge import app
from chat_bridge.config.persistent import PersistentConfig
from chat_bridge.session.provider import SessionProvider


class CfgStub:
    def __init__(self, manual_auth):
        self.manual_auth = manual_auth


def test_main_exits_1_without_telegram_token(monkeypatch):
    monkeypatch.setattr(app.settings, "telegram_token", None)
    assert app.main(threading.Event()) == 1


def test_bootstrap_acquires_and_persists_token(tmp_path):
    sessions = SessionProvider(
        PersistentConfig.load_or_create(tmp_path / "c.json"),
        prompt=lambda text: "tok-1",
        interactive=True,
    )
    app.bootstrap_session(CfgStub(manual_auth=False), sessions)
    assert sessions.current_token() == "tok-1"


def test_bootstrap_skipped_with_manual_auth(tmp_path):
    sessions = SessionProvider(PersistentConfig.load_or_create(tmp_path / "c.json"), interactive=False)
    app.bootstrap_session(CfgStub(manual_auth=True), sessions)
    assert sessions.current_token() is None
