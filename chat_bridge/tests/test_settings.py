import pytest

from chat_bridge.config.settings import Settings, is_user_allowed, parse_user_ids
from chat_bridge.domain.exceptions import ConfigError


def test_parse_user_ids():
    assert parse_user_ids("") == set()
    assert parse_user_ids("1, 2,3,") == {1, 2, 3}


def test_allowed_user_ids_from_env(monkeypatch):
    monkeypatch.setenv("TELEGRAM_ID", "10,20")
    monkeypatch.setenv("EDIT_WAIT_SECONDS", "2.5")
    cfg = Settings(telegram_token="t")
    assert cfg.allowed_user_ids == {10, 20}
    assert is_user_allowed(10, cfg.allowed_user_ids)
    assert not is_user_allowed(30, cfg.allowed_user_ids)
    assert cfg.edit_wait_seconds == 2.5


def test_empty_allow_list_allows_everyone(monkeypatch):
    monkeypatch.delenv("TELEGRAM_ID", raising=False)
    cfg = Settings(telegram_token="t", telegram_id="")
    assert is_user_allowed(12345, cfg.allowed_user_ids)


def test_invalid_telegram_id_rejected():
    with pytest.raises(ValueError):
        Settings(telegram_token="t", telegram_id="abc")


def test_validate_startup_requires_token(monkeypatch):
    monkeypatch.delenv("TELEGRAM_TOKEN", raising=False)
    cfg = Settings(telegram_token=None)
    with pytest.raises(ConfigError):
        cfg.validate_startup()
    Settings(telegram_token="123:abc").validate_startup()


def test_yaml_config_source(monkeypatch, tmp_path):
    cfg_file = tmp_path / "bridge.yaml"
    cfg_file.write_text("max_workers: 3\nmanual_auth: true\n", encoding="utf-8")
    monkeypatch.setenv("CHAT_BRIDGE_CONFIG_FILE", str(cfg_file))
    monkeypatch.delenv("MAX_WORKERS", raising=False)
    monkeypatch.delenv("MANUAL_AUTH", raising=False)
    cfg = Settings(telegram_token="t")
    assert cfg.max_workers == 3
    assert cfg.manual_auth is True
