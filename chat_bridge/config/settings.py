"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, Set

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chat_bridge.domain.exceptions import ConfigError


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_BRIDGE_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


def parse_user_ids(raw: str) -> Set[int]:
    """把逗号分隔的 Telegram 用户 ID 解析为集合，空字符串表示不限制。"""

    ids: Set[int] = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        ids.add(int(part))
    return ids


def is_user_allowed(user_id: int, allowed_user_ids: Set[int]) -> bool:
    """空白名单表示所有用户都可使用。"""

    return not allowed_user_ids or user_id in allowed_user_ids


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Telegram ----
    telegram_token: Optional[str] = Field(default=None, description="Telegram Bot Token")
    telegram_id: str = Field(
        default="",
        description="允许使用机器人的 Telegram 用户 ID，逗号分隔；为空表示所有人可用",
    )
    telegram_api_url: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API 基础URL",
    )
    edit_wait_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="两次编辑同一条消息之间的最小间隔（秒）",
    )
    poll_timeout: int = Field(default=10, ge=0, le=50, description="getUpdates 长轮询超时（秒）")
    edit_retries: int = Field(default=3, ge=1, le=10, description="发送/编辑失败时的最大尝试次数")
    typing_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="流式输出期间重新发送 typing 状态的间隔（秒）",
    )
    max_message_length: int = Field(default=4096, ge=16, description="单条 Telegram 消息的最大长度")
    parse_mode: Optional[str] = Field(default="Markdown", description="Telegram 消息解析模式，留空为纯文本")

    # ---- ChatGPT ----
    manual_auth: bool = Field(default=False, description="是否只允许通过 /setToken 手动设置会话")
    chatgpt_base_url: str = Field(
        default="https://chat.openai.com",
        description="ChatGPT Web 后端基础URL",
    )
    chatgpt_model: str = Field(
        default="text-davinci-002-render-sha",
        description="会话请求使用的模型名",
    )
    persistent_config_path: str = Field(
        default="~/.config/chatgpt.json",
        description="保存会话 token 的 JSON 文件",
    )

    # ---- 通用 ----
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")
    max_workers: int = Field(default=8, ge=1, le=64, description="并发处理更新的工作线程数")
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("telegram_id")
    @classmethod
    def validate_telegram_id(cls, v: str) -> str:
        try:
            parse_user_ids(v)
        except ValueError:
            raise ValueError("TELEGRAM_ID must be a comma-separated list of integers")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = (v or "INFO").upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v!r}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    @property
    def allowed_user_ids(self) -> Set[int]:
        return parse_user_ids(self.telegram_id)

    def validate_startup(self) -> None:
        """启动前校验必填项，缺失时抛出 ConfigError。"""

        if not self.telegram_token:
            raise ConfigError(code="MISSING_TELEGRAM_TOKEN", message="TELEGRAM_TOKEN not set")


settings = Settings()
