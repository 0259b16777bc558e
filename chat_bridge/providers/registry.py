"""后端端点与模型配置。

ChatGPT Web 后端有两个端点：
- session_path：用 session token（Cookie）换取短期 access token。
- conversation_path：携带 access token 发起一轮对话，响应为 SSE 流。
"""

from dataclasses import dataclass
from typing import Mapping


@dataclass
class BackendConfig:
    """某个后端的端点配置。"""

    name: str
    base_url: str
    session_path: str
    conversation_path: str
    default_model: str
    # access token 响应未给出过期时间时使用的缓存时长（秒）
    default_token_ttl: float = 3600.0


CHATGPT_CONFIG = BackendConfig(
    name="chatgpt",
    base_url="https://chat.openai.com",
    session_path="/api/auth/session",
    conversation_path="/backend-api/conversation",
    default_model="text-davinci-002-render-sha",
)


BACKEND_REGISTRY: Mapping[str, BackendConfig] = {
    "chatgpt": CHATGPT_CONFIG,
}


def get_backend_config(name: str) -> BackendConfig:
    """根据名称获取 BackendConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in BACKEND_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown backend: {name!r}")
