"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 提供 OpenAI 兼容接口的具体实现 (openai_compat)。
"""

from typing import Optional

from mcp_chat.config.settings import settings
from mcp_chat.domain.exceptions import ValidationError
from mcp_chat.providers.base import ProviderClient
from mcp_chat.providers.openai_compat import OpenAICompatClient


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，目前仅支持 OpenAI 兼容接口。"""

    provider_name = (name or "openai").lower()
    if provider_name == "openai":
        return OpenAICompatClient(settings)
    raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {name!r}")
