"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
环境变量名沿用 OpenAI 兼容客户端的习惯（OPENAI_API_KEY / OPENAI_API_BASE / OPENAI_MODEL）。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("MCP_CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.append(Path.cwd() / "config.yaml")

    seen: set[Path] = set()
    for path in candidates:
        if path in seen:
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


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 聊天补全接口 ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI 兼容接口的 API 密钥")
    openai_base_url: str = Field(
        default="https://api.siliconflow.cn/v1",
        validation_alias=AliasChoices("openai_api_base", "openai_base_url"),
        description="OpenAI 兼容接口的基础URL",
    )
    openai_model: str = Field(default="deepseek-ai/DeepSeek-V2.5", description="模型 ID")
    max_tokens: int = Field(
        default=512,
        ge=1,
        validation_alias=AliasChoices("openai_max_tokens", "max_tokens"),
        description="单次回答的最大 token 数",
    )

    # ---- 采样参数 ----
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=0.7, gt=0.0, le=1.0)
    top_k: Optional[int] = Field(default=50, ge=1)
    frequency_penalty: Optional[float] = Field(default=0.5, ge=-2.0, le=2.0)

    # ---- 超时与轮数 ----
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")
    backend_timeout: float = Field(default=30.0, ge=1.0, description="工具后端握手/请求超时时间（秒）")
    max_tool_rounds: int = Field(
        default=1,
        ge=1,
        le=10,
        description="单次查询内声明工具的最大轮数，之后的一轮只生成最终回答",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(
        default=False,
        validation_alias=AliasChoices("agent_log_redact_content", "log_redact_content"),
        description="是否截断日志内容",
    )
    debug: bool = Field(
        default=False,
        validation_alias=AliasChoices("mcp_chat_debug", "debug"),
        description="是否在日志中记录完整请求体",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

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


settings = Settings()
