"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("FOUNDRY_CONFIG_FILE")
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


RunMode = Literal["auto", "events", "polling"]


class PydanticSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Foundry 项目连接 ----
    azure_ai_projects_connection_string: Optional[str] = Field(
        default=None,
        description="Azure AI Projects 连接配置（项目 endpoint），例如 https://<res>.services.ai.azure.com/api/projects/<name>",
    )
    project_endpoint: Optional[str] = Field(
        default=None,
        description="项目级 endpoint，例如 https://<res>.services.ai.azure.com/api/projects/<name>",
    )

    # ---- Agent 调用 ----
    foundry_agent_id: Optional[str] = Field(default=None, description="服务层默认使用的 agent ID")
    poll_interval_ms: int = Field(default=1000, ge=0, description="轮询 run 状态的间隔（毫秒）")
    run_mode: RunMode = Field(
        default="auto",
        description="auto: 传输层支持时使用事件流；events: 强制事件流；polling: 强制快照轮询",
    )
    messages_page_limit: int = Field(default=100, ge=1, le=100, description="单次拉取消息的最大条数")

    http_timeout: float = Field(default=30.0, ge=1.0, description="SDK 连接与读取超时（秒）")
    log_dir: str = Field(default="logs", description="日志目录")
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

    @field_validator("azure_ai_projects_connection_string", "project_endpoint")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().rstrip("/")
        return v or None

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


settings = PydanticSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = type(settings)
