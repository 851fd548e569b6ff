"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：初始化参数 > 环境变量 > .env > config.yaml。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic import Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("AGRI_ASSISTANT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
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


class YamlConfigSource(PydanticBaseSettingsSource):
    """把 config.yaml 作为 pydantic-settings 的一个配置源。"""

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        data = _load_config_from_yaml()
        known = self.settings_cls.model_fields
        return {k: v for k, v in data.items() if k in known}


class Settings(BaseSettings):
    """助手运行配置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    provider: str = Field(
        default="gemini",
        description="后端 Provider 名称：gemini 或 openai（OpenAI 兼容接口）",
    )
    primary_model: str = Field(
        default="assistant-chat",
        description="主模型逻辑名，由 registry 映射为具体厂商模型",
    )
    secondary_model: str = Field(
        default="assistant-lite",
        description="备用模型逻辑名，仅在主模型不可用（404）时单次调用",
    )

    # Gemini
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    # OpenAI 兼容接口
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI 兼容接口 API 密钥")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI 兼容接口基础URL",
    )

    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    max_tool_rounds: int = Field(
        default=8,
        ge=1,
        le=20,
        description="单轮对话内工具调用最大轮数（硬上限 20）",
    )
    enable_secondary_fallback: bool = Field(default=True, description="主模型 404 时是否尝试备用模型")
    enable_offline_fallback: bool = Field(default=True, description="是否启用离线演示回复")

    inventory_file: Optional[str] = Field(
        default=None,
        description="设备目录 YAML 文件，为空时使用内置目录",
    )
    greeting: str = Field(
        default=(
            "Hello! I am your AgriSmart farming assistant. Ask me about crops, pests, "
            "weather, or upload a photo for diagnosis."
        ),
        description="会话开场白（不会发送给模型）",
    )
    image_prompt: str = Field(
        default="Analyze this image for farming advice.",
        description="只上传图片时使用的默认提问",
    )

    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("gemini_api_key", "openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        name = v.strip().lower()
        if name not in {"gemini", "openai"}:
            raise ValueError(f"Unsupported provider: {v!r}")
        return name

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSource(settings_cls),
            file_secret_settings,
        )


settings = Settings()
