"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在配置里使用的统一名称，例如 "assistant-chat"。
- provider_model：厂商实际提供的模型 ID，例如 "gemini-2.5-flash"。

未登记的逻辑名会被直接当作厂商模型 ID 使用，便于在配置中临时指定模型。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


# Gemini 配置：主模型支持函数调用，备用模型用于 404 时的单次重试
GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    models={
        "assistant-chat": ModelConfig(
            logical_name="assistant-chat",
            provider_model="gemini-2.5-flash",
            max_tokens=2048,
            default_temperature=0.7,
        ),
        "assistant-lite": ModelConfig(
            logical_name="assistant-lite",
            provider_model="gemini-2.0-flash",
            max_tokens=1024,
            default_temperature=0.7,
        ),
    },
)

# OpenAI 兼容接口配置
OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    models={
        "assistant-chat": ModelConfig(
            logical_name="assistant-chat",
            provider_model="gpt-4o",
            max_tokens=2048,
            default_temperature=0.7,
        ),
        "assistant-lite": ModelConfig(
            logical_name="assistant-lite",
            provider_model="gpt-4o-mini",
            max_tokens=1024,
            default_temperature=0.7,
        ),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def resolve_model(provider: ProviderConfig, name: str) -> ModelConfig:
    """逻辑名 -> ModelConfig；未登记的名称按厂商模型 ID 原样使用。"""

    cfg = provider.models.get(name)
    if cfg is not None:
        return cfg
    return ModelConfig(
        logical_name=name,
        provider_model=name,
        max_tokens=2048,
        default_temperature=0.7,
    )
