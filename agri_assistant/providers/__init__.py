"""模型后端集成层。

该包下的模块负责：
- 定义 Model Client 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (gemini_client、openai_client)。
"""

from typing import Literal

from agri_assistant.config.settings import settings
from agri_assistant.providers.base import ModelClient
from agri_assistant.providers.gemini_client import GeminiClient
from agri_assistant.providers.openai_client import ChatCompletionsClient


BackendTier = Literal["primary", "secondary"]


def create_model_client(tier: BackendTier = "primary", cfg=None) -> ModelClient:
    """根据配置创建指定层级的 Model Client。"""

    cfg = cfg or settings
    model = cfg.secondary_model if tier == "secondary" else cfg.primary_model
    provider_name = (getattr(cfg, "provider", None) or "gemini").lower()
    if provider_name == "openai":
        return ChatCompletionsClient(cfg, model=model)
    return GeminiClient(cfg, model=model)
