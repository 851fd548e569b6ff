"""AgriSmart 农业助手顶层包。

该包提供助手对话引擎的核心实现，包括配置加载、领域模型、
模型后端适配、设备工具、工具调用循环、多级降级链与离线应答。
"""

from agri_assistant.agents.farm_assistant import FarmAssistant, TurnReply

__all__ = ["FarmAssistant", "TurnReply"]
