"""对外 API 服务模块。

提供简化的函数接口供上层应用（Web 路由、命令行）调用。
"""

from typing import Any, Dict, List, Optional

from agri_assistant.agents.farm_assistant import FarmAssistant
from agri_assistant.config.settings import settings
from agri_assistant.domain.models import ImageBlob
from agri_assistant.infrastructure.logging.logger import logger


_assistant: Optional[FarmAssistant] = None


def get_default_assistant() -> FarmAssistant:
    """获取默认的农业助手实例（单例）。"""
    global _assistant
    if _assistant is None:
        _assistant = FarmAssistant.from_settings(settings)
    return _assistant


def run_assistant_turn(text: str, image_path: Optional[str] = None) -> Dict[str, Any]:
    """运行一个助手回合。

    Args:
        text: 用户输入内容
        image_path: 本地图片路径（可选）

    Returns:
        包含回复文本、所在层级和工具调用记录的字典

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    try:
        assistant = get_default_assistant()
        image = ImageBlob.from_path(image_path) if image_path else None
        reply = assistant.submit_turn(text, image=image)
        return {
            "reply": reply.reply_text,
            "tier": reply.tier.value,
            "tool_trace": [
                {
                    "id": r.call_id,
                    "name": r.name,
                    "arguments": r.arguments,
                    "result": r.result,
                    "is_error": r.is_error,
                    "round": r.round,
                }
                for r in reply.tool_trace
            ],
        }
    except Exception as e:
        logger.error(f"Assistant turn failed: {e}", extra={"extra": {"error": str(e)}})
        raise


def get_history() -> List[Dict[str, Any]]:
    """返回当前会话的所有回合（包括开场白）。"""
    assistant = get_default_assistant()
    return [
        {"role": t.role, "text": t.text, "has_image": t.image is not None}
        for t in assistant.store.turns()
    ]
