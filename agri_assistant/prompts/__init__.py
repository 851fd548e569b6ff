"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取助手的 system prompt 文本，
由 Loop Controller 作为 ChatRequest.system_prompt 发送。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(locale: str = "en") -> str:
    """根据语言加载农业助手的系统提示词文本。"""

    fname = PROMPTS_DIR / locale / "assistant_system.md"
    return fname.read_text(encoding="utf-8")
