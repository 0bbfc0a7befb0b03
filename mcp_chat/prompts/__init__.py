"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取对应的 system prompt 文本，
用于构造每次查询的第一条 ChatMessage(role="system")。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent
DEFAULT_PROMPT = "weather_assistant"


def load_system_prompt(name: str = DEFAULT_PROMPT, locale: str = "zh") -> str:
    """根据提示词名称和语言加载系统提示词文本。"""

    fname = PROMPTS_DIR / locale / f"{name}_system.md"
    return fname.read_text(encoding="utf-8").strip()
