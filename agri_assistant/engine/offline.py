"""离线演示回复。

当所有在线层级都不可用时，按关键字把用户最新的文本归入固定话题，
返回预置回复，并附上一段说明离线原因的提示。
匹配不区分大小写，话题按 TOPIC_KEYWORDS 的顺序检查，先命中者生效。
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from agri_assistant.engine.failures import FailureKind


TOPIC_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("weather", ("weather", "cloud", "rain")),
    ("pest", ("pest", "bug", "disease")),
    ("crop", ("crop", "plant", "seed")),
    ("price", ("price", "market", "cost")),
)

DEFAULT_TOPIC = "default"

CANNED_REPLIES: Dict[str, str] = {
    "default": (
        "I'm currently in Demo Mode because the AI service is unavailable. I can tell you that "
        "the weather looks good for planting wheat, and you should check your soil moisture levels!"
    ),
    "weather": (
        "Based on local data (simulated), it's currently 24°C with 60% humidity. "
        "Perfect for applying fertilizer."
    ),
    "pest": (
        "For pest control, I recommend using organic neem oil spray. "
        "It's effective against aphids and whiteflies."
    ),
    "crop": (
        "Wheat and Corn are excellent choices for this season. "
        "Make sure to rotate your crops to maintain soil health."
    ),
    "price": "Market prices are stable. Wheat is trading at ₹2100/quintal and Corn at ₹1800/quintal.",
}

QUOTA_NOTE = (
    "(Note: I am in Offline Demo Mode because the API quota was exceeded. Please try again later.)"
)
UNREACHABLE_NOTE = (
    "(Note: I am in Offline Demo Mode because the AI Service is currently unreachable.)"
)


@dataclass(frozen=True)
class OfflineReply:
    topic: str
    reply: str
    note: str

    def render(self) -> str:
        return f"{self.reply}\n\n{self.note}"


class OfflineResponder:
    def __init__(self, replies: Optional[Mapping[str, str]] = None):
        self._replies = dict(CANNED_REPLIES)
        if replies:
            self._replies.update(replies)

    def respond(self, text: str, reason: FailureKind = FailureKind.UNKNOWN) -> OfflineReply:
        topic = match_topic(text)
        note = QUOTA_NOTE if reason == FailureKind.QUOTA_EXCEEDED else UNREACHABLE_NOTE
        reply = self._replies.get(topic) or self._replies[DEFAULT_TOPIC]
        return OfflineReply(topic=topic, reply=reply, note=note)


def match_topic(text: str) -> str:
    lowered = (text or "").lower()
    for topic, keywords in TOPIC_KEYWORDS:
        if any(word in lowered for word in keywords):
            return topic
    return DEFAULT_TOPIC
