"""降级链的结果类型。

Success 不携带失败原因；Degraded / Exhausted 一定携带分类后的原因。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from agri_assistant.engine.failures import FailureKind


class Tier(str, Enum):
    """降级顺序中的层级。"""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    OFFLINE = "offline"


@dataclass(frozen=True)
class Success:
    text: str

    @property
    def tier(self) -> Tier:
        return Tier.PRIMARY


@dataclass(frozen=True)
class Degraded:
    text: str
    tier: Tier
    reason: FailureKind


@dataclass(frozen=True)
class Exhausted:
    reason: FailureKind


DegradationOutcome = Union[Success, Degraded, Exhausted]
