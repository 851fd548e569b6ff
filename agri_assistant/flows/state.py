"""State definition for the degradation graph."""

from __future__ import annotations

import threading
from typing import Optional, Sequence, TypedDict

from agri_assistant.domain.conversation import Turn
from agri_assistant.domain.models import UserInput
from agri_assistant.domain.outcomes import DegradationOutcome
from agri_assistant.engine.audit import ToolAuditLog
from agri_assistant.engine.failures import FailureKind


class ChainState(TypedDict, total=False):
    """State shared across degradation nodes."""

    history: Sequence[Turn]
    user_input: UserInput
    audit: ToolAuditLog
    cancel_event: Optional[threading.Event]
    trace_id: str
    # 主模型失败后的分类结果，secondary 失败时保持不变
    reason: Optional[FailureKind]
    error: Optional[str]
    outcome: Optional[DegradationOutcome]
