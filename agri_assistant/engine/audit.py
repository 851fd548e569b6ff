"""工具调用审计日志。

工具轮次不进入会话历史（避免工具负载泄漏到之后的提示中），
只在这里留下记录，供 UI 展示或审计使用。
"""

from typing import Iterable, Iterator, List

from agri_assistant.tools.definitions import ToolCallResult


class ToolAuditLog:
    def __init__(self) -> None:
        self._records: List[ToolCallResult] = []

    def record(self, result: ToolCallResult) -> None:
        self._records.append(result)

    def extend(self, results: Iterable[ToolCallResult]) -> None:
        self._records.extend(results)

    @property
    def records(self) -> List[ToolCallResult]:
        return list(self._records)

    def for_round(self, round_num: int) -> List[ToolCallResult]:
        return [r for r in self._records if r.round == round_num]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ToolCallResult]:
        return iter(list(self._records))
