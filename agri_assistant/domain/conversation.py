from dataclasses import dataclass
from typing import List, Literal, Optional, Protocol, Tuple

from .models import ImageBlob


TurnRole = Literal["user", "assistant"]


@dataclass(frozen=True)
class Turn:
    role: TurnRole
    text: str
    image: Optional[ImageBlob] = None


class ConversationStore(Protocol):
    def append(self, turn: Turn) -> None:
        ...

    def extend(self, turns: List[Turn]) -> None:
        ...

    def turns(self) -> Tuple[Turn, ...]:
        ...

    def __len__(self) -> int:
        ...
