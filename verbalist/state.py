"""States of the capture pipeline.

Each state is its own small frozen class. Equality is decided per tag: two
``Previewing`` states match when their drafts share an id, two ``Error``
states match when their messages match, and every other pair of states
matches when the tags do.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from .models import TaskRecord


@dataclass(frozen=True, eq=False)
class CaptureState:
    tag: ClassVar[str] = "state"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CaptureState):
            return NotImplemented
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(self.tag)

    def __str__(self) -> str:
        return self.tag


@dataclass(frozen=True, eq=False)
class Idle(CaptureState):
    tag: ClassVar[str] = "idle"


@dataclass(frozen=True, eq=False)
class Listening(CaptureState):
    tag: ClassVar[str] = "listening"


@dataclass(frozen=True, eq=False)
class Transcribing(CaptureState):
    tag: ClassVar[str] = "transcribing"


@dataclass(frozen=True, eq=False)
class Parsing(CaptureState):
    tag: ClassVar[str] = "parsing"


@dataclass(frozen=True, eq=False)
class Committed(CaptureState):
    tag: ClassVar[str] = "committed"


@dataclass(frozen=True, eq=False)
class Previewing(CaptureState):
    tag: ClassVar[str] = "previewing"

    draft: TaskRecord

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CaptureState):
            return NotImplemented
        return isinstance(other, Previewing) and other.draft.id == self.draft.id

    def __hash__(self) -> int:
        return hash((self.tag, self.draft.id))

    def __str__(self) -> str:
        return f"previewing({self.draft.title!r})"


@dataclass(frozen=True, eq=False)
class Error(CaptureState):
    tag: ClassVar[str] = "error"

    message: str

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CaptureState):
            return NotImplemented
        return isinstance(other, Error) and other.message == self.message

    def __hash__(self) -> int:
        return hash((self.tag, self.message))

    def __str__(self) -> str:
        return f"error({self.message!r})"


IDLE = Idle()
LISTENING = Listening()
TRANSCRIBING = Transcribing()
PARSING = Parsing()
COMMITTED = Committed()
