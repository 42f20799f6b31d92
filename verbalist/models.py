"""Dataclasses describing persistent objects for verbalist."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional


def new_task_id() -> str:
    return str(uuid.uuid4()).upper()


@dataclass(slots=True, eq=False)
class TaskRecord:
    """A single task as stored remotely.

    Two records are the same task when their ids match, whatever the other
    fields say.
    """

    id: str
    title: str
    completed: bool = False
    sort_order: int = 0

    @classmethod
    def new(cls, title: str, completed: bool = False, sort_order: int = 0) -> "TaskRecord":
        return cls(id=new_task_id(), title=title.strip(), completed=completed, sort_order=sort_order)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TaskRecord):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "completed": self.completed,
            "sort_order": self.sort_order,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "TaskRecord":
        return cls(
            id=str(payload["id"]),
            title=str(payload["title"]),
            completed=bool(payload.get("completed", False)),
            sort_order=int(payload.get("sort_order", 0)),
        )


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    groq_api_key: Optional[str] = None
    api_base_url: str = "https://api.groq.com/openai/v1"
    llm_model: str = "llama3-8b-8192"
    whisper_model: str = "whisper-large-v3"
    server_url: Optional[str] = None
    server_token: Optional[str] = None
    verify_ssl: bool = True
    api_timeout: float = 30.0
    sort_policy: str = "newest"
    batch_commit_delay: float = 2.0
    edit_commit_delay: float = 1.5
