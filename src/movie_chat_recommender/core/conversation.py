from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

Role = Literal["user", "assistant"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ConversationMessage:
    role: Role
    content: str
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ConversationMessage:
        role = raw.get("role")
        return cls(
            role="assistant" if role == "assistant" else "user",
            content=str(raw.get("content") or ""),
            timestamp=str(raw.get("timestamp") or utc_now_iso()),
        )


@dataclass
class ChatSession:
    """Ordered message history of one chat, plus its one-shot extraction flag."""

    session_id: str
    messages: list[ConversationMessage] = field(default_factory=list)
    preferences_extracted: bool = False
    preferences: dict[str, Any] | None = None

    @property
    def user_turns(self) -> int:
        return sum(1 for m in self.messages if m.role == "user")

    @property
    def user_messages(self) -> list[str]:
        return [m.content for m in self.messages if m.role == "user"]

    @property
    def latest_assistant_reply(self) -> str:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message.content
        return ""

    def append(self, message: ConversationMessage) -> None:
        self.messages.append(message)

    def transcript(self) -> str:
        # Both roles, insertion order.
        return " ".join(m.content for m in self.messages)
