"""Conversation messages: parsing, size budgeting and upstream conversion."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from utils import generate_random_string

log = logging.getLogger("cursor_api")

TRIGGER_SUBMIT_MESSAGE = "submit-message"


@dataclass(frozen=True)
class ChatMessage:
    """One caller message; content is a string or a list of content parts."""

    role: str
    content: Any = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ChatMessage:
        role = data.get("role")
        if not isinstance(role, str) or not role:
            raise ValueError("message role must be a non-empty string")
        content = data.get("content")
        if content is None:
            content = ""
        # Freeze structured content so the message stays immutable
        if isinstance(content, list):
            content = tuple(content)
        return cls(role=role, content=content)

    def text(self) -> str:
        """Flatten content to text: strings as-is, text parts joined."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, (list, tuple)):
            parts: List[str] = []
            for part in self.content:
                if isinstance(part, str):
                    parts.append(part)
                elif isinstance(part, dict) and part.get("type") in (None, "text"):
                    t = part.get("text")
                    if isinstance(t, str):
                        parts.append(t)
            return "".join(parts)
        return str(self.content)

    @property
    def content_length(self) -> int:
        return len(self.text())


def parse_messages(raw: Any) -> List[ChatMessage]:
    if not isinstance(raw, list):
        raise ValueError("'messages' field must be an array")
    out: List[ChatMessage] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"messages[{i}] must be an object")
        out.append(ChatMessage.from_dict(item))
    return out


def truncate_messages(messages: Sequence[ChatMessage], max_length: int) -> List[ChatMessage]:
    """
    Fit the conversation into ``max_length`` characters.

    A leading system message is always kept. The rest is filled greedily from
    the newest message backwards; messages that do not fit (or are empty) are
    skipped, never cut. Chronological order is preserved.
    """
    if not messages or max_length <= 0:
        return list(messages)

    total = sum(m.content_length for m in messages)
    if total <= max_length:
        return list(messages)

    result: List[ChatMessage] = []
    start = 0
    if messages[0].role.lower() == "system":
        result.append(messages[0])
        max_length = max(0, max_length - messages[0].content_length)
        start = 1

    current = 0
    collected: List[ChatMessage] = []
    for msg in reversed(messages[start:]):
        n = msg.content_length
        if n == 0:
            continue
        if current + n > max_length:
            continue
        collected.append(msg)
        current += n

    collected.reverse()
    if log.isEnabledFor(logging.DEBUG):
        log.debug(
            "Truncated messages total=%d budget=%d kept=%d/%d",
            total,
            max_length,
            len(result) + len(collected),
            len(messages),
        )
    return result + collected


def to_cursor_messages(messages: Sequence[ChatMessage], system_prompt_inject: str = "") -> List[Dict[str, Any]]:
    """Convert caller messages into upstream UI messages (id, role, text parts)."""
    texts = [(m.role.lower(), m.text()) for m in messages]

    inject = (system_prompt_inject or "").strip()
    if inject:
        if texts and texts[0][0] == "system":
            role, text = texts[0]
            texts[0] = (role, f"{inject}\n{text}" if text else inject)
        else:
            texts.insert(0, ("system", inject))

    return [
        {
            "id": generate_random_string(16),
            "role": role,
            "parts": [{"type": "text", "text": text}],
        }
        for role, text in texts
    ]


@dataclass(frozen=True)
class SubmissionPayload:
    """Body of one upstream chat POST."""

    model: str
    messages: List[Dict[str, Any]]
    id: str = field(default_factory=lambda: generate_random_string(16))
    trigger: str = TRIGGER_SUBMIT_MESSAGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context": [],
            "model": self.model,
            "id": self.id,
            "messages": self.messages,
            "trigger": self.trigger,
        }
