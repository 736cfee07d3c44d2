"""Role-tagged prompt history sent to the language model."""

from __future__ import annotations

from copy import deepcopy
from typing import Any, Dict, List, Optional, Sequence

Message = Dict[str, Any]


class Transcript:
    """Message list whose entry 0 is always the system preamble."""

    def __init__(self, messages: Optional[Sequence[Message]] = None) -> None:
        self.messages: List[Message] = [dict(m) for m in messages or []]

    def copy(self) -> "Transcript":
        return Transcript(deepcopy(self.messages))

    def set_system(self, content: str) -> None:
        """Insert or overwrite the system preamble at index 0."""

        if self.messages and self.messages[0].get("role") == "system":
            self.messages[0] = {"role": "system", "content": content}
        else:
            self.messages.insert(0, {"role": "system", "content": content})

    def append_user(self, text: str, image_urls: Sequence[str] = ()) -> None:
        content: Any = text
        if image_urls:
            content = [{"type": "text", "text": text}] + [
                {"type": "image_url", "image_url": {"url": url}} for url in image_urls
            ]
        self.messages.append({"role": "user", "content": content})

    def append_assistant(self, text: str) -> None:
        self.messages.append({"role": "assistant", "content": text})

    def truncate(self, max_messages: int) -> None:
        """Keep entry 0 plus the newest ``max_messages - 1`` entries."""

        if max_messages < 1:
            raise ValueError("max_messages must be at least 1.")
        if len(self.messages) <= max_messages:
            return
        head = self.messages[:1]
        tail = self.messages[1:][-(max_messages - 1):] if max_messages > 1 else []
        self.messages = head + tail

    def drop_oldest(self) -> Optional[Message]:
        """Remove the oldest non-system entry."""

        if len(self.messages) < 2:
            return None
        return self.messages.pop(1)

    def __len__(self) -> int:
        return len(self.messages)


__all__ = ["Message", "Transcript"]
