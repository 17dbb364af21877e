"""Chat port — abstract interface for talking to users.

Core modules depend on this protocol, never on a specific messenger.
Inline keyboards are described with UI-agnostic `Button` rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class Button:
    """One inline button: either a callback payload or a URL."""

    label: str
    data: str | None = None
    url: str | None = None


Keyboard = list[list[Button]]


class ChatPort(Protocol):
    """Abstract chat interface used by core modules."""

    async def send_message(
        self,
        chat_id: int,
        text: str,
        keyboard: Keyboard | None = None,
        markdown: bool = False,
    ) -> int: ...

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        keyboard: Keyboard | None = None,
    ) -> None: ...

    async def clear_buttons(self, chat_id: int, message_id: int) -> None: ...

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None: ...

    async def download_file(self, file_id: str) -> bytes: ...
