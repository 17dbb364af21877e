"""
Vibes Assistant — Inbound updates.

Transport-neutral description of what a user sent. The Telegram layer
builds these; the conversation service only ever sees `Inbound`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class InputKind(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    VOICE = "voice"        # voice messages and video notes
    CALLBACK = "callback"  # inline button press
    OTHER = "other"        # stickers, documents, locations...


@dataclass(frozen=True)
class Sender:
    telegram_id: int
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    language_code: str | None = None


@dataclass(frozen=True)
class Inbound:
    """One update from a user.

    For CALLBACK, `text` is the button payload and `message_id` /
    `message_text` describe the message the button was attached to.
    For PHOTO and VOICE, `file_id` + `mime_type` locate the media.
    """

    kind: InputKind
    chat_id: int
    sender: Sender
    text: str | None = None
    file_id: str | None = None
    mime_type: str | None = None
    message_id: int | None = None
    message_text: str | None = None
    callback_id: str | None = None

    @property
    def command(self) -> str | None:
        """'/plan@VibesBot tomorrow' → '/plan'. None for non-commands."""
        if self.kind is not InputKind.TEXT or not self.text:
            return None
        stripped = self.text.strip()
        if not stripped.startswith("/"):
            return None
        token = stripped.split(maxsplit=1)[0]
        return token.split("@", 1)[0].lower()
