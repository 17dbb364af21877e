"""
Vibes Assistant — Audio Transcriber.

Voice and video notes are transcribed here, then flow into the same
dispatch path as typed text. Uses OpenAI Whisper regardless of which
LLM_PROVIDER drives text generation.
"""

from __future__ import annotations

import logging

from openai import AsyncOpenAI

from vibes.config import settings

logger = logging.getLogger(__name__)

_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY or settings.LLM_API_KEY)

_EXTENSIONS = {
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "video/mp4": "mp4",
    "audio/wav": "wav",
    "audio/webm": "webm",
}


async def transcribe_audio(data: bytes, mime_type: str = "audio/ogg") -> str:
    """Transcribe an in-memory audio/video clip using OpenAI Whisper.

    Args:
        data: Raw file bytes as downloaded from Telegram.
        mime_type: MIME type reported by Telegram; picks the file extension
            Whisper uses to detect the container format.

    Returns:
        Transcribed text string (may be empty for silence).

    Raises:
        Exception: If the Whisper API call fails.
    """
    ext = _EXTENSIONS.get(mime_type, "ogg")
    try:
        response = await _client.audio.transcriptions.create(
            model="whisper-1",
            file=(f"voice.{ext}", data, mime_type),
        )
        text = response.text.strip()
        logger.info("Transcribed %d chars from %d-byte %s clip", len(text), len(data), mime_type)
        return text
    except Exception as exc:
        logger.error("Whisper transcription failed (%s): %s", mime_type, exc)
        raise
