"""
Purple OS — Audio Transcriber.

Voice is the fastest capture method. After transcription, the text flows
into the same chat turn as typed input.

OpenAI is used here for Whisper only; chat completions go through
purple.core.llm with whichever provider is configured.
"""

from __future__ import annotations

import logging
from pathlib import Path

from openai import AsyncOpenAI

from purple.config import settings

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


async def transcribe_audio(file_path: str) -> str:
    """Transcribe an audio file (OGG, MP3, WEBM...) with Whisper.

    Raises:
        Exception: If the Whisper API call fails.
    """
    try:
        with open(file_path, "rb") as audio_file:
            response = await _get_client().audio.transcriptions.create(
                model="whisper-1",
                file=audio_file,
            )
        text = response.text.strip()
        logger.info("Transcribed %d chars from %s", len(text), Path(file_path).name)
        return text
    except Exception as exc:
        logger.error("Whisper transcription failed for %s: %s", file_path, exc)
        raise
