"""
Purple OS — Conversational Model Gateway.

Single public function `complete()` that routes to the configured provider.
Provider is selected at startup via the LLM_PROVIDER env var.
Supports: gemini (default), anthropic, openai, cohere.

One call = one round trip: persona/system preamble + context packet +
message list (+ one optional inline attachment) in, one text completion out.
Transient transport failures are retried a bounded number of times with
exponential backoff; everything else propagates to the caller.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# (api_key, model, system, messages, attachment, max_tokens) -> text
_ProviderFn = Callable[[str, str, str, list[dict], "Attachment | None", int], Awaitable[str]]

_DATA_URI_RE = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)

_MAX_BACKOFF = 4.0

# Exception class-name fragments that mark a retryable provider failure
_TRANSIENT_MARKERS = (
    "timeout",
    "connection",
    "ratelimit",
    "serviceunavailable",
    "internalserver",
    "overloaded",
    "deadlineexceeded",
)


class Attachment:
    """An inline file decoded from a data URI (``data:<mime>;base64,<data>``)."""

    def __init__(self, mime_type: str, data_b64: str) -> None:
        self.mime_type = mime_type
        self.data_b64 = data_b64

    @classmethod
    def from_data_uri(cls, uri: str) -> Attachment | None:
        match = _DATA_URI_RE.match(uri.strip())
        if not match:
            logger.warning("Attachment is not a base64 data URI, sending text only")
            return None
        return cls(mime_type=match.group(1), data_b64=match.group(2))

    @property
    def raw(self) -> bytes:
        return base64.b64decode(self.data_b64)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_gemini(
    api_key: str, model: str, system: str, messages: list[dict],
    attachment: Attachment | None, max_tokens: int,
) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    contents = [
        {"role": "model" if m["role"] == "assistant" else "user", "parts": [m["content"]]}
        for m in messages
    ]
    if attachment is not None and contents:
        contents[-1]["parts"].insert(0, {"mime_type": attachment.mime_type, "data": attachment.raw})

    response = await gm.generate_content_async(
        contents,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


async def _complete_anthropic(
    api_key: str, model: str, system: str, messages: list[dict],
    attachment: Attachment | None, max_tokens: int,
) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    payload: list[dict] = [{"role": m["role"], "content": m["content"]} for m in messages]

    if attachment is not None and payload:
        source = {"type": "base64", "media_type": attachment.mime_type, "data": attachment.data_b64}
        if attachment.is_image:
            block = {"type": "image", "source": source}
        elif attachment.mime_type == "application/pdf":
            block = {"type": "document", "source": source}
        else:
            block = None
            logger.warning("anthropic: unsupported attachment type %s dropped", attachment.mime_type)
        if block is not None:
            payload[-1]["content"] = [block, {"type": "text", "text": payload[-1]["content"]}]

    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=payload,
    )
    return response.content[0].text


async def _complete_openai(
    api_key: str, model: str, system: str, messages: list[dict],
    attachment: Attachment | None, max_tokens: int,
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    payload: list[dict] = [{"role": "system", "content": system}]
    payload += [{"role": m["role"], "content": m["content"]} for m in messages]

    if attachment is not None and len(payload) > 1:
        if attachment.is_image:
            url = f"data:{attachment.mime_type};base64,{attachment.data_b64}"
            payload[-1]["content"] = [
                {"type": "image_url", "image_url": {"url": url}},
                {"type": "text", "text": payload[-1]["content"]},
            ]
        else:
            logger.warning("openai: unsupported attachment type %s dropped", attachment.mime_type)

    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=payload,
    )
    return response.choices[0].message.content


async def _complete_cohere(
    api_key: str, model: str, system: str, messages: list[dict],
    attachment: Attachment | None, max_tokens: int,
) -> str:
    import cohere

    if attachment is not None:
        logger.warning("cohere: attachments are not supported, sending text only")

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        messages=[{"role": "system", "content": system}]
        + [{"role": m["role"], "content": m["content"]} for m in messages],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":    (_complete_gemini,    "gemini-2.5-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read settings and return (provider_fn, model, api_key)."""
    from purple.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, api_key


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True
    name = type(exc).__name__.lower()
    return any(marker in name for marker in _TRANSIENT_MARKERS)


# Lazy singleton, populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str,
    context: str,
    messages: list[dict],
    attachment: str | None = None,
    max_tokens: int = 2048,
) -> str:
    """Send one turn to the configured LLM provider and return the response text.

    Args:
        system: Fixed persona / instruction preamble.
        context: Context packet for this turn (appended to the preamble).
        messages: ``[{"role": "user"|"assistant", "content": str}, ...]``,
            the last one being the new user turn.
        attachment: Optional data URI attached to the last message.

    Raises on API errors once retries are exhausted — callers should
    handle exceptions.
    """
    global _provider_fn, _model, _api_key
    from purple.config import settings

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    full_system = f"{system}\n\n{context}" if context else system
    inline = Attachment.from_data_uri(attachment) if attachment else None

    retries = max(0, settings.LLM_MAX_RETRIES)
    delay = settings.LLM_RETRY_BASE_DELAY
    for attempt in range(retries + 1):
        try:
            return await _provider_fn(_api_key, _model, full_system, messages, inline, max_tokens)
        except Exception as exc:
            if attempt == retries or not _is_transient(exc):
                raise
            logger.warning(
                "LLM call failed (%s), retry %d/%d in %.1fs",
                type(exc).__name__, attempt + 1, retries, delay,
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, _MAX_BACKOFF)

    raise RuntimeError("unreachable")  # pragma: no cover
