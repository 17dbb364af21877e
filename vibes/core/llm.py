"""
Vibes Assistant — LLM Provider Abstraction.

Two public functions route to the configured provider:
`complete()` for text and `complete_with_image()` for vision prompts.
Provider is selected at first use via the LLM_PROVIDER env var.
Supports: gemini (default), anthropic, openai, cohere (text only).
"""

from __future__ import annotations

import base64
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# Type aliases for provider implementations
_ProviderFn = Callable[[str, str, str, str, int], Awaitable[str]]
_VisionFn = Callable[[str, str, str, str, bytes, str, int], Awaitable[str]]

# ---------------------------------------------------------------------------
# Text providers
# ---------------------------------------------------------------------------


async def _complete_gemini(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


async def _complete_anthropic(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return response.content[0].text


async def _complete_openai(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content or ""


async def _complete_cohere(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Vision providers
# ---------------------------------------------------------------------------


async def _vision_gemini(
    api_key: str, model: str, system: str, prompt: str, image: bytes, mime_type: str, max_tokens: int
) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(model_name=model, system_instruction=system)
    response = await gm.generate_content_async(
        [prompt, {"mime_type": mime_type, "data": image}],
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


async def _vision_anthropic(
    api_key: str, model: str, system: str, prompt: str, image: bytes, mime_type: str, max_tokens: int
) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{
            "role": "user",
            "content": [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": mime_type,
                        "data": base64.b64encode(image).decode("ascii"),
                    },
                },
                {"type": "text", "text": prompt},
            ],
        }],
    )
    return response.content[0].text


async def _vision_openai(
    api_key: str, model: str, system: str, prompt: str, image: bytes, mime_type: str, max_tokens: int
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            },
        ],
    )
    return response.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}

_VISION: dict[str, _VisionFn] = {
    "gemini":    _vision_gemini,
    "anthropic": _vision_anthropic,
    "openai":    _vision_openai,
}


def _select_provider() -> tuple[str, _ProviderFn, str, str]:
    """Read settings and return (provider_name, provider_fn, model, api_key)."""
    from vibes.config import settings

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
    return provider_name, fn, model, api_key


# Lazy singleton, populated on first call
_provider_name: str = ""
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


def _ensure_provider() -> None:
    global _provider_name, _provider_fn, _model, _api_key

    if _provider_fn is None:
        _provider_name, _provider_fn, _model, _api_key = _select_provider()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(system: str, user_message: str, max_tokens: int = 256) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises on API errors; callers should handle exceptions.
    """
    _ensure_provider()
    return await _provider_fn(_api_key, _model, system, user_message, max_tokens)


async def complete_with_image(
    system: str,
    prompt: str,
    image: bytes,
    mime_type: str = "image/jpeg",
    max_tokens: int = 1024,
) -> str:
    """Send a prompt plus one image to the configured provider.

    Raises:
        ValueError: If the configured provider has no vision support.
    """
    _ensure_provider()
    vision_fn = _VISION.get(_provider_name)
    if vision_fn is None:
        raise ValueError(f"LLM_PROVIDER={_provider_name!r} does not support images")
    return await vision_fn(_api_key, _model, system, prompt, image, mime_type, max_tokens)
