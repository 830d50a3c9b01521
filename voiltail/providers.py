"""HTTP clients for the hosted model APIs.

Three provider adapters (Gemini, OpenAI, Claude) share one contract:
``call_provider`` returns a successful ModelResponse or raises ProviderError.
The embedding and text-generation calls used during synthesis live here too,
so every outbound request goes through the same shared httpx client.
"""

import logging
import time
from typing import Any, Callable

import httpx

from .attachments import Attachment, image_attachments
from .config import (
    ANTHROPIC_MESSAGES_URL,
    ANTHROPIC_VERSION,
    CLAUDE_MODEL,
    EMBEDDING_MODEL,
    EMBEDDING_TIMEOUT_SECONDS,
    GEMINI_API_BASE,
    GEMINI_MODEL,
    OPENAI_CHAT_URL,
    OPENAI_EMBEDDINGS_URL,
    OPENAI_MODEL,
    PROVIDER_KEY_NAMES,
    PROVIDER_MAX_TOKENS,
    PROVIDER_TIMEOUT_SECONDS,
    SYNTHESIS_MAX_TOKENS,
    SYNTHESIS_MODEL,
    SYNTHESIS_TEMPERATURE,
    SYNTHESIS_TIMEOUT_SECONDS,
    get_api_key,
)
from .models import ModelResponse, Provider
from .telemetry import get_tracer, is_telemetry_enabled, record_span_error

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response"

_shared_client: httpx.AsyncClient | None = None


class ProviderError(Exception):
    """A provider call failed. Carries the provider identity and the cause."""

    def __init__(
        self,
        provider: Provider,
        message: str,
        status_code: int | None = None,
        category: str = "unknown",
    ) -> None:
        super().__init__(f"{provider.value} API call failed: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code
        self.category = category


def _classify_error(status_code: int | None) -> str:
    """Map an HTTP status (or None for no response) to an error category."""
    if status_code is None:
        return "timeout"
    if status_code in (401, 403):
        return "auth"
    if status_code == 402:
        return "billing"
    if status_code == 429:
        return "rate_limit"
    if status_code in (408, 502, 503, 504):
        return "transient"
    return "unknown"


async def _extract_error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of a vendor error body.

    All three vendors nest it as ``{"error": {"message": ...}}``.
    """
    try:
        await response.aread()
        body = response.json()
        message = body.get("error", {}).get("message")
        if message:
            return str(message)
    except (ValueError, AttributeError, httpx.HTTPError):
        pass
    return f"HTTP {response.status_code}"


def get_shared_client() -> httpx.AsyncClient:
    """Get the process-wide AsyncClient, creating it on first use."""
    global _shared_client
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(
            timeout=httpx.Timeout(PROVIDER_TIMEOUT_SECONDS, connect=10.0),
        )
    return _shared_client


async def close_shared_client() -> None:
    """Close the shared client. Safe to call when none exists."""
    global _shared_client
    if _shared_client is not None:
        await _shared_client.aclose()
        _shared_client = None


# ---------------------------------------------------------------------------
# Request builders: (prompt, images, api_key) -> (url, headers, payload)
# ---------------------------------------------------------------------------

RequestSpec = tuple[str, dict[str, str], dict[str, Any]]


def _build_openai_request(prompt: str, images: list[Attachment], api_key: str) -> RequestSpec:
    content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    for image in images:
        content.append({"type": "image_url", "image_url": {"url": image.data_url()}})

    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    payload = {
        "model": OPENAI_MODEL,
        "messages": [{"role": "user", "content": content}],
        "max_tokens": PROVIDER_MAX_TOKENS,
    }
    return OPENAI_CHAT_URL, headers, payload


def _build_gemini_request(prompt: str, images: list[Attachment], api_key: str) -> RequestSpec:
    parts: list[dict[str, Any]] = [{"text": prompt}]
    for image in images:
        parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.base64}})

    url = f"{GEMINI_API_BASE}/{GEMINI_MODEL}:generateContent"
    headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}
    payload = {"contents": [{"role": "user", "parts": parts}]}
    return url, headers, payload


def _build_claude_request(prompt: str, images: list[Attachment], api_key: str) -> RequestSpec:
    content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    for image in images:
        content.append({
            "type": "image",
            "source": {"type": "base64", "media_type": image.mime_type, "data": image.base64},
        })

    headers = {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
        "Content-Type": "application/json",
    }
    payload = {
        "model": CLAUDE_MODEL,
        "max_tokens": PROVIDER_MAX_TOKENS,
        "messages": [{"role": "user", "content": content}],
    }
    return ANTHROPIC_MESSAGES_URL, headers, payload


# ---------------------------------------------------------------------------
# Response parsers: vendor JSON -> text
# ---------------------------------------------------------------------------

def _parse_openai_text(data: dict[str, Any]) -> str:
    return data["choices"][0]["message"].get("content") or NO_RESPONSE


def _parse_gemini_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return NO_RESPONSE
    parts = candidates[0].get("content", {}).get("parts", [])
    text = "".join(part.get("text", "") for part in parts)
    return text or NO_RESPONSE


def _parse_claude_text(data: dict[str, Any]) -> str:
    blocks = data.get("content") or []
    if blocks and blocks[0].get("type") == "text":
        return blocks[0].get("text") or NO_RESPONSE
    return NO_RESPONSE


_REQUEST_BUILDERS: dict[Provider, Callable[[str, list[Attachment], str], RequestSpec]] = {
    Provider.OPENAI: _build_openai_request,
    Provider.GEMINI: _build_gemini_request,
    Provider.CLAUDE: _build_claude_request,
}

_RESPONSE_PARSERS: dict[Provider, Callable[[dict[str, Any]], str]] = {
    Provider.OPENAI: _parse_openai_text,
    Provider.GEMINI: _parse_gemini_text,
    Provider.CLAUDE: _parse_claude_text,
}


async def call_provider(
    provider: Provider,
    prompt: str,
    attachments: list[Attachment] | None = None,
    timeout: float = PROVIDER_TIMEOUT_SECONDS,
) -> ModelResponse:
    """
    Send a prompt (and any image attachments) to one provider.

    Args:
        provider: Which hosted model to call
        prompt: The user's prompt
        attachments: Optional attachments; only images are forwarded
        timeout: Request timeout in seconds

    Returns:
        A successful ModelResponse with content and latency

    Raises:
        ProviderError: On missing credentials, transport failure, an error
            status, or a response body that cannot be parsed
    """
    api_key = get_api_key(PROVIDER_KEY_NAMES[provider.value])
    if api_key is None:
        raise ProviderError(provider, "API key not configured", category="auth")

    url, headers, payload = _REQUEST_BUILDERS[provider](
        prompt, image_attachments(attachments), api_key
    )

    tracer = get_tracer()
    span_attributes = {
        "llm.provider": provider.value,
        "llm.prompt_chars": len(prompt),
        "llm.attachment_count": len(attachments or []),
    }

    with tracer.start_as_current_span("provider.call", attributes=span_attributes) as span:
        start_time = time.monotonic()
        try:
            response = await get_shared_client().post(
                url, headers=headers, json=payload, timeout=timeout
            )
        except httpx.TimeoutException as e:
            error = ProviderError(provider, f"Request timed out after {timeout:.0f}s", category="timeout")
            record_span_error(span, error)
            raise error from e
        except httpx.HTTPError as e:
            error = ProviderError(provider, str(e) or type(e).__name__, category="network")
            record_span_error(span, error)
            raise error from e

        if response.is_error:
            message = await _extract_error_message(response)
            error = ProviderError(
                provider, message, response.status_code, _classify_error(response.status_code)
            )
            record_span_error(span, error)
            raise error

        try:
            content = _RESPONSE_PARSERS[provider](response.json())
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            error = ProviderError(provider, f"Malformed response: {e}", response.status_code)
            record_span_error(span, error)
            raise error from e

        latency_ms = int((time.monotonic() - start_time) * 1000)
        if is_telemetry_enabled():
            span.set_attributes({"llm.latency_ms": latency_ms, "llm.response_chars": len(content)})

        logger.info(
            "Provider responded. Provider: %s, LatencyMs: %d, Chars: %d",
            provider.value, latency_ms, len(content),
        )
        return ModelResponse.success(provider, content, latency_ms)


async def fetch_embedding(text: str) -> list[float]:
    """
    Fetch one embedding vector from the OpenAI embeddings API.

    Raises:
        RuntimeError: If the OpenAI key is not configured
        httpx.HTTPError: On transport failure or an error status
        KeyError, IndexError: On an unexpected response shape
    """
    api_key = get_api_key(PROVIDER_KEY_NAMES["openai"])
    if api_key is None:
        raise RuntimeError("OpenAI API key not configured for embeddings")

    response = await get_shared_client().post(
        OPENAI_EMBEDDINGS_URL,
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json={"model": EMBEDDING_MODEL, "input": text, "encoding_format": "float"},
        timeout=EMBEDDING_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    return response.json()["data"][0]["embedding"]


async def generate_text(
    system_prompt: str,
    prompt: str,
    model: str = SYNTHESIS_MODEL,
    max_tokens: int = SYNTHESIS_MAX_TOKENS,
    temperature: float = SYNTHESIS_TEMPERATURE,
) -> str:
    """
    Run one chat completion against OpenAI and return the text.

    Returns:
        The completion text; empty string if the model returned none

    Raises:
        RuntimeError: If the OpenAI key is not configured
        httpx.HTTPError: On transport failure or an error status
        KeyError, IndexError: On an unexpected response shape
    """
    api_key = get_api_key(PROVIDER_KEY_NAMES["openai"])
    if api_key is None:
        raise RuntimeError("OpenAI API key not configured for synthesis")

    response = await get_shared_client().post(
        OPENAI_CHAT_URL,
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json={
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        },
        timeout=SYNTHESIS_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    return response.json()["choices"][0]["message"].get("content") or ""
