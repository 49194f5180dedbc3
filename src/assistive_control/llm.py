# llm.py
# Model-calling collaborators.
#
# Every client turns a conversation plus the current action catalog into an
# Intent. The Intent is untrusted: decode_intent() only guarantees its shape,
# never its meaning. Parse failures surface as typed errors, with no silent
# fallbacks and no retries at this layer.

import json
import logging
import re
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError

from assistive_control.config import ConfigError, ProviderType, Settings
from assistive_control.models import ActionDescriptor, Intent, LLMMessage
from assistive_control.prompts import build_system_prompt

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ModelClientError(Exception):
    """Base for every failure of a model call."""


class ModelHTTPError(ModelClientError):
    """The provider answered with a non-2xx status."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"LLM request failed with HTTP {status_code}.")
        self.status_code = status_code


class IntentParseError(ModelClientError):
    """The model's text could not be decoded into an Intent."""


class MalformedResponseError(ModelClientError):
    """The provider envelope did not have the expected structure."""


# ---------------------------------------------------------------------------
# Decoding boundary
# ---------------------------------------------------------------------------

_FENCE_OPEN = re.compile(r"^```[\w-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` wrapper the model may have added."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def decode_intent(raw: str) -> Intent:
    """
    Decode raw model output into an Intent.

    Raises IntentParseError for empty input, prose, malformed JSON, a JSON
    value that is not an object, or an object missing required fields.
    """
    cleaned = strip_code_fences(raw)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise IntentParseError(f"JSON decoding failed: {exc}. Raw: {raw}") from exc

    if not isinstance(data, dict):
        raise IntentParseError(f"Expected a JSON object, got {type(data).__name__}. Raw: {raw}")

    try:
        return Intent.model_validate(data)
    except PydanticValidationError as exc:
        raise IntentParseError(f"Intent does not match the schema: {exc}") from exc


class ModelClient(Protocol):
    async def generate_intent(
        self, conversation: Sequence[LLMMessage], actions: Sequence[ActionDescriptor]
    ) -> Intent: ...


def _chat_messages(conversation: Sequence[LLMMessage]) -> list[dict[str, str]]:
    return [message.model_dump() for message in conversation if message.role != "system"]


async def _post_json(
    http: httpx.AsyncClient, url: str, body: dict[str, Any], headers: dict[str, str]
) -> dict[str, Any]:
    try:
        response = await http.post(url, json=body, headers=headers)
    except httpx.HTTPError as exc:
        raise ModelClientError(f"Model request failed: {exc}") from exc

    if not response.is_success:
        raise ModelHTTPError(response.status_code)

    try:
        payload = response.json()
    except ValueError as exc:
        raise MalformedResponseError("Response body is not a JSON object.") from exc
    if not isinstance(payload, dict):
        raise MalformedResponseError("Response body is not a JSON object.")
    return payload


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class OpenAIChatClient:
    """Chat Completions via the openai SDK. Works with any compatible base URL."""

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def generate_intent(
        self, conversation: Sequence[LLMMessage], actions: Sequence[ActionDescriptor]
    ) -> Intent:
        messages = [{"role": "system", "content": build_system_prompt(actions)}]
        messages.extend(_chat_messages(conversation))

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
            )
        except openai.APIStatusError as exc:
            raise ModelHTTPError(exc.status_code) from exc
        except openai.APIError as exc:
            raise ModelClientError(f"Model request failed: {exc}") from exc

        if not response.choices or response.choices[0].message.content is None:
            raise MalformedResponseError("Response missing 'choices[0].message.content' field.")

        content = response.choices[0].message.content
        logger.debug("OpenAI raw content: %s", content)
        return decode_intent(content)

    async def aclose(self) -> None:
        await self._client.close()


class AnthropicClient:
    """Anthropic Messages API. The system prompt is a top-level field."""

    API_VERSION = "2023-06-01"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-6",
        *,
        base_url: str = "https://api.anthropic.com",
        max_tokens: int = 1024,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._url = base_url.rstrip("/") + "/v1/messages"
        self._max_tokens = max_tokens
        self._http = http or httpx.AsyncClient()

    async def generate_intent(
        self, conversation: Sequence[LLMMessage], actions: Sequence[ActionDescriptor]
    ) -> Intent:
        body = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": build_system_prompt(actions),
            "messages": _chat_messages(conversation),
        }
        headers = {"x-api-key": self._api_key, "anthropic-version": self.API_VERSION}
        payload = await _post_json(self._http, self._url, body, headers)

        content = payload.get("content")
        if not isinstance(content, list) or not content or not isinstance(content[0], dict):
            raise MalformedResponseError("Response missing 'content[0].text' field.")
        text = content[0].get("text")
        if not isinstance(text, str):
            raise MalformedResponseError("Response missing 'content[0].text' field.")

        logger.debug("Anthropic raw content: %s", text)
        return decode_intent(text)

    async def aclose(self) -> None:
        await self._http.aclose()


class OllamaClient:
    """Local Ollama server via POST /api/chat with streaming disabled."""

    def __init__(
        self,
        model: str = "llama3.2",
        *,
        base_url: str = "http://localhost:11434",
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._model = model
        self._url = base_url.rstrip("/") + "/api/chat"
        self._http = http or httpx.AsyncClient()

    async def generate_intent(
        self, conversation: Sequence[LLMMessage], actions: Sequence[ActionDescriptor]
    ) -> Intent:
        messages = [{"role": "system", "content": build_system_prompt(actions)}]
        messages.extend(message.model_dump() for message in conversation)
        body = {"model": self._model, "stream": False, "messages": messages}
        payload = await _post_json(self._http, self._url, body, headers={})

        if payload.get("done") is not True:
            raise MalformedResponseError(
                "Response 'done' field is false or missing; stream not complete."
            )
        message = payload.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise MalformedResponseError("Response missing 'message.content' field.")

        logger.debug("Ollama raw content: %s", content)
        return decode_intent(content)

    async def aclose(self) -> None:
        await self._http.aclose()


ChatClient = OpenAIChatClient | AnthropicClient | OllamaClient


def make_client(settings: Settings) -> ChatClient:
    """Build the client for the configured provider."""
    match settings.provider:
        case ProviderType.OPENAI:
            if not settings.openai_api_key:
                raise ConfigError("OPENAI_API_KEY is not set.")
            return OpenAIChatClient(
                settings.openai_model,
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
            )
        case ProviderType.ANTHROPIC:
            if not settings.anthropic_api_key:
                raise ConfigError("ANTHROPIC_API_KEY is not set.")
            return AnthropicClient(
                settings.anthropic_api_key,
                settings.anthropic_model,
                base_url=settings.anthropic_base_url,
            )
        case ProviderType.OLLAMA:
            return OllamaClient(settings.ollama_model, base_url=settings.ollama_base_url)
    raise ConfigError(f"Unsupported provider: {settings.provider}")
