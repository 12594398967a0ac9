"""Multi-provider LLM adapter: OpenAI, Azure OpenAI, Anthropic, Ollama, Groq, Gemini, OpenRouter.

Every provider exposes ``generate(system_prompt, user_prompt, options)`` and
raises :class:`TransientFailure` or :class:`FatalFailure` instead of
returning ``None``, so the retry layer can decide what to do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .config_manager import LLMSettings
from .errors import ConfigurationError, FailureKind, FatalFailure, TransientFailure

logger = logging.getLogger(__name__)

_CONTENT_POLICY_MARKERS = ("content_filter", "content filtering", "responsibleaipolicyviolation", "safety")
# Rate limits and gateway errors are treated like timeouts: the call may succeed later.
_TIMEOUT_STATUSES = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class GenerationOptions:
    max_output_tokens: int = 32768
    temperature: float = 0.1
    top_p: float = 0.5


def _post_json(url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float) -> Dict[str, Any]:
    """POST ``payload`` and return the decoded body, mapping failures to the taxonomy."""
    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.Timeout as exc:
        raise TransientFailure(f"Request timeout: {exc}", FailureKind.TIMEOUT) from exc
    except requests.ConnectionError as exc:
        message = str(exc)
        if "reset" in message.lower() or "aborted" in message.lower():
            raise TransientFailure(f"The request was canceled: {message}", FailureKind.CANCELLED) from exc
        raise FatalFailure(f"Connection failed: {message}") from exc

    if response.status_code >= 400:
        body = response.text[:500]
        if any(marker in body.lower() for marker in _CONTENT_POLICY_MARKERS):
            raise TransientFailure(f"Content filter rejection: {body}", FailureKind.CONTENT_POLICY)
        if response.status_code in _TIMEOUT_STATUSES:
            raise TransientFailure(f"HTTP {response.status_code} (request timeout class): {body}", FailureKind.TIMEOUT)
        raise FatalFailure(f"HTTP {response.status_code}: {body}")

    try:
        return response.json()
    except ValueError as exc:
        raise FatalFailure(f"Invalid JSON response: {exc}") from exc


class LLMProvider:
    """Base class for LLM providers."""

    timeout: float = 600.0

    def generate(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> str:
        """Generate a response from the LLM."""
        raise NotImplementedError


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions (also any OpenAI-compatible endpoint)."""

    default_endpoint = "https://api.openai.com/v1/chat/completions"

    def __init__(self, model: str, api_key: str, endpoint: str = ""):
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint or self.default_endpoint

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _payload(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": options.temperature,
            "top_p": options.top_p,
            "max_tokens": options.max_output_tokens,
        }

    def generate(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> str:
        parsed = _post_json(self.endpoint, self._payload(system_prompt, user_prompt, options), self._headers(), self.timeout)
        return self._extract_response(parsed)

    @staticmethod
    def _extract_response(parsed: dict) -> str:
        try:
            choice = parsed["choices"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise FatalFailure(f"Malformed completion payload: {exc}") from exc
        content = (choice.get("message") or {}).get("content") or ""
        if not content.strip() and choice.get("finish_reason") == "content_filter":
            raise TransientFailure("Response blocked by content_filter", FailureKind.CONTENT_POLICY)
        return content


class AzureOpenAIProvider(OpenAIProvider):
    """Azure OpenAI deployment endpoint."""

    api_version = "2024-06-01"

    def __init__(self, model: str, api_key: str, endpoint: str, deployment: str):
        super().__init__(model, api_key, endpoint)
        self.deployment = deployment or model
        base = endpoint.rstrip("/")
        self.endpoint = f"{base}/openai/deployments/{self.deployment}/chat/completions?api-version={self.api_version}"

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "api-key": self.api_key}


class GroqProvider(OpenAIProvider):
    """Groq cloud API provider (OpenAI-compatible)."""

    default_endpoint = "https://api.groq.com/openai/v1/chat/completions"


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter API provider (OpenAI-compatible, multi-model gateway)."""

    default_endpoint = "https://openrouter.ai/api/v1/chat/completions"

    @staticmethod
    def _extract_response(parsed: dict) -> str:
        """Extract response text, handling reasoning models that return empty content."""
        content = OpenAIProvider._extract_response(parsed)
        if content.strip():
            return content
        msg = parsed["choices"][0].get("message") or {}
        reasoning = msg.get("reasoning") or ""
        if reasoning.strip():
            return reasoning
        for detail in msg.get("reasoning_details") or []:
            if isinstance(detail, dict) and detail.get("text", "").strip():
                return detail["text"]
        return content


class AnthropicProvider(LLMProvider):
    """Anthropic Claude API provider."""

    def __init__(self, model: str, api_key: str):
        self.model = model
        self.api_key = api_key
        self.endpoint = "https://api.anthropic.com/v1/messages"

    def generate(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> str:
        payload = {
            "model": self.model,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
            "max_tokens": options.max_output_tokens,
            "temperature": options.temperature,
            "top_p": options.top_p,
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
        }
        parsed = _post_json(self.endpoint, payload, headers, self.timeout)
        if parsed.get("stop_reason") == "refusal":
            raise TransientFailure("Model refused the request (safety)", FailureKind.CONTENT_POLICY)
        try:
            return "".join(block.get("text", "") for block in parsed["content"])
        except (KeyError, TypeError) as exc:
            raise FatalFailure(f"Malformed message payload: {exc}") from exc


class GeminiProvider(LLMProvider):
    """Google Gemini API provider."""

    def __init__(self, model: str, api_key: str):
        self.model = model
        self.api_key = api_key
        self.endpoint = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def generate(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> str:
        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "temperature": options.temperature,
                "topP": options.top_p,
                "maxOutputTokens": options.max_output_tokens,
            },
        }
        parsed = _post_json(
            f"{self.endpoint}?key={self.api_key}",
            payload,
            {"Content-Type": "application/json"},
            self.timeout,
        )
        try:
            candidate = parsed["candidates"][0]
        except (KeyError, IndexError) as exc:
            raise FatalFailure(f"Malformed Gemini payload: {exc}") from exc
        if candidate.get("finishReason") == "SAFETY":
            raise TransientFailure("Response blocked by safety filter", FailureKind.CONTENT_POLICY)
        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)


class OllamaProvider(LLMProvider):
    """Ollama local LLM provider."""

    def __init__(self, model: str, endpoint: str):
        self.model = model
        self.endpoint = endpoint or "http://127.0.0.1:11434/api/generate"

    def generate(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> str:
        payload = {
            "model": self.model,
            "system": system_prompt,
            "prompt": user_prompt,
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "top_p": options.top_p,
                "num_predict": options.max_output_tokens,
            },
        }
        parsed = _post_json(self.endpoint, payload, {"Content-Type": "application/json"}, self.timeout)
        return parsed.get("response") or ""


_KEYLESS_PROVIDERS = {"ollama"}


class LLMClient:
    """Configured provider wrapped behind ``complete(system, user, options)``."""

    def __init__(self, settings: Optional[LLMSettings] = None):
        self.settings = settings or LLMSettings()
        self.provider_name = self.settings.provider.lower()
        self.model = self.settings.model
        self.provider = self._create_provider()

    def _create_provider(self) -> LLMProvider:
        """Create the appropriate provider, failing fast on incomplete configuration."""
        s = self.settings
        name = self.provider_name

        if name not in _KEYLESS_PROVIDERS and not s.api_key:
            raise ConfigurationError(
                f"No API key configured for provider '{name}'. "
                "Run 'cbg set-llm' or set COBOLGRAPH_LLM_API_KEY."
            )

        if name == "openai":
            return OpenAIProvider(s.model, s.api_key, s.endpoint)
        if name == "azure-openai":
            if not s.endpoint:
                raise ConfigurationError("Azure OpenAI needs an endpoint (COBOLGRAPH_LLM_ENDPOINT).")
            return AzureOpenAIProvider(s.model, s.api_key, s.endpoint, s.deployment)
        if name == "anthropic":
            return AnthropicProvider(s.model, s.api_key)
        if name == "groq":
            return GroqProvider(s.model, s.api_key, s.endpoint)
        if name == "gemini":
            return GeminiProvider(s.model, s.api_key)
        if name == "openrouter":
            return OpenRouterProvider(s.model, s.api_key, s.endpoint)
        if name == "ollama":
            return OllamaProvider(s.model, s.endpoint)
        raise ConfigurationError(f"Unsupported LLM provider: {s.provider}")

    def complete(self, system_prompt: str, user_prompt: str, options: Optional[GenerationOptions] = None) -> str:
        """Single model call; raises TransientFailure / FatalFailure on error."""
        options = options or GenerationOptions()
        logger.debug(
            "Calling %s/%s (system %d chars, user %d chars)",
            self.provider_name,
            self.model,
            len(system_prompt),
            len(user_prompt),
        )
        text = self.provider.generate(system_prompt, user_prompt, options)
        if not text or not text.strip():
            raise FatalFailure(f"Empty response from {self.provider_name}/{self.model}")
        return text
