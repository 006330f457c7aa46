"""
TaskTroll Provider Adapter - Completion Service Abstraction

Responsibilities:
- Map an abstract completion request (system instruction + user prompt +
  parameters) onto each provider's wire format
- Issue the HTTP call with a hard timeout
- Pull the generated text out of each provider's response envelope
- Report every failure as one of three typed errors

Callers above this module only ever see raw completion text or a
CompletionError. The adapter never touches task state.

Supported providers:
- openai:     OpenAI chat completions (bearer token)
- openrouter: OpenRouter chat completions (bearer token + referer headers)
- deepseek:   DeepSeek chat completions (OpenAI-compatible)
- gemini:     Google Gemini generateContent (x-goog-api-key header)
- ollama:     Local Ollama /api/generate (no key)
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from tasktroll.config import AIConfig

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Base exception for all completion-service errors"""
    pass


class NetworkError(CompletionError):
    """Raised on transport failure or timeout"""
    pass


class ProviderError(CompletionError):
    """Raised when the provider answers with a non-success HTTP status"""

    def __init__(self, status: int, message: str = ""):
        self.status = status
        super().__init__(message or f"Provider returned HTTP {status}")


class ShapeError(CompletionError):
    """Raised when a success envelope lacks the expected text field"""
    pass


@dataclass(frozen=True)
class CompletionParams:
    """
    Sampling controls and timeout for one completion call.

    Attributes:
        temperature: Sampling temperature
        max_tokens: Token budget for the response
        timeout: Seconds before the call is abandoned
        top_p: Nucleus sampling threshold (optional)
        frequency_penalty: Repetition penalty, chat-completion providers only
        json_mode: Ask the provider for a JSON object when it supports it
    """
    temperature: float = 0.7
    max_tokens: int = 350
    timeout: float = 15.0
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    json_mode: bool = False

    def __post_init__(self):
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(f"temperature must be between 0.0 and 2.0, got {self.temperature}")
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")


# Parameter presets used by the two pipelines
REMINDER_PARAMS = CompletionParams(
    temperature=0.9, max_tokens=400, timeout=20.0, frequency_penalty=0.2, json_mode=True
)
DETECTION_PARAMS = CompletionParams(temperature=0.7, max_tokens=350, timeout=15.0)


# ============================================================================
# Request builders
# ============================================================================

def _chat_body(model: str, system: str, prompt: str, params: CompletionParams,
               supports_json_mode: bool) -> Dict[str, Any]:
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    body = {
        "model": model,
        "messages": messages,
        "temperature": params.temperature,
        "max_tokens": params.max_tokens,
    }
    if params.top_p is not None:
        body["top_p"] = params.top_p
    if params.frequency_penalty is not None:
        body["frequency_penalty"] = params.frequency_penalty
    if params.json_mode and supports_json_mode:
        body["response_format"] = {"type": "json_object"}
    return body


def _openai_body(model, system, prompt, params):
    return _chat_body(model, system, prompt, params, supports_json_mode=True)


def _openrouter_body(model, system, prompt, params):
    return _chat_body(model, system, prompt, params, supports_json_mode=True)


def _deepseek_body(model, system, prompt, params):
    return _chat_body(model, system, prompt, params, supports_json_mode=False)


def _gemini_body(model, system, prompt, params):
    # Gemini has no system role in generateContent; both parts go in one turn
    text = f"{system}\n\n{prompt}" if system else prompt
    generation_config = {
        "temperature": params.temperature,
        "maxOutputTokens": params.max_tokens,
    }
    if params.top_p is not None:
        generation_config["topP"] = params.top_p
    return {
        "contents": [{"parts": [{"text": text}]}],
        "generationConfig": generation_config,
    }


def _ollama_body(model, system, prompt, params):
    options = {
        "temperature": params.temperature,
        "num_predict": params.max_tokens,  # Ollama uses num_predict
    }
    if params.top_p is not None:
        options["top_p"] = params.top_p
    body = {
        "model": model,
        "prompt": prompt,
        "stream": False,
        "options": options,
    }
    if system:
        body["system"] = system
    if params.json_mode:
        body["format"] = "json"
    return body


def _bearer_headers(api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }


def _openrouter_headers(api_key: str) -> Dict[str, str]:
    headers = _bearer_headers(api_key)
    headers["HTTP-Referer"] = "https://github.com/khoatran3005/tasktroll"
    headers["X-Title"] = "TaskTroll"
    return headers


def _gemini_headers(api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "x-goog-api-key": api_key,
    }


def _plain_headers(api_key: str) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


# ============================================================================
# Response extractors
# ============================================================================

def _chat_text(data: Dict[str, Any]) -> str:
    """choices[0].message.content, as a string or a list of text parts"""
    content = data["choices"][0]["message"]["content"]
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        if parts:
            return "".join(parts)
    raise ShapeError(f"Unexpected message content type: {type(content).__name__}")


def _gemini_text(data: Dict[str, Any]) -> str:
    parts = data["candidates"][0]["content"]["parts"]
    texts = [part["text"] for part in parts if "text" in part]
    if not texts:
        raise ShapeError("Gemini candidate has no text parts")
    return "".join(texts)


def _ollama_text(data: Dict[str, Any]) -> str:
    text = data["response"]
    if not isinstance(text, str):
        raise ShapeError("Ollama 'response' field is not a string")
    return text


@dataclass(frozen=True)
class ProviderSpec:
    """
    One closed variant of the completion service.

    Each variant carries its own request builder, header builder and
    response extractor; the adapter selects a variant by id.
    """
    id: str
    endpoint: str
    default_model: str
    build_body: Callable[[str, str, str, CompletionParams], Dict[str, Any]]
    build_headers: Callable[[str], Dict[str, str]]
    extract_text: Callable[[Dict[str, Any]], str]
    requires_key: bool = True

    def url_for(self, model: str, endpoint_override: str = "") -> str:
        endpoint = endpoint_override or self.endpoint
        return endpoint.replace("{model}", model)


PROVIDERS: Dict[str, ProviderSpec] = {
    "openai": ProviderSpec(
        id="openai",
        endpoint="https://api.openai.com/v1/chat/completions",
        default_model="gpt-3.5-turbo",
        build_body=_openai_body,
        build_headers=_bearer_headers,
        extract_text=_chat_text,
    ),
    "openrouter": ProviderSpec(
        id="openrouter",
        endpoint="https://openrouter.ai/api/v1/chat/completions",
        default_model="anthropic/claude-3-haiku",
        build_body=_openrouter_body,
        build_headers=_openrouter_headers,
        extract_text=_chat_text,
    ),
    "deepseek": ProviderSpec(
        id="deepseek",
        endpoint="https://api.deepseek.com/chat/completions",
        default_model="deepseek-chat",
        build_body=_deepseek_body,
        build_headers=_bearer_headers,
        extract_text=_chat_text,
    ),
    "gemini": ProviderSpec(
        id="gemini",
        endpoint="https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
        default_model="gemini-pro",
        build_body=_gemini_body,
        build_headers=_gemini_headers,
        extract_text=_gemini_text,
    ),
    "ollama": ProviderSpec(
        id="ollama",
        endpoint="http://localhost:11434/api/generate",
        default_model="qwen2.5:3b-instruct-q4_0",
        build_body=_ollama_body,
        build_headers=_plain_headers,
        extract_text=_ollama_text,
        requires_key=False,
    ),
}


def get_provider(provider_id: str) -> ProviderSpec:
    """Look up a provider variant, raising ValueError for unknown ids."""
    spec = PROVIDERS.get((provider_id or "").lower())
    if spec is None:
        raise ValueError(
            f"Unknown provider: '{provider_id}'. "
            f"Must be one of: {sorted(PROVIDERS)}"
        )
    return spec


def is_ready(ai_config: AIConfig) -> bool:
    """True when AI is enabled and the provider has the credentials it needs."""
    if not ai_config.enabled:
        return False
    spec = PROVIDERS.get((ai_config.provider or "").lower())
    if spec is None:
        return False
    return bool(ai_config.api_key) or not spec.requires_key


class ProviderAdapter:
    """
    Issues completion requests against the configured provider.

    Example:
        >>> adapter = ProviderAdapter(AIConfig(provider="openai", api_key="sk-..."))
        >>> text = adapter.complete("openai", SYSTEM, "Remind me", DETECTION_PARAMS)
    """

    def __init__(self, ai_config: AIConfig, session: Optional[requests.Session] = None):
        """
        Args:
            ai_config: Provider key, endpoint and model overrides
            session: Optional requests session (a fresh one is created otherwise)
        """
        self.ai_config = ai_config
        self.session = session or requests.Session()
        logger.info(f"ProviderAdapter initialized (provider={ai_config.provider})")

    def complete(
        self,
        provider_id: str,
        system_instruction: str,
        user_prompt: str,
        params: CompletionParams = DETECTION_PARAMS,
    ) -> str:
        """
        Run one completion and return the raw generated text.

        Args:
            provider_id: One of PROVIDERS
            system_instruction: System-level instruction (may be empty)
            user_prompt: User prompt
            params: Sampling controls and timeout

        Returns:
            Raw completion text, exactly as the provider produced it

        Raises:
            ValueError: Unknown provider or empty prompt
            NetworkError: Transport failure or timeout
            ProviderError: Non-2xx HTTP status
            ShapeError: Success envelope without the expected text field
        """
        if not user_prompt:
            raise ValueError("Prompt cannot be empty")

        spec = get_provider(provider_id)
        model = self.ai_config.model or spec.default_model
        url = spec.url_for(model, self.ai_config.endpoint)
        body = spec.build_body(model, system_instruction, user_prompt, params)
        headers = spec.build_headers(self.ai_config.api_key)

        logger.info(
            f"Requesting completion: provider={spec.id}, model={model}, "
            f"prompt_len={len(user_prompt)}, timeout={params.timeout}s"
        )
        start_time = time.time()

        data = self._post(url, headers, body, params.timeout)

        try:
            text = spec.extract_text(data)
        except ShapeError:
            raise
        except (KeyError, IndexError, TypeError) as e:
            raise ShapeError(
                f"{spec.id} response missing expected field: {e}"
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Completion received: provider={spec.id}, "
            f"duration={duration_ms:.0f}ms, response_len={len(text)}"
        )
        return text

    async def complete_async(
        self,
        provider_id: str,
        system_instruction: str,
        user_prompt: str,
        params: CompletionParams = DETECTION_PARAMS,
    ) -> str:
        """
        Awaitable complete() raced against params.timeout.

        The blocking HTTP call runs in the loop's default executor so the
        caller's event loop keeps ticking. A timeout is reported as NetworkError.
        """
        loop = asyncio.get_running_loop()
        call = functools.partial(
            self.complete, provider_id, system_instruction, user_prompt, params
        )
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, call), timeout=params.timeout
            )
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Completion timed out after {params.timeout}s"
            ) from e

    def test_connection(self, prompt: str = "Hello!") -> str:
        """Send a short greeting to the configured provider and return its reply."""
        return self.complete(
            self.ai_config.provider,
            "",
            prompt,
            CompletionParams(temperature=0.7, max_tokens=50, timeout=15.0),
        )

    def _post(
        self,
        url: str,
        headers: Dict[str, str],
        body: Dict[str, Any],
        timeout: float,
    ) -> Dict[str, Any]:
        """
        POST the JSON body and decode the JSON envelope.

        Raises:
            NetworkError: Connection failure or timeout
            ProviderError: Non-2xx status
            ShapeError: Body is not a JSON object
        """
        try:
            response = self.session.post(url, headers=headers, json=body, timeout=timeout)
        except requests.Timeout as e:
            raise NetworkError(f"Request timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise NetworkError(f"Cannot reach completion service: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ProviderError(
                response.status_code,
                f"HTTP {response.status_code} from provider: {response.text[:200]}",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ShapeError(f"Invalid JSON envelope: {e}") from e

        if not isinstance(data, dict):
            raise ShapeError(f"Expected JSON object envelope, got {type(data).__name__}")
        return data


def provider_ids() -> List[str]:
    """Ids of every supported provider, in a stable order."""
    return sorted(PROVIDERS)
