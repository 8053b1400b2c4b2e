"""
Alien Pet LLM Client
Calls the text-generation provider (OpenAI-compatible or Ollama) and turns
whatever comes back into one GenerationResult shape.
"""

import json
import re
from typing import Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, Field

import settings
from emotion_state import EMOTION_NAMES
from prompt_builder import PromptPayload


class GenerationResult(BaseModel):
    text: str = ""
    emotion_delta: dict[str, int] = Field(default_factory=dict)
    success: bool = True
    error_message: Optional[str] = None


class ProviderError(Exception):
    """Transport/provider failure (network, auth, rate limit, bad payload)."""


TextGenerate = Callable[[str, str], Awaitable[str]]


# ── Provider transports ──

async def call_openai_compatible(system: str, user: str, api_key: str = None,
                                 api_url: str = None, model: str = None,
                                 timeout: float = None) -> str:
    """Call an OpenAI-compatible chat completions endpoint. Returns raw reply text."""
    api_key = settings.AI_API_KEY if api_key is None else api_key
    api_url = (api_url or settings.AI_API_URL).rstrip("/")
    model = model or settings.AI_MODEL
    timeout = timeout or settings.LLM_TIMEOUT

    if not api_key:
        raise ProviderError("AI API key not configured")

    print(f"[LLM] Request to {api_url} ({model}): {user[:50]}...")

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{api_url}/v1/chat/completions",
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json"
                },
                json={
                    "model": model,
                    "messages": [
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                    "temperature": 0.7,
                },
                timeout=timeout
            )
    except httpx.TimeoutException:
        raise ProviderError("Provider timeout")
    except httpx.HTTPError as e:
        raise ProviderError(f"Cannot connect to provider: {e}")

    if response.status_code != 200:
        raise ProviderError(f"Provider error {response.status_code}: {_error_detail(response)}")

    result = _json_body(response)
    choices = result.get("choices") or []
    if not isinstance(choices, list) or not choices:
        raise ProviderError(_error_detail(response) or "Provider returned no choices")
    choice = choices[0] if isinstance(choices[0], dict) else {}
    return _message_content(choice.get("message"))


async def call_ollama(system: str, user: str, ollama_url: str = None,
                      model: str = None, timeout: float = None) -> str:
    """Call Ollama local API. Returns raw reply text."""
    ollama_url = (ollama_url or settings.OLLAMA_URL).rstrip("/")
    model = model or settings.OLLAMA_MODEL
    timeout = timeout or settings.LLM_TIMEOUT

    print(f"[Ollama] Request ({model}): {user[:50]}...")

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{ollama_url}/api/chat",
                json={
                    "model": model,
                    "messages": [
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                    "stream": False
                },
                timeout=timeout
            )
    except httpx.TimeoutException:
        raise ProviderError("Provider timeout")
    except httpx.HTTPError as e:
        raise ProviderError(f"Cannot connect to provider: {e}")

    if response.status_code != 200:
        raise ProviderError(f"Ollama error {response.status_code}: {response.text}")

    result = _json_body(response)
    return _message_content(result.get("message"))


def _json_body(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        raise ProviderError(f"Provider returned non-JSON body: {response.text[:200]}")
    if not isinstance(data, dict):
        raise ProviderError("Provider returned an unexpected payload")
    return data


def _message_content(message) -> str:
    """Pull the reply text out of a chat `message` object."""
    if not isinstance(message, dict):
        raise ProviderError("Provider reply has no message")
    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    # Content-part list: [{"type": "text", "text": "..."}, ...]
    if isinstance(content, list):
        parts = [part.get("text") for part in content
                 if isinstance(part, dict) and isinstance(part.get("text"), str)]
        if parts:
            return "".join(parts)
    raise ProviderError(f"Provider reply content has unexpected type: {type(content).__name__}")


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str):
            return error
    return response.text


def provider_text_generate(provider: str = None) -> TextGenerate:
    """Pick the transport for the configured provider."""
    provider = provider or settings.LLM_PROVIDER
    if provider == "openai":
        return call_openai_compatible
    elif provider == "ollama":
        return call_ollama
    raise ValueError(f"Unknown provider: {provider}")


# ── Reply parsing ──

TEXT_KEYS = ("text", "response", "content", "reply", "message", "speech", "sound")
DELTA_KEYS = ("emotions", "emotionDelta", "emotion_delta", "emotion",
              "parameters", "alienParameters", "params", "state")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_PARAMS_TAG_RE = re.compile(r"\[PARAMETERS_UPDATE\]([\s\S]*?)\[/PARAMETERS_UPDATE\]")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

_lenient_json = json.JSONDecoder(strict=False)


def _json_loads(s: str):
    """Lenient JSON parser that accepts newlines/control chars inside strings."""
    parsed = _lenient_json.decode(s.strip())
    # Double-encoded: a JSON string holding a JSON object
    if isinstance(parsed, str):
        parsed = _lenient_json.decode(parsed.strip())
    return parsed


def _try_object(candidate: str) -> Optional[dict]:
    try:
        parsed = _json_loads(candidate)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    if isinstance(parsed, dict) and _is_recognized(parsed):
        return parsed
    return None


def _is_recognized(obj: dict) -> bool:
    return any(k in obj for k in TEXT_KEYS + DELTA_KEYS + EMOTION_NAMES)


def coerce_delta(obj) -> dict[str, int]:
    """Keep known attribute names with numeric values, as ints. Drop everything else."""
    delta = {}
    if not isinstance(obj, dict):
        return delta
    for name, value in obj.items():
        name = str(name).strip().lower()
        if name not in EMOTION_NAMES or isinstance(value, bool):
            continue
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                continue
        if isinstance(value, (int, float)) and value == value and abs(value) != float("inf"):
            delta[name] = int(round(value))
    return delta


def normalize_reply(obj: dict) -> tuple[str, dict[str, int]]:
    """Map known/legacy field names onto (text, delta)."""
    text = ""
    for key in TEXT_KEYS:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            text = value.strip()
            break

    delta = {}
    for key in DELTA_KEYS:
        if isinstance(obj.get(key), dict):
            delta = coerce_delta(obj[key])
            break
    else:
        # Flat shape: attributes at the top level
        delta = coerce_delta(obj)

    return text, delta


def parse_reply(raw_text: Optional[str]) -> GenerationResult:
    """Parse a provider reply that should, but might not, be a JSON object.

    Tries in order: whole reply as JSON, fenced code block, legacy
    [PARAMETERS_UPDATE] block, first {...} in prose. Anything else is kept as
    plain display text with no attribute changes.
    """
    if not isinstance(raw_text, str):
        return GenerationResult(success=False,
                                error_message=f"Unexpected reply type from provider: {type(raw_text).__name__}")
    if not raw_text.strip():
        return GenerationResult(success=False, error_message="Empty reply from provider")

    # Layer 1: the whole reply
    parsed = _try_object(raw_text)
    prose = ""

    # Layer 2: fenced code blocks
    if parsed is None:
        for block in _FENCE_RE.findall(raw_text):
            parsed = _try_object(block)
            if parsed is not None:
                # Speech may sit outside the fence
                prose = _FENCE_RE.sub("", raw_text).strip()
                break

    if parsed is not None:
        text, delta = normalize_reply(parsed)
        return GenerationResult(text=text or prose, emotion_delta=delta)

    # Layer 3: legacy tagged parameter block inside free text
    match = _PARAMS_TAG_RE.search(raw_text)
    if match:
        try:
            params = _json_loads(match.group(1))
        except (json.JSONDecodeError, TypeError, ValueError):
            params = None
        if isinstance(params, dict):
            text = _PARAMS_TAG_RE.sub("", raw_text).strip()
            delta = params if any(k in params for k in DELTA_KEYS) else {"emotions": params}
            return GenerationResult(text=text, emotion_delta=normalize_reply(delta)[1])

    # Layer 4: an object embedded in prose
    match = _OBJECT_RE.search(raw_text)
    if match:
        parsed = _try_object(match.group())
        if parsed is not None:
            print("[Parser] Recovered JSON object embedded in prose")
            text, delta = normalize_reply(parsed)
            return GenerationResult(text=text, emotion_delta=delta)

    # Layer 5: opaque display text
    return GenerationResult(text=raw_text.strip())


# ── Adapter ──

class GenerationClient:
    """Wraps the provider call; failures come back as data, never as exceptions."""

    def __init__(self, text_generate: TextGenerate = None):
        self.text_generate = text_generate or provider_text_generate()

    async def generate(self, payload: PromptPayload) -> GenerationResult:
        try:
            raw = await self.text_generate(payload.system, payload.user)
        except ProviderError as e:
            print(f"[LLM] Provider failure ({payload.kind.value}): {e}")
            return GenerationResult(success=False, error_message=str(e))
        except (httpx.HTTPError, TimeoutError) as e:
            print(f"[LLM] Transport failure ({payload.kind.value}): {e!r}")
            return GenerationResult(success=False, error_message=str(e) or type(e).__name__)

        result = parse_reply(raw)
        if result.success:
            print(f"[LLM] Reply ({payload.kind.value}): {result.text[:50]!r} delta={result.emotion_delta}")
        return result
