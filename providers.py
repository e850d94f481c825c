"""
AI provider adapter.

One interface over the three supported backends (OpenAI, Claude, Gemini):
builds the analysis prompt, sends it, normalises the provider-specific
response into a ``CanonicalResult``, and rotates through the other
configured providers when the primary one fails.
"""

import json
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Annotated, Literal, TypeVar

import anthropic
from google import genai
from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError

from config import (
    CLAUDE_MODEL,
    DEFAULT_PROVIDER,
    FALLBACK_ORDER,
    GEMINI_MODEL,
    OPENAI_MODEL,
    USE_MOCK,
    validate_provider,
)
from mock_data import MOCK_FIX_RESPONSE, MOCK_RESPONSE
from models import CanonicalResult, UserSettings
from prompts import ANALYSIS_SYSTEM_PROMPT, build_analysis_prompt

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# ERRORS
# =============================================================================
class ProviderError(Exception):
    """Base class for failures attributable to one provider call."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider
        self.attempts: list["AttemptRecord"] = []


class ProviderNotConfiguredError(ProviderError):
    """The requested provider has no credential."""


class ProviderRequestError(ProviderError):
    """The SDK call failed (network, auth, rate limit, ...)."""


class ResponseParseError(ProviderError):
    """The response could not be turned into a CanonicalResult."""


# =============================================================================
# CONFIGURATION
# =============================================================================
@dataclass(frozen=True)
class ProviderConfig:
    """Per-request provider selection and credentials."""

    provider: str = DEFAULT_PROVIDER
    openai_key: str | None = None
    anthropic_key: str | None = None
    gemini_key: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: UserSettings,
        provider: str | None = None,
    ) -> "ProviderConfig":
        return cls(
            provider=validate_provider(provider or settings.provider),
            openai_key=settings.openai_key or None,
            anthropic_key=settings.anthropic_key or None,
            gemini_key=settings.gemini_key or None,
        )

    def key_for(self, provider: str) -> str | None:
        return {
            "openai": self.openai_key,
            "claude": self.anthropic_key,
            "gemini": self.gemini_key,
        }.get(provider)

    def is_configured(self, provider: str) -> bool:
        return bool(self.key_for(provider))


# =============================================================================
# RAW PROVIDER RESPONSES (one tagged variant per backend)
# =============================================================================
class OpenAIRaw(BaseModel):
    provider: Literal["openai"] = "openai"
    model: str = OPENAI_MODEL
    content: str | None = None
    finish_reason: str | None = None


class ClaudeBlock(BaseModel):
    type: str
    text: str = ""


class ClaudeRaw(BaseModel):
    provider: Literal["claude"] = "claude"
    model: str = CLAUDE_MODEL
    blocks: list[ClaudeBlock] = Field(default_factory=list)
    stop_reason: str | None = None


class GeminiRaw(BaseModel):
    provider: Literal["gemini"] = "gemini"
    model: str = GEMINI_MODEL
    text: str | None = None


RawResponse = Annotated[
    OpenAIRaw | ClaudeRaw | GeminiRaw,
    Field(discriminator="provider"),
]

# (api_key, prompt, json_mode) -> RawResponse
Transport = Callable[[str, str, bool], RawResponse]


def response_text(raw: RawResponse) -> str:
    """Extract the generated text from any provider's raw response."""
    if isinstance(raw, OpenAIRaw):
        return raw.content or ""
    if isinstance(raw, ClaudeRaw):
        for block in raw.blocks:
            if block.type == "text":
                return block.text
        raise ResponseParseError(
            "Unexpected response format from Claude", provider="claude"
        )
    if isinstance(raw, GeminiRaw):
        return raw.text or ""
    raise TypeError(f"Unknown raw response type: {type(raw).__name__}")


# =============================================================================
# RESPONSE PARSING
# =============================================================================
_OPEN_FENCE = re.compile(r"^```[\w-]*\s*")
_CLOSE_FENCE = re.compile(r"\s*```$")

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence wrapped around the whole response."""
    cleaned = text.strip()
    cleaned = _OPEN_FENCE.sub("", cleaned)
    cleaned = _CLOSE_FENCE.sub("", cleaned)
    return cleaned.strip()


def extract_outermost_object(text: str) -> str | None:
    """Return the span from the first '{' to the last '}', if any."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return None
    return text[start : end + 1]


def repair_json(text: str) -> str:
    """
    Fix the JSON defects models commonly produce.

    - trailing commas before ``}`` or ``]``
    - raw newlines, tabs and other control characters inside strings
    """
    out: list[str] = []
    in_string = False
    escaped = False
    i = 0
    length = len(text)

    while i < length:
        ch = text[i]

        if in_string:
            if escaped:
                escaped = False
                out.append(ch)
            elif ch == "\\":
                escaped = True
                out.append(ch)
            elif ch == '"':
                in_string = False
                out.append(ch)
            elif ch in _CONTROL_ESCAPES:
                out.append(_CONTROL_ESCAPES[ch])
            elif ord(ch) < 0x20:
                out.append(f"\\u{ord(ch):04x}")
            else:
                out.append(ch)
        elif ch == '"':
            in_string = True
            out.append(ch)
        elif ch == ",":
            j = i + 1
            while j < length and text[j].isspace():
                j += 1
            if j >= length or text[j] not in "}]":
                out.append(ch)
        else:
            out.append(ch)
        i += 1

    return "".join(out)


def _loads(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def parse_analysis_response(text: str) -> CanonicalResult:
    """
    Turn raw model output into a validated CanonicalResult.

    Pure function. Tries, in order: the fence-stripped text, the outermost
    ``{...}`` object, and that object after ``repair_json``.

    Raises:
        ResponseParseError: If no attempt yields a valid result
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty response from provider")

    cleaned = strip_code_fences(text)
    data = _loads(cleaned)

    if data is None:
        candidate = extract_outermost_object(cleaned)
        if candidate is None:
            raise ResponseParseError("No JSON object found in response")
        data = _loads(candidate)
        if data is None:
            data = _loads(repair_json(candidate))
        if data is None:
            raise ResponseParseError("Failed to parse response as JSON")

    if not isinstance(data, dict):
        raise ResponseParseError(
            f"Expected a JSON object, got {type(data).__name__}"
        )

    try:
        return CanonicalResult.model_validate(data)
    except ValidationError as e:
        raise ResponseParseError(
            f"Response does not match the expected shape ({e.error_count()} error(s))"
        ) from e


# =============================================================================
# SDK TRANSPORTS
# =============================================================================
def call_openai(api_key: str, prompt: str, json_mode: bool) -> OpenAIRaw:
    client = OpenAI(api_key=api_key)
    messages: list[dict[str, str]] = []
    extra: dict = {}
    if json_mode:
        messages.append({"role": "system", "content": ANALYSIS_SYSTEM_PROMPT})
        extra["response_format"] = {"type": "json_object"}
    messages.append({"role": "user", "content": prompt})

    completion = client.chat.completions.create(
        model=OPENAI_MODEL,
        messages=messages,
        temperature=0.3,
        max_tokens=4000 if json_mode else 4096,
        **extra,
    )
    choice = completion.choices[0]
    return OpenAIRaw(
        model=completion.model or OPENAI_MODEL,
        content=choice.message.content,
        finish_reason=choice.finish_reason,
    )


def call_claude(api_key: str, prompt: str, json_mode: bool) -> ClaudeRaw:
    client = anthropic.Anthropic(api_key=api_key)
    message = client.messages.create(
        model=CLAUDE_MODEL,
        max_tokens=4000 if json_mode else 8192,
        temperature=0.3,
        messages=[{"role": "user", "content": prompt}],
    )
    return ClaudeRaw(
        model=message.model or CLAUDE_MODEL,
        blocks=[
            ClaudeBlock(type=block.type, text=getattr(block, "text", "") or "")
            for block in message.content
        ],
        stop_reason=message.stop_reason,
    )


def call_gemini(api_key: str, prompt: str, json_mode: bool) -> GeminiRaw:
    client = genai.Client(api_key=api_key)
    generation_config: dict = {
        # Lower temperature gives more consistent JSON
        "temperature": 0.1 if json_mode else 0.3,
        "max_output_tokens": 8000,
    }
    if json_mode:
        generation_config["response_mime_type"] = "application/json"

    response = client.models.generate_content(
        model=GEMINI_MODEL,
        contents=prompt,
        config=generation_config,
    )
    return GeminiRaw(text=response.text)


DEFAULT_TRANSPORTS: dict[str, Transport] = {
    "openai": call_openai,
    "claude": call_claude,
    "gemini": call_gemini,
}


def _mock_transport(provider: str) -> Transport:
    def transport(api_key: str, prompt: str, json_mode: bool) -> RawResponse:
        text = MOCK_RESPONSE if json_mode else MOCK_FIX_RESPONSE
        if provider == "openai":
            return OpenAIRaw(content=text, finish_reason="stop")
        if provider == "claude":
            return ClaudeRaw(blocks=[ClaudeBlock(type="text", text=text)])
        return GeminiRaw(text=text)

    return transport


MOCK_TRANSPORTS: dict[str, Transport] = {
    name: _mock_transport(name) for name in DEFAULT_TRANSPORTS
}


# =============================================================================
# FALLBACK ROTATION
# =============================================================================
@dataclass
class AttemptRecord:
    """Outcome of one provider attempt within a fallback chain."""

    provider: str
    ok: bool
    error: str | None = None


def fallback_chain(primary: str, configured: Iterable[str]) -> list[str]:
    """Primary first, then every other configured provider in FALLBACK_ORDER."""
    available = set(configured)
    return [primary] + [
        name for name in FALLBACK_ORDER if name != primary and name in available
    ]


def first_success(
    chain: list[str],
    attempt: Callable[[str], T],
) -> tuple[T, list[AttemptRecord]]:
    """
    Try each provider in *chain* until one succeeds.

    Every failure is logged and recorded. When the whole chain fails, the
    error from the first (primary) attempt is raised.
    """
    if not chain:
        raise ProviderNotConfiguredError("No AI provider to try")

    records: list[AttemptRecord] = []
    errors: list[ProviderError] = []

    for index, provider in enumerate(chain):
        try:
            result = attempt(provider)
        except ProviderError as exc:
            records.append(AttemptRecord(provider=provider, ok=False, error=str(exc)))
            errors.append(exc)
            if index == 0:
                logger.warning("%s failed, attempting fallback: %s", provider, exc)
            else:
                logger.warning("%s fallback failed: %s", provider, exc)
            continue

        records.append(AttemptRecord(provider=provider, ok=True))
        if index > 0:
            logger.info("Fallback to %s succeeded", provider)
        return result, records

    primary_error = errors[0]
    primary_error.attempts = records
    raise primary_error


# =============================================================================
# ADAPTER
# =============================================================================
class ProviderAdapter:
    """Uniform analysis interface over the configured AI providers."""

    def __init__(
        self,
        config: ProviderConfig,
        transports: dict[str, Transport] | None = None,
        mock: bool = USE_MOCK,
    ) -> None:
        self.config = config
        self.mock = mock
        if transports is not None:
            self.transports = transports
        else:
            self.transports = MOCK_TRANSPORTS if mock else DEFAULT_TRANSPORTS
        self.last_attempts: list[AttemptRecord] = []

    def configured_providers(self) -> list[str]:
        return [
            name
            for name in self.transports
            if self.mock or self.config.is_configured(name)
        ]

    def _request(self, provider: str, prompt: str, json_mode: bool) -> RawResponse:
        validate_provider(provider)
        api_key = self.config.key_for(provider) or ""
        if not api_key and not self.mock:
            raise ProviderNotConfiguredError(
                f"{provider} not configured", provider=provider
            )

        transport = self.transports.get(provider)
        if transport is None:
            raise ProviderNotConfiguredError(
                f"No transport registered for {provider}", provider=provider
            )

        try:
            return transport(api_key, prompt, json_mode)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderRequestError(
                f"{provider} request failed: {e}", provider=provider
            ) from e

    def _analyze_with(self, provider: str, prompt: str) -> CanonicalResult:
        raw = self._request(provider, prompt, json_mode=True)
        try:
            return parse_analysis_response(response_text(raw))
        except ResponseParseError as e:
            raise ResponseParseError(
                f"Invalid JSON response from {provider}: {e}", provider=provider
            ) from e
        except Exception as e:
            raise ResponseParseError(
                f"Unusable response from {provider}: {e}", provider=provider
            ) from e

    def analyze(
        self,
        repository: str,
        title: str,
        source_text: str,
        language: str,
        provider: str | None = None,
    ) -> CanonicalResult:
        """
        Analyse *source_text* and return a CanonicalResult.

        Args:
            repository: "owner/repo" identity used in the prompt
            title: What is being analysed (PR title, "Full Repository Analysis")
            source_text: Code or diff body
            language: Primary language label
            provider: Override for the configured default provider

        Raises:
            ProviderError: The primary provider's error, when every
                configured provider failed
        """
        prompt = build_analysis_prompt(repository, title, source_text, language)
        primary = provider or self.config.provider
        chain = fallback_chain(primary, self.configured_providers())

        try:
            result, self.last_attempts = first_success(
                chain, lambda name: self._analyze_with(name, prompt)
            )
        except ProviderError as exc:
            self.last_attempts = exc.attempts
            logger.error(
                "All providers failed for %s (tried: %s)", repository, ", ".join(chain)
            )
            raise
        return result

    def send_prompt(self, prompt: str, provider: str | None = None) -> str:
        """Send a raw prompt and return the text. No fallback."""
        selected = provider or self.config.provider
        try:
            raw = self._request(selected, prompt, json_mode=False)
            return response_text(raw)
        except ProviderError as e:
            logger.error("%s send_prompt failed: %s", selected, e)
            raise
