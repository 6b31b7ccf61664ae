"""LLM client shared by the evaluator, summarizer and query responder.

One async ``complete()`` call covers both providers. Each LLMTask has a
provider preference; the first provider with a key serves the call.
Connection errors and retryable statuses back off exponentially, honoring
``Retry-After`` when the provider sends it. Token usage is metered per task
so a run can report what scoring cost compared with summaries and queries.
"""

import asyncio
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from src.models.errors import EvaluatorNotConfiguredError

logger = logging.getLogger(__name__)

OutputT = TypeVar("OutputT", bound=BaseModel)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})


class LLMProvider(StrEnum):
    ANTHROPIC = "ANTHROPIC"
    OPENAI = "OPENAI"


class LLMTask(StrEnum):
    """Purpose of a call; selects the provider preference."""

    EVALUATION = "EVALUATION"
    REEVALUATION = "REEVALUATION"
    SUMMARY = "SUMMARY"
    QUERY = "QUERY"


DEFAULT_PREFERENCE: dict[LLMTask, tuple[LLMProvider, ...]] = {
    task: (LLMProvider.ANTHROPIC, LLMProvider.OPENAI) for task in LLMTask
}


class LLMTransportError(RuntimeError):
    """The provider could not be reached, or kept failing until retries ran out."""


class _Retryable(Exception):
    def __init__(self, status: int, retry_after: float | None) -> None:
        super().__init__(f"HTTP {status}")
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Request / response / usage
# ---------------------------------------------------------------------------


@dataclass
class LLMRequest:
    """``output_schema`` None asks for free text; otherwise JSON is validated."""

    system_prompt: str
    user_prompt: str
    output_schema: type[BaseModel] | None = None
    max_tokens: int = 1024
    temperature: float = 0.0


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            self.input_tokens + other.input_tokens,
            self.output_tokens + other.output_tokens,
        )


@dataclass
class LLMResponse:
    content: str
    parsed: BaseModel | None
    provider: LLMProvider
    model: str
    usage: TokenUsage


@dataclass
class UsageMeter:
    """Token totals per LLMTask and call counts."""

    by_task: dict[LLMTask, TokenUsage] = field(default_factory=dict)
    calls: int = 0

    def add(self, task: LLMTask, usage: TokenUsage) -> None:
        self.by_task[task] = self.by_task.get(task, TokenUsage()) + usage
        self.calls += 1

    def total(self) -> TokenUsage:
        return sum(self.by_task.values(), TokenUsage())

    def reset(self) -> None:
        self.by_task.clear()
        self.calls = 0


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)
_BARE_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def extract_json(raw: str) -> str:
    """The JSON part of a model reply: a fenced block, else the outermost braces."""
    fenced = _FENCED_JSON.search(raw)
    if fenced:
        return fenced.group(1).strip()
    bare = _BARE_OBJECT.search(raw)
    return bare.group(0) if bare else raw.strip()


def parse_output(raw: str, schema: type[OutputT]) -> OutputT:
    """Validate a model reply against ``schema``; ValueError when it does not fit."""
    try:
        data = json.loads(extract_json(raw))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON from LLM: {exc}") from exc
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Schema validation failed: {exc}") from exc


def backoff_delays(max_retries: int, base_delay: float) -> list[float]:
    """Sleep before each retry: base, 2*base, 4*base, ..."""
    return [base_delay * 2**n for n in range(max_retries)]


# ---------------------------------------------------------------------------
# Provider wire formats
# ---------------------------------------------------------------------------


def _anthropic_call(key: str, model: str, request: LLMRequest) -> tuple[str, dict, dict]:
    headers = {"x-api-key": key, "anthropic-version": ANTHROPIC_VERSION}
    payload = {
        "model": model,
        "max_tokens": request.max_tokens,
        "temperature": request.temperature,
        "system": request.system_prompt,
        "messages": [{"role": "user", "content": request.user_prompt}],
    }
    return ANTHROPIC_URL, headers, payload


def _anthropic_reply(body: dict[str, Any]) -> tuple[str, TokenUsage]:
    text = "".join(
        block.get("text", "") for block in body.get("content") or [] if block.get("type") == "text"
    )
    usage = body.get("usage") or {}
    return text, TokenUsage(int(usage.get("input_tokens", 0)), int(usage.get("output_tokens", 0)))


def _openai_call(key: str, model: str, request: LLMRequest) -> tuple[str, dict, dict]:
    headers = {"Authorization": f"Bearer {key}"}
    payload = {
        "model": model,
        "max_tokens": request.max_tokens,
        "temperature": request.temperature,
        "messages": [
            {"role": "system", "content": request.system_prompt},
            {"role": "user", "content": request.user_prompt},
        ],
    }
    return OPENAI_URL, headers, payload


def _openai_reply(body: dict[str, Any]) -> tuple[str, TokenUsage]:
    choices = body.get("choices") or [{}]
    text = (choices[0].get("message") or {}).get("content") or ""
    usage = body.get("usage") or {}
    return text, TokenUsage(
        int(usage.get("prompt_tokens", 0)), int(usage.get("completion_tokens", 0)),
    )


_WIRE: dict[LLMProvider, tuple[Callable, Callable]] = {
    LLMProvider.ANTHROPIC: (_anthropic_call, _anthropic_reply),
    LLMProvider.OPENAI: (_openai_call, _openai_reply),
}


def _retry_after(response: httpx.Response) -> float | None:
    try:
        return float(response.headers["retry-after"])
    except (KeyError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class LLMClient:
    def __init__(
        self,
        *,
        anthropic_key: str = "",
        openai_key: str = "",
        anthropic_model: str = "claude-sonnet-4-20250514",
        openai_model: str = "gpt-4o-mini",
        max_retries: int = 3,
        base_delay: float = 1.0,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
        preference: dict[LLMTask, tuple[LLMProvider, ...]] | None = None,
    ) -> None:
        self._keys = {LLMProvider.ANTHROPIC: anthropic_key, LLMProvider.OPENAI: openai_key}
        self._models = {LLMProvider.ANTHROPIC: anthropic_model, LLMProvider.OPENAI: openai_model}
        self._preference = DEFAULT_PREFERENCE if preference is None else preference
        self._delays = backoff_delays(max_retries, base_delay)
        self._timeout = timeout
        self._http = http_client
        self.usage = UsageMeter()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _transport(self) -> httpx.AsyncClient:
        # Built on first send.
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout)
        return self._http

    def provider_for(self, task: LLMTask) -> LLMProvider | None:
        """First preferred provider for ``task`` that has a key."""
        return next((p for p in self._preference.get(task, ()) if self._keys.get(p)), None)

    def is_available_for(self, task: LLMTask) -> bool:
        return self.provider_for(task) is not None

    async def complete(self, request: LLMRequest, *, task: LLMTask) -> LLMResponse:
        """Run ``request`` on the provider preferred for ``task``.

        Raises:
            EvaluatorNotConfiguredError: no provider for the task has a key.
            LLMTransportError: non-retryable HTTP error, or retries exhausted.
            ValueError: the reply does not fit ``request.output_schema``.
        """
        provider = self.provider_for(task)
        if provider is None:
            raise EvaluatorNotConfiguredError(
                f"No LLM provider configured for {task.value}; "
                "set ANTHROPIC_API_KEY or OPENAI_API_KEY."
            )

        attempts = len(self._delays) + 1
        for attempt in range(attempts):
            try:
                content, usage = await self._send(provider, request)
                break
            except (httpx.TransportError, _Retryable) as exc:
                if attempt == attempts - 1:
                    raise LLMTransportError(
                        f"{provider.value} call failed after {attempts} attempt(s): {exc}"
                    ) from exc
                delay = self._delays[attempt]
                if isinstance(exc, _Retryable) and exc.retry_after is not None:
                    delay = max(delay, exc.retry_after)
                logger.warning(
                    "%s %s call failed (attempt %d/%d), retrying in %.1fs: %s",
                    provider.value, task.value, attempt + 1, attempts, delay, exc,
                )
                await asyncio.sleep(delay)

        self.usage.add(task, usage)
        parsed = None
        if request.output_schema is not None:
            parsed = parse_output(content, request.output_schema)
        return LLMResponse(
            content=content,
            parsed=parsed,
            provider=provider,
            model=self._models[provider],
            usage=usage,
        )

    async def _send(self, provider: LLMProvider, request: LLMRequest) -> tuple[str, TokenUsage]:
        build, read = _WIRE[provider]
        url, headers, payload = build(self._keys[provider], self._models[provider], request)
        response = await self._transport().post(url, headers=headers, json=payload)
        if response.status_code in RETRYABLE_STATUS:
            raise _Retryable(response.status_code, _retry_after(response))
        if response.is_error:
            raise LLMTransportError(f"HTTP {response.status_code}: {response.text[:200]}")
        return read(response.json())
