"""
Completion Orchestrator
=======================

Turns one logical chat-completion request into a sequence of real calls
against an OpenAI-compatible endpoint, searching credentials x models x
attempts in a fixed order:

    for each credential (pool order):
        for each candidate model (preference order):
            for attempt in 0..max_retries:
                call, classify, maybe back off

Outcome classes per attempt:
- 2xx with non-empty text       -> success, search ends
- 2xx with blank text           -> retryable ("empty_completion")
- 429 / 502 / 503 / 504         -> retryable
- timeout / transport error     -> retryable
- 404                           -> next model at once, no backoff
- anything else                 -> fatal, whole search aborts

The search runs as an explicit state machine; every transition that touches
the network or skips part of the space appends one AttemptRecord, so the
trace is complete on success, on exhaustion and on fatal abort.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx

from src.core import CompletionFatalError
from src.infrastructure.llm.models import (
    SWITCH_API_KEY,
    SWITCH_MODEL,
    AttemptRecord,
    CompletionFailure,
    CompletionOutcome,
    CompletionSuccess,
    Conversation,
    OrchestratorConfig,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})
NOT_FOUND_STATUS = 404
ERROR_BODY_PREVIEW = 400

KEY_FAILOVER_MODEL = "(key_failover)"
MODEL_FAILOVER_MODEL = "(model_failover)"

Sleeper = Callable[[float], Awaitable[None]]


class _State(Enum):
    TRYING_ATTEMPT = "trying_attempt"
    BACKOFF = "backoff"
    NEXT_MODEL = "next_model"
    NEXT_CREDENTIAL = "next_credential"
    DONE = "done"


class _Verdict(Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    NOT_FOUND = "not_found"
    FATAL = "fatal"


@dataclass(frozen=True)
class _AttemptResult:
    """Classified result of one physical call."""
    verdict: _Verdict
    status: int
    latency_ms: int
    note: Optional[str] = None
    error: Optional[str] = None
    text: str = ""
    raw: Optional[dict] = None


class ILLMProvider(ABC):
    """Interface for completion providers."""

    @abstractmethod
    async def complete(
        self,
        conversation: Conversation,
        candidate_models: Optional[Sequence[str]] = None
    ) -> CompletionOutcome:
        """Run a completion across the configured search space."""

    async def aclose(self) -> None:
        """Release network resources."""


class OpenRouterOrchestrator(ILLMProvider):
    """
    Resilient chat-completion client for OpenRouter (or any OpenAI-compatible API).

    Invocations are sequential inside, independent of each other, and safe to
    run concurrently on one instance.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        base_url: str = "https://openrouter.ai/api/v1",
        site_url: Optional[str] = None,
        app_name: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleeper = asyncio.sleep
    ):
        self._config = config
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._site_url = site_url
        self._app_name = app_name
        self._http_client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._config.per_attempt_timeout_seconds
            )
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def complete(
        self,
        conversation: Conversation,
        candidate_models: Optional[Sequence[str]] = None
    ) -> CompletionOutcome:
        """
        Search for a completion.

        Args:
            conversation: Messages sent verbatim on every attempt
            candidate_models: Model preference list; defaults to the config's

        Returns:
            CompletionSuccess or CompletionFailure, both carrying the trace

        Raises:
            CompletionFatalError: On a non-retryable status; carries the trace
        """
        models = tuple(m for m in (candidate_models or ()) if m) or self._config.candidate_models
        pool = self._config.credential_pool
        max_retries = self._config.per_model_max_retries

        trace: List[AttemptRecord] = []
        credential_index = 0
        model_index = 0
        attempt = 0
        delay_ms = 0
        last_error: Optional[str] = None
        outcome: Optional[CompletionOutcome] = None
        state = _State.TRYING_ATTEMPT

        while state is not _State.DONE:
            if state is _State.TRYING_ATTEMPT:
                model = models[model_index]
                result = await self._attempt(credential_index, model, conversation)

                if result.verdict is _Verdict.SUCCESS:
                    trace.append(AttemptRecord(
                        credential_index, model, attempt, result.status, result.latency_ms
                    ))
                    raw = result.raw or {}
                    outcome = CompletionSuccess(
                        text=result.text,
                        used_model=model,
                        trace=tuple(trace),
                        usage=raw.get("usage"),
                        raw=raw
                    )
                    logger.info(
                        "Completion succeeded",
                        extra={
                            "model": model,
                            "credential_index": credential_index,
                            "attempts": len(trace),
                            "latency_ms": result.latency_ms
                        }
                    )
                    state = _State.DONE

                elif result.verdict is _Verdict.FATAL:
                    trace.append(AttemptRecord(
                        credential_index, model, attempt, result.status,
                        result.latency_ms, result.note
                    ))
                    logger.error(
                        "Completion aborted on non-retryable status",
                        extra={
                            "model": model,
                            "credential_index": credential_index,
                            "status_code": result.status
                        }
                    )
                    raise CompletionFatalError(result.error, result.status, trace)

                elif result.verdict is _Verdict.NOT_FOUND:
                    trace.append(AttemptRecord(
                        credential_index, model, attempt, result.status,
                        result.latency_ms, result.note
                    ))
                    last_error = result.error
                    logger.warning(
                        "Model not servable with this credential",
                        extra={"model": model, "credential_index": credential_index}
                    )
                    state = _State.NEXT_MODEL

                else:
                    last_error = result.error
                    note = result.note
                    if attempt < max_retries:
                        delay_ms = self._config.backoff_ms(attempt)
                        note = _join_notes(note, f"backoff {delay_ms}ms")
                        state = _State.BACKOFF
                    else:
                        state = _State.NEXT_MODEL
                    trace.append(AttemptRecord(
                        credential_index, model, attempt, result.status,
                        result.latency_ms, note
                    ))
                    logger.warning(
                        "Retryable completion failure",
                        extra={
                            "model": model,
                            "credential_index": credential_index,
                            "attempt": attempt,
                            "status_code": result.status,
                            "note": note
                        }
                    )

            elif state is _State.BACKOFF:
                await self._sleep(delay_ms / 1000)
                attempt += 1
                state = _State.TRYING_ATTEMPT

            elif state is _State.NEXT_MODEL:
                attempt = 0
                if model_index + 1 < len(models):
                    model_index += 1
                    trace.append(AttemptRecord(
                        credential_index, MODEL_FAILOVER_MODEL, 0, 0, 0, SWITCH_MODEL
                    ))
                    state = _State.TRYING_ATTEMPT
                else:
                    state = _State.NEXT_CREDENTIAL

            elif state is _State.NEXT_CREDENTIAL:
                trace.append(AttemptRecord(
                    credential_index, KEY_FAILOVER_MODEL, 0, 0, 0, SWITCH_API_KEY
                ))
                logger.warning(
                    "Credential exhausted",
                    extra={
                        "credential_index": credential_index,
                        "remaining_credentials": len(pool) - credential_index - 1
                    }
                )
                model_index = 0
                if credential_index + 1 < len(pool):
                    credential_index += 1
                    state = _State.TRYING_ATTEMPT
                else:
                    outcome = CompletionFailure(
                        last_error=last_error or "Completion request failed.",
                        trace=tuple(trace)
                    )
                    logger.error(
                        "Completion search exhausted",
                        extra={"attempts": len(trace), "error": outcome.last_error}
                    )
                    state = _State.DONE

        return outcome

    def _headers(self, credential_index: int) -> dict:
        headers = {
            "Authorization": f"Bearer {self._config.credential_pool[credential_index]}",
            "Content-Type": "application/json",
        }
        if self._site_url:
            headers["HTTP-Referer"] = self._site_url
        if self._app_name:
            headers["X-Title"] = self._app_name
        return headers

    async def _attempt(
        self,
        credential_index: int,
        model: str,
        conversation: Conversation
    ) -> _AttemptResult:
        """Issue one call and classify it. Never raises for network faults."""
        payload = {
            "model": model,
            "messages": conversation.to_payload(),
            "temperature": self._config.temperature,
        }
        timeout_s = self._config.per_attempt_timeout_seconds
        where = f"model={model} (key[{credential_index}])"
        start_time = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                self._get_client().post(
                    self._url, json=payload, headers=self._headers(credential_index)
                ),
                timeout=timeout_s
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return _AttemptResult(
                verdict=_Verdict.RETRYABLE,
                status=0,
                latency_ms=_elapsed_ms(start_time),
                note=f"timeout {int(timeout_s * 1000)}ms",
                error=f"OpenRouter timeout on {where}"
            )
        except httpx.HTTPError as e:
            return _AttemptResult(
                verdict=_Verdict.RETRYABLE,
                status=0,
                latency_ms=_elapsed_ms(start_time),
                note=f"transport_error: {str(e) or type(e).__name__}",
                error=f"OpenRouter transport error on {where}: {e}"
            )

        latency_ms = _elapsed_ms(start_time)
        status = response.status_code
        body_preview = response.text[:ERROR_BODY_PREVIEW] or "(empty body)"

        if status in RETRYABLE_STATUSES:
            return _AttemptResult(
                verdict=_Verdict.RETRYABLE,
                status=status,
                latency_ms=latency_ms,
                error=f"OpenRouter {status} on {where}: {body_preview}"
            )

        if status == NOT_FOUND_STATUS:
            return _AttemptResult(
                verdict=_Verdict.NOT_FOUND,
                status=status,
                latency_ms=latency_ms,
                error=f"OpenRouter 404 on {where}: {body_preview}"
            )

        if not response.is_success:
            return _AttemptResult(
                verdict=_Verdict.FATAL,
                status=status,
                latency_ms=latency_ms,
                error=f"OpenRouter error {status} on {where}: {body_preview}"
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            return _AttemptResult(
                verdict=_Verdict.RETRYABLE,
                status=status,
                latency_ms=latency_ms,
                note="invalid_response",
                error=f"OpenRouter returned non-JSON success response on {where}: {body_preview}"
            )

        text = _extract_text(data)
        if not text.strip():
            return _AttemptResult(
                verdict=_Verdict.RETRYABLE,
                status=status,
                latency_ms=latency_ms,
                note="empty_completion",
                error=f"OpenRouter returned empty completion on model={model}"
            )

        return _AttemptResult(
            verdict=_Verdict.SUCCESS,
            status=status,
            latency_ms=latency_ms,
            text=text,
            raw=data
        )


def _extract_text(data: dict) -> str:
    """Pull choices[0].message.content, tolerating missing pieces."""
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else ""


def _join_notes(*notes: Optional[str]) -> Optional[str]:
    parts = [note for note in notes if note]
    return "; ".join(parts) if parts else None


def _elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)
