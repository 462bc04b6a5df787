"""
Delegated Pipeline Infrastructure
=================================

HTTP client for the remote DSPy triage pipeline.

The service may be cold when first hit, so each attempt gets a long fixed
deadline and a failed first attempt is retried once after a short fixed
delay. No credential or model search happens here; the outcome still carries
an attempt trace so both engines share one observability contract.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Union

import httpx

from src.config import Settings, settings as default_settings
from src.core import ConfigurationException, PipelineException
from src.infrastructure.llm.models import AttemptRecord, CompletionFailure, Trace
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

PIPELINE_MODEL = "DSPy"
MAX_ATTEMPTS = 2
ERROR_BODY_PREVIEW = 600


@dataclass(frozen=True)
class PipelineSuccess:
    """Parsed pipeline answer plus both the service's and our own trace."""
    output: Any
    raw: Any
    used_model: str
    service_trace: Any
    trace: Trace
    latency_ms: int
    notes: Optional[Any] = None
    score: Optional[float] = None

    ok = True


PipelineOutcome = Union[PipelineSuccess, CompletionFailure]


@dataclass
class _Attempt:
    label: str
    status: int = 0
    latency_ms: int = 0
    data: Any = field(default=None, repr=False)


class DelegatedPipelineClient:
    """
    Client for ``POST {base}/triage``.

    Request body: ``{text, sources, compile, useRag}``.
    Response body: ``{output, model, trace, raw, score, notes}``.
    """

    def __init__(
        self,
        base_url: Optional[str],
        timeout_seconds: float = 45.0,
        retry_delay_seconds: float = 2.5,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep=asyncio.sleep
    ):
        if not base_url or not base_url.strip():
            raise ConfigurationException("Missing DSPY_SERVICE_URL")

        self._url = f"{base_url.strip().rstrip('/')}/triage"
        self._timeout = timeout_seconds
        self._retry_delay = retry_delay_seconds
        self._http_client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "DelegatedPipelineClient":
        settings = settings or default_settings
        return cls(
            settings.dspy_service_url,
            timeout_seconds=settings.dspy_timeout_seconds,
            retry_delay_seconds=settings.dspy_retry_delay_seconds,
            **kwargs
        )

    @property
    def url(self) -> str:
        return self._url

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def run(
        self,
        text: str,
        sources: Optional[Sequence[str]] = None,
        compile: bool = False,
        use_rag: bool = False
    ) -> PipelineOutcome:
        """
        Forward a ticket to the pipeline.

        Args:
            text: Ticket text
            sources: Retrieved passage texts, may be empty
            compile: Ask the service to compile its program (slow)
            use_rag: Informational flag for service-side logging

        Returns:
            PipelineSuccess, or CompletionFailure once both attempts failed
        """
        payload = {
            "text": text,
            "sources": list(sources or []),
            "compile": bool(compile),
            "useRag": bool(use_rag),
        }

        trace: List[AttemptRecord] = []
        last_error = "Pipeline request failed."

        for index in range(MAX_ATTEMPTS):
            attempt = _Attempt(label=f"attempt-{index + 1}")
            try:
                await self._attempt_once(attempt, payload)
            except PipelineException as e:
                last_error = e.message
                will_retry = index < MAX_ATTEMPTS - 1
                note = e.details.get("note")
                if will_retry:
                    backoff = f"backoff {int(self._retry_delay * 1000)}ms"
                    note = f"{note}; {backoff}" if note else backoff
                trace.append(AttemptRecord(
                    0, PIPELINE_MODEL, index, attempt.status, attempt.latency_ms, note
                ))
                logger.warning(
                    "Pipeline attempt failed",
                    extra={"attempt": attempt.label, "status_code": attempt.status, "error": e.message}
                )
                if will_retry:
                    await self._sleep(self._retry_delay)
                continue

            data = attempt.data
            used_model = PIPELINE_MODEL
            if isinstance(data, dict) and data.get("model"):
                used_model = str(data["model"])
            trace.append(AttemptRecord(
                0, used_model, index, attempt.status, attempt.latency_ms
            ))
            logger.info(
                "Pipeline triage succeeded",
                extra={"attempt": attempt.label, "latency_ms": attempt.latency_ms, "model": used_model}
            )
            body = data if isinstance(data, dict) else {}
            output = body.get("output")
            return PipelineSuccess(
                output=output if output is not None else data,
                raw=data,
                used_model=used_model,
                service_trace=body.get("trace"),
                trace=tuple(trace),
                latency_ms=attempt.latency_ms,
                notes=body.get("notes"),
                score=body.get("score"),
            )

        logger.error("Pipeline triage failed", extra={"url": self._url, "error": last_error})
        return CompletionFailure(last_error=last_error, trace=tuple(trace))

    async def _attempt_once(self, attempt: _Attempt, payload: dict) -> None:
        """Single bounded POST. Fills ``attempt`` and raises PipelineException on failure."""
        start_time = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._get_client().post(
                    self._url,
                    json=payload,
                    headers={"Content-Type": "application/json", "Accept": "application/json"}
                ),
                timeout=self._timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            attempt.latency_ms = _elapsed_ms(start_time)
            raise PipelineException(
                f"timeout after {int(self._timeout * 1000)}ms ({attempt.label}) calling {self._url}",
                {"note": f"timeout {int(self._timeout * 1000)}ms"}
            )
        except httpx.HTTPError as e:
            attempt.latency_ms = _elapsed_ms(start_time)
            raise PipelineException(
                f"fetch failed ({attempt.label}) calling {self._url}: {e}",
                {"note": "transport_error"}
            )

        attempt.latency_ms = _elapsed_ms(start_time)
        attempt.status = response.status_code
        preview = response.text[:ERROR_BODY_PREVIEW] or "(empty body)"

        if not response.is_success:
            raise PipelineException(
                f"HTTP {response.status_code} ({attempt.label}) from {self._url}: {preview}",
                {"note": f"http_{response.status_code}"}
            )

        try:
            attempt.data = response.json() if response.content else None
        except ValueError:
            raise PipelineException(
                f"returned non-JSON ({attempt.label}) from {self._url}: {preview}",
                {"note": "invalid_response"}
            )


def _elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)


__all__ = [
    "DelegatedPipelineClient",
    "PipelineOutcome",
    "PipelineSuccess",
    "PIPELINE_MODEL",
]
