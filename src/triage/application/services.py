"""
Triage Application Services
============================

Application service for a single triage run.

Retrieves knowledge-base context, asks the selected engine for a verdict,
validates it and records the run in the metrics store.
"""

import json
import re
import time
import uuid
from typing import Any, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from src.config import Engine, Settings
from src.core import (
    CompletionFatalError,
    ConfigurationException,
    TriageFailedException,
)
from src.infrastructure.llm import (
    Conversation,
    ILLMProvider,
    build_candidate_models,
    physical_attempts,
    pick_model,
    trace_to_dicts,
)
from src.metrics.application import RunMetricsStore
from src.metrics.domain import RunRecord, retries_for
from src.shared.infrastructure.logging import get_logger
from src.triage.application.dto import TriageOutput
from src.triage.application.ports import PipelineClient, Retriever
from src.triage.domain import TriagePromptBuilder, TriageResult, TriageStep

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Unwrap a ```json ... ``` block; other text is returned stripped."""
    match = _FENCE_RE.match(text or "")
    return match.group(1) if match else (text or "").strip()


def parse_triage_output(
    payload: Any,
    source_ids: Iterable[str] = ()
) -> Tuple[Optional[Any], Optional[str]]:
    """
    Validate an engine answer against ``TriageOutput``.

    Args:
        payload: Raw model text, or an already-decoded object
        source_ids: Ids of the chunks the engine was shown

    Returns:
        (parsed, validation_error). When the JSON decodes but fails the
        schema, ``parsed`` holds the decoded data so it can still be shown.
        Citations pointing at ids that were not retrieved are dropped.
    """
    if isinstance(payload, str):
        try:
            data = json.loads(strip_code_fences(payload))
        except json.JSONDecodeError as e:
            return None, f"Model did not return valid JSON: {e}"
    else:
        data = payload

    try:
        verdict = TriageOutput.model_validate(data)
    except ValidationError as e:
        return data, str(e)

    known = set(source_ids)
    if verdict.citations is not None:
        verdict.citations = [c for c in verdict.citations if c.id in known]
    return verdict.model_dump(), None


def _elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)


class TriageService:
    """
    Service for triage runs.

    Either engine may be None when it is not configured; selecting it then
    raises ConfigurationException before any work is done.
    """

    def __init__(
        self,
        llm_provider: Optional[ILLMProvider],
        pipeline_client: Optional[PipelineClient],
        retriever: Optional[Retriever],
        metrics_store: RunMetricsStore,
        settings: Settings
    ):
        self.llm_provider = llm_provider
        self.pipeline_client = pipeline_client
        self.retriever = retriever
        self.metrics_store = metrics_store
        self.settings = settings

    async def triage(
        self,
        text: str,
        use_rag: bool = True,
        engine: str = Engine.DIRECT,
        model_primary: Optional[str] = None,
        model_fallback: Optional[str] = None,
        compile: bool = False
    ) -> TriageResult:
        """
        Run one triage.

        Raises:
            ConfigurationException: Selected engine or retriever not configured
            VectorStoreException: Knowledge base could not be loaded
            TriageFailedException: No completion was produced; carries the trace
        """
        engine = Engine.DELEGATED if engine == Engine.DELEGATED else Engine.DIRECT
        if engine == Engine.DIRECT and self.llm_provider is None:
            raise ConfigurationException("Direct engine is not configured")
        if engine == Engine.DELEGATED and self.pipeline_client is None:
            raise ConfigurationException("Missing DSPY_SERVICE_URL")
        if use_rag and self.retriever is None:
            raise ConfigurationException("Knowledge base is not configured")

        allowed = self.settings.allowed_models
        primary = pick_model(model_primary, self.settings.openrouter_model, allowed)
        fallback = pick_model(model_fallback, self.settings.openrouter_fallback_model, allowed)

        trace_id = str(uuid.uuid4())
        start_time = time.perf_counter()
        steps: List[TriageStep] = []

        chunks: List[Any] = []
        rag_ms: Optional[int] = None
        if use_rag:
            rag_start = time.perf_counter()
            chunks = list(await self.retriever.retrieve(text, k=self.settings.rag_top_k))
            rag_ms = _elapsed_ms(rag_start)
            steps.append(TriageStep("retrieval", rag_ms, {"chunks": len(chunks)}))

        run = dict(
            trace_id=trace_id,
            engine=engine,
            use_rag=use_rag,
            primary_model=primary,
            fallback_model=fallback,
            rag_ms=rag_ms,
        )

        if engine == Engine.DIRECT:
            result = await self._run_direct(text, chunks, primary, fallback, steps, run, start_time)
        else:
            result = await self._run_delegated(text, chunks, compile, use_rag, steps, run, start_time)

        self.metrics_store.record(RunRecord(
            total_ms=result.total_ms,
            validation_ok=result.validation_ok,
            used_model=result.used_model,
            **run
        ))
        logger.info(
            "Triage completed",
            extra={
                "trace_id": trace_id,
                "engine": engine,
                "used_model": result.used_model,
                "validation_ok": result.validation_ok,
                "total_ms": result.total_ms
            }
        )
        return result

    async def _run_direct(
        self,
        text: str,
        chunks: List[Any],
        primary: str,
        fallback: Optional[str],
        steps: List[TriageStep],
        run: dict,
        start_time: float
    ) -> TriageResult:
        system, prompt = TriagePromptBuilder.build_messages(text, chunks)
        conversation = Conversation.from_turns(system, prompt)
        llm_start = time.perf_counter()
        try:
            outcome = await self.llm_provider.complete(
                conversation, build_candidate_models(primary, fallback)
            )
        except CompletionFatalError as e:
            run.update(llm_ms=_elapsed_ms(llm_start))
            steps.append(TriageStep("llm", run["llm_ms"]))
            raise self._fail(e.message, e.trace, steps, run, start_time) from e

        run.update(
            llm_ms=_elapsed_ms(llm_start),
            attempts=physical_attempts(outcome.trace),
        )
        run["retries"] = retries_for(Engine.DIRECT, run["attempts"])
        steps.append(TriageStep("llm", run["llm_ms"]))

        if not outcome.ok:
            raise self._fail(outcome.last_error, outcome.trace, steps, run, start_time)

        parsed, validation_error = parse_triage_output(outcome.text, (c.id for c in chunks))
        return TriageResult(
            trace_id=run["trace_id"],
            engine=Engine.DIRECT,
            use_rag=run["use_rag"],
            primary_model=primary,
            fallback_model=fallback,
            used_model=outcome.used_model,
            raw_text=outcome.text,
            parsed=parsed,
            validation_error=validation_error,
            sources=chunks,
            total_ms=_elapsed_ms(start_time),
            steps=steps,
            engine_trace={"attempts": trace_to_dicts(outcome.trace), "usage": outcome.usage}
        )

    async def _run_delegated(
        self,
        text: str,
        chunks: List[Any],
        compile: bool,
        use_rag: bool,
        steps: List[TriageStep],
        run: dict,
        start_time: float
    ) -> TriageResult:
        pipeline_start = time.perf_counter()
        outcome = await self.pipeline_client.run(
            text,
            sources=[c.text for c in chunks],
            compile=compile,
            use_rag=use_rag
        )
        run.update(
            pipeline_ms=_elapsed_ms(pipeline_start),
            attempts=physical_attempts(outcome.trace),
        )
        steps.append(TriageStep("pipeline", run["pipeline_ms"]))

        if not outcome.ok:
            raise self._fail(outcome.last_error, outcome.trace, steps, run, start_time)

        output = outcome.output
        raw_text = output if isinstance(output, str) else json.dumps(output, ensure_ascii=False)
        parsed, validation_error = parse_triage_output(output, (c.id for c in chunks))
        return TriageResult(
            trace_id=run["trace_id"],
            engine=Engine.DELEGATED,
            use_rag=use_rag,
            primary_model=run["primary_model"],
            fallback_model=run["fallback_model"],
            used_model=outcome.used_model,
            raw_text=raw_text,
            parsed=parsed,
            validation_error=validation_error,
            sources=chunks,
            total_ms=_elapsed_ms(start_time),
            steps=steps,
            engine_trace={
                "attempts": trace_to_dicts(outcome.trace),
                "service": outcome.service_trace,
                "score": outcome.score,
                "notes": outcome.notes,
            }
        )

    def _fail(
        self,
        error: str,
        trace: Iterable[Any],
        steps: List[TriageStep],
        run: dict,
        start_time: float
    ) -> TriageFailedException:
        """Record the failed run; the returned exception carries the trace payload."""
        trace = list(trace)
        total_ms = _elapsed_ms(start_time)
        if run.get("attempts") is None:
            run["attempts"] = physical_attempts(trace)
            run["retries"] = retries_for(run["engine"], run["attempts"])

        self.metrics_store.record(RunRecord(
            total_ms=total_ms,
            validation_ok=False,
            **run
        ))
        logger.error(
            "Triage failed",
            extra={
                "trace_id": run["trace_id"],
                "engine": run["engine"],
                "error": error,
                "attempts": run["attempts"]
            }
        )
        return TriageFailedException(error, {
            "traceId": run["trace_id"],
            "totalMs": total_ms,
            "steps": [{"name": step.name, "ms": step.ms} for step in steps],
            "engine": run["engine"],
            "engineTrace": {"attempts": trace_to_dicts(trace)},
        })
