"""Port definitions for the collaborators the triage service consumes."""

from typing import Any, Optional, Protocol, Sequence


class Retriever(Protocol):
    """Knowledge-base lookup, best match first."""

    async def retrieve(self, query: str, k: int = 4) -> Sequence[Any]:
        """Return at most ``k`` chunks with ``id``, ``score`` and ``text``."""


class PipelineClient(Protocol):
    """Delegated engine."""

    async def run(
        self,
        text: str,
        sources: Optional[Sequence[str]] = None,
        compile: bool = False,
        use_rag: bool = False
    ) -> Any:
        """Return a PipelineSuccess or a CompletionFailure."""
