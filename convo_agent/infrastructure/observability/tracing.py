# Langfuse integration
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import structlog
from langfuse import Langfuse

logger = structlog.get_logger(__name__)


class TurnTracer:
    """Optional Langfuse spans around turns and tool executions.

    Without a client every span is a no-op, so tracing never changes control
    flow.
    """

    def __init__(self, langfuse: Optional[Langfuse] = None):
        self.langfuse = langfuse

    @classmethod
    def from_settings(cls, settings: Any) -> "TurnTracer":
        if not settings.langfuse_enabled:
            return cls()

        if not (settings.langfuse_public_key and settings.langfuse_secret_key):
            logger.warning("Langfuse enabled without credentials, tracing disabled")
            return cls()

        return cls(Langfuse(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host,
        ))

    @property
    def enabled(self) -> bool:
        return self.langfuse is not None

    @contextmanager
    def span(
        self,
        name: str,
        input: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Iterator[Any]:
        """Open a span as the current observation, yielding it (or None)"""

        if self.langfuse is None:
            yield None
            return

        with self.langfuse.start_as_current_span(name=name, input=input, metadata=metadata) as span:
            yield span

    def update(self, span: Any, **fields: Any) -> None:
        if span is not None:
            span.update(**fields)

    def flush(self) -> None:
        if self.langfuse is not None:
            self.langfuse.flush()
