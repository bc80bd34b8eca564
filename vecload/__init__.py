__version__ = "0.1.0"

import os

from ddtrace.trace import tracer


def tracing_enabled() -> bool:
    """Spans for embedding requests and upserts are only sent on request."""
    value = os.getenv("DD_TRACE_ENABLED", "false")
    return value.strip().lower() in ("true", "1", "yes")


tracer.enabled = tracing_enabled()

__all__ = ["__version__", "tracing_enabled"]
