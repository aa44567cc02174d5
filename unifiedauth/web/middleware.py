from __future__ import annotations

import time

from fastapi import Request

from unifiedauth.core.logger import get_logger
from unifiedauth.core.trace import trace_context


class TraceMiddleware:
    """Binds one trace id per request so audit entries written while serving it share it."""

    def __init__(self, logger=None):
        self.logger = logger or get_logger()

    async def __call__(self, request: Request, call_next):  # noqa: ANN001
        incoming = request.headers.get("X-Trace-Id") or None
        with trace_context(incoming[:64] if incoming else None) as trace_id:
            request.state.trace_id = trace_id
            t0 = time.time()
            response = await call_next(request)
            response.headers["X-Trace-Id"] = trace_id
            self.logger.debug(f"[web] {request.method} {request.url.path} -> {response.status_code} ({(time.time() - t0) * 1000:.0f} ms)")
            return response
