"""
Per-request diagnostics.

Handlers and SQLAlchemy listeners bump ContextVars; the ASGI middleware
below resets them when a request starts and reports them as response
headers:

- ``X-Response-Time-Ms``: wall-clock time for the whole request.
- ``X-Query-Count``: SQL statements executed, eager loads included.
- ``X-Sync-Failures``: secondary-store writes (search index) that failed
  after the database commit.  Non-zero means the index lags for the
  records this request touched.
"""
import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Message, Receive, Scope, Send

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)
sync_failure_var: ContextVar[int] = ContextVar("sync_failures", default=0)


def install_query_counter(engine) -> None:
    """Count every statement *engine* sends.  Call once per engine."""

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _on_execute(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


def record_sync_failure() -> None:
    sync_failure_var.set(sync_failure_var.get() + 1)


def _diagnostic_headers(started: float) -> list[tuple[bytes, bytes]]:
    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    values = {
        b"x-response-time-ms": elapsed_ms,
        b"x-query-count": query_count_var.get(),
        b"x-sync-failures": sync_failure_var.get(),
    }
    return [(name, str(value).encode()) for name, value in values.items()]


class DiagnosticsMiddleware:
    # Pure ASGI rather than BaseHTTPMiddleware: the handler must run in this
    # coroutine's context for its ContextVar updates to be visible here.

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_count_var.set(0)
        sync_failure_var.set(0)
        started = time.perf_counter()

        async def send_with_diagnostics(message: Message) -> None:
            if message["type"] == "http.response.start":
                message["headers"] = [*message.get("headers", []), *_diagnostic_headers(started)]
            await send(message)

        await self.app(scope, receive, send_with_diagnostics)
