import logging
import time
import uuid
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("app.core.middleware")

REQUEST_ID_HEADER = "x-request-id"
_MAX_REQUEST_ID_CHARS = 128


def _request_id(headers: Headers) -> str:
  """Reuse a caller-supplied request id when it is sane, otherwise mint one."""
  supplied = (headers.get(REQUEST_ID_HEADER) or "").strip()
  if supplied and len(supplied) <= _MAX_REQUEST_ID_CHARS and supplied.isprintable():
    return supplied
  return str(uuid.uuid4())


class RequestLoggingMiddleware:
  """Tag each HTTP request with an id and log its session, status and latency.

  Event streams stay open for minutes, so their completion line is logged at DEBUG.
  """

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    headers = Headers(scope=scope)
    request_id = _request_id(headers)
    # Exception handlers read the id from `request.state`.
    scope.setdefault("state", {})["request_id"] = request_id
    session_id = headers.get("x-session-id") or "-"
    method = scope.get("method", "UNKNOWN")
    path = scope.get("path", "")
    logger.info("Request request_id=%s session=%s %s %s", request_id, session_id, method, path)

    started = time.perf_counter()
    status_code = 0
    streaming = False

    async def send_wrapper(message: dict[str, Any]) -> None:
      nonlocal status_code, streaming
      if message.get("type") == "http.response.start":
        status_code = message.get("status", 0)
        response_headers = MutableHeaders(scope=message)
        response_headers.setdefault(REQUEST_ID_HEADER, request_id)
        streaming = response_headers.get("content-type", "").startswith("text/event-stream")
      await send(message)

    try:
      await self.app(scope, receive, send_wrapper)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      level = logging.DEBUG if streaming else logging.INFO
      logger.log(level, "Response request_id=%s status=%s (took %.2fms)", request_id, status_code, elapsed_ms)
