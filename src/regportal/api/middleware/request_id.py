"""Request ID middleware for log correlation.

Every response carries an X-Request-ID header. A client-supplied value is
kept; otherwise a UUID4 is generated. The id is also exposed to handlers and
error responses through a context variable.
"""

import uuid
from collections.abc import Callable
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"
# Client-supplied ids longer than this are replaced
MAX_REQUEST_ID_LENGTH = 128


def get_request_id() -> str | None:
    """Request id of the current request, or None outside a request."""
    return request_id_ctx.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach an X-Request-ID to each request/response pair."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        if not incoming or len(incoming) > MAX_REQUEST_ID_LENGTH:
            incoming = str(uuid.uuid4())

        token = request_id_ctx.set(incoming)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = incoming
        return response
