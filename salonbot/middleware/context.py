"""
Request context middleware.

X-Request-ID is honoured when it looks safe to log and generated
otherwise; it is echoed on the response so the chat layer can quote it.
X-Conversation-ID names the chat participant the lookup is for.
"""

import re
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from salonbot.core.context import bind_request, clear_context, generate_request_id

# Header values end up in log lines; anything else is dropped
MAX_ID_LENGTH = 64
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-+:.]+$")


def _safe_id(value: Optional[str]) -> Optional[str]:
    if value and len(value) <= MAX_ID_LENGTH and SAFE_ID_PATTERN.match(value):
        return value
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _safe_id(request.headers.get("X-Request-ID")) or generate_request_id()
        bind_request(request_id, _safe_id(request.headers.get("X-Conversation-ID")))
        try:
            response = await call_next(request)
        finally:
            clear_context()

        response.headers["X-Request-ID"] = request_id
        return response
