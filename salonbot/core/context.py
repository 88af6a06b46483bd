"""
Per-request identity for logs and error reports.

A booking lookup is made on behalf of one chat participant (e.g. a
WhatsApp number, sent as X-Conversation-ID) within one HTTP request. Both
ids live in contextvars so they follow the request through awaits, and
bind_request() also puts them into structlog's context so every log line
of the request carries them.
"""

from contextvars import ContextVar
from typing import Optional
import uuid

import structlog

__all__ = [
    "generate_request_id",
    "bind_request",
    "set_request_id",
    "get_request_id",
    "set_conversation_id",
    "get_conversation_id",
    "clear_context",
    "get_context_dict",
]

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_conversation_id: ContextVar[Optional[str]] = ContextVar("conversation_id", default=None)


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def set_conversation_id(conversation_id: str) -> None:
    _conversation_id.set(conversation_id)


def get_conversation_id() -> Optional[str]:
    return _conversation_id.get()


def bind_request(request_id: str, conversation_id: Optional[str] = None) -> None:
    """Start a request: set the ids and bind them for structlog."""
    set_request_id(request_id)
    fields = {"request_id": request_id}
    if conversation_id:
        set_conversation_id(conversation_id)
        fields["conversation_id"] = conversation_id
    structlog.contextvars.bind_contextvars(**fields)


def clear_context() -> None:
    """End of request; nothing may leak into the next one on this worker."""
    _request_id.set(None)
    _conversation_id.set(None)
    structlog.contextvars.clear_contextvars()


def get_context_dict() -> dict:
    return {
        "request_id": get_request_id(),
        "conversation_id": get_conversation_id(),
    }
