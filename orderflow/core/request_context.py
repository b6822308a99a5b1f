from __future__ import annotations

from contextvars import ContextVar


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_TENANT_ID_CTX: ContextVar[str | None] = ContextVar("tenant_id", default=None)
_CONVERSATION_ID_CTX: ContextVar[str | None] = ContextVar("conversation_id", default=None)


def set_request_context(
    *,
    request_id: str | None = None,
    tenant_id: str | None = None,
    conversation_id: str | None = None,
) -> None:
    if request_id is not None:
        _REQUEST_ID_CTX.set(request_id)
    if tenant_id is not None:
        _TENANT_ID_CTX.set(str(tenant_id))
    if conversation_id is not None:
        _CONVERSATION_ID_CTX.set(str(conversation_id))


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_tenant_id() -> str | None:
    return _TENANT_ID_CTX.get()


def get_conversation_id() -> str | None:
    return _CONVERSATION_ID_CTX.get()


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    _TENANT_ID_CTX.set(None)
    _CONVERSATION_ID_CTX.set(None)
