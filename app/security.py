from __future__ import annotations

import logging
from typing import Callable
from urllib.parse import urlsplit

from fastapi import Request

from app.actors import Actor
from app.errors import ApiError
from app.settings import get_reconciliation_allowed_hosts

ACTOR_HEADER = "X-Actor-Id"

logger = logging.getLogger("app.request")


def _client_host(request: Request) -> str | None:
    # Socket peer only; X-Forwarded-For is not consulted.
    if request.client:
        return request.client.host
    return None


def _origin_host(raw_origin: str) -> str | None:
    try:
        return urlsplit(raw_origin).hostname
    except ValueError:
        return None


def require_local_origin(request: Request) -> None:
    allowed = get_reconciliation_allowed_hosts()
    client_host = (_client_host(request) or "").lower()
    origin = request.headers.get("origin")
    origin_host = (_origin_host(origin) or "").lower() if origin else None

    if client_host in allowed and (origin_host is None or origin_host in allowed):
        return

    logger.warning(
        "local_origin_rejected",
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "path": request.url.path,
            "client_host": client_host or None,
            "origin": origin,
        },
    )
    raise ApiError(status_code=403, code="FORBIDDEN", message="Operational endpoint is restricted to local callers.")


def header_actor_id(request: Request) -> str | None:
    raw_value = (request.headers.get(ACTOR_HEADER) or "").strip()
    return raw_value[:255] or None


def request_actor(default: Actor) -> Callable[..., Actor]:
    """Dependency resolving the caller: a named operator when the header is present."""

    def _dependency(request: Request) -> Actor:
        actor_id = header_actor_id(request)
        actor = Actor.operator(actor_id) if actor_id else default
        request.state.actor = actor.kind.value.lower()
        request.state.actor_id = actor.actor_id
        return actor

    return _dependency


def require_operator(request: Request) -> Actor:
    """Dependency for human decisions: the X-Actor-Id header is mandatory."""
    actor_id = header_actor_id(request)
    if not actor_id:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message=f"{ACTOR_HEADER} header is required.")
    actor = Actor.operator(actor_id)
    request.state.actor = actor.kind.value.lower()
    request.state.actor_id = actor.actor_id
    return actor
