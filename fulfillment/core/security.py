from __future__ import annotations

from typing import Literal

from fastapi import Header, HTTPException
from pydantic import BaseModel

from fulfillment.core.config import get_settings
from fulfillment.core.errors import ForbiddenError


ActorType = Literal["admin", "clerk", "checker", "dispatcher", "system"]


class Actor(BaseModel):
    type: ActorType
    id: str


SYSTEM_ACTOR = Actor(type="system", id="system")


def _auth_error(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _extract_api_key(authorization: str | None, x_api_key: str | None) -> str | None:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise _auth_error("invalid authorization header")
        return token.strip()
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    return None


def _actor_from_api_key(api_key: str) -> Actor | None:
    settings = get_settings()
    key_map = {
        settings.admin_api_key: Actor(type="admin", id=settings.admin_actor_id),
        settings.clerk_api_key: Actor(type="clerk", id=settings.clerk_actor_id),
        settings.checker_api_key: Actor(type="checker", id=settings.checker_actor_id),
        settings.dispatcher_api_key: Actor(type="dispatcher", id=settings.dispatcher_actor_id),
        settings.system_api_key: Actor(type="system", id=settings.system_actor_id),
    }
    return key_map.get(api_key)


def get_actor(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> Actor:
    settings = get_settings()
    if not settings.auth_enabled:
        return Actor(type="system", id=settings.system_actor_id)

    api_key = _extract_api_key(authorization, x_api_key)
    if not api_key:
        raise _auth_error("missing api key")

    actor = _actor_from_api_key(api_key)
    if actor is None:
        raise _auth_error("invalid api key")
    return actor


def require_roles(actor: Actor, allowed: set[str], detail: str = "insufficient role") -> None:
    if actor.type not in allowed:
        raise ForbiddenError(detail, actor_type=actor.type, allowed=sorted(allowed))
