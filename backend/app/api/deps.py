from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from app.core.permissions import Actor, require_capability
from app.models import Capability
from app.services.lifecycle_service import ActionContext
from app.services.notification_dispatcher import NotificationDispatcher


def _split_csv(raw: Optional[str]) -> list[str]:
    # Allow comma/semicolon separated values.
    parts: list[str] = []
    for chunk in (raw or "").replace(";", ",").split(","):
        v = str(chunk).strip()
        if v:
            parts.append(v)
    return parts


def get_current_actor(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
    x_company_ids: Optional[str] = Header(default=None, alias="X-Company-Ids"),
) -> Actor:
    """Actor context supplied by the upstream identity layer.

    Authentication happens before this service; unknown role names are
    ignored, so an actor may end up with no roles at all.
    """

    user_id = str(x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return Actor.of(user_id, _split_csv(x_user_roles), _split_csv(x_company_ids))


_ACTOR_DEP = Depends(get_current_actor)


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


_DISPATCHER_DEP = Depends(get_dispatcher)


def get_action_context(
    request: Request,
    actor: Actor = _ACTOR_DEP,
    dispatcher: NotificationDispatcher = _DISPATCHER_DEP,
) -> ActionContext:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
    return ActionContext(actor=actor, dispatcher=dispatcher, request_id=request_id)


def require_capability_dep(capability: Capability) -> Callable:
    def dependency(actor: Actor = _ACTOR_DEP) -> Actor:
        require_capability(actor, capability)
        return actor

    return dependency
