from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from helpdesk.users.models import Actor, UserAccount, UserRole

# Session issuance lives outside this service; these fixed bearer tokens stand in
# for it in development and map onto the seeded demo accounts.
DEMO_ACCOUNTS: dict[str, UserAccount] = {
    "admin-token": UserAccount(id="admin-1", name="Ada Admin", email="admin@helpdesk.local", role=UserRole.ADMIN),
    "agent-token": UserAccount(id="agent-1", name="Alex Agent", email="agent@helpdesk.local", role=UserRole.AGENT),
    "user-token": UserAccount(id="user-1", name="Uma User", email="user@helpdesk.local", role=UserRole.USER),
    "second-user-token": UserAccount(
        id="user-2", name="Omar Other", email="omar@helpdesk.local", role=UserRole.USER
    ),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_actor_from_token(token: str | None) -> Actor:
    """Return the actor associated with the provided bearer token."""

    if token is None:
        raise HTTPException(status_code=401, detail="Access denied. No token provided.")

    account = DEMO_ACCOUNTS.get(token)
    if account is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")
    return Actor(id=account.id, role=account.role)


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Actor:
    cached = getattr(request.state, "actor", None)
    if isinstance(cached, Actor):
        return cached

    token = credentials.credentials if credentials is not None else None
    actor = resolve_actor_from_token(token)
    request.state.actor = actor
    return actor


def role_required(*roles: UserRole) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current actor holds one of ``roles``."""

    async def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if not actor.has_role(*roles):
            raise HTTPException(status_code=403, detail="Access denied. Insufficient permissions.")
        return actor

    return dependency


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
