import pytest
from fastapi import HTTPException

from helpdesk.dependencies.auth import resolve_actor_from_token, role_required
from helpdesk.users import Actor, UserRole


@pytest.mark.asyncio
async def test_role_required_allows_authorized_actor():
    dependency = role_required(UserRole.AGENT, UserRole.ADMIN)
    actor = Actor("agent-1", UserRole.AGENT)
    result = await dependency(actor)  # type: ignore[arg-type]
    assert result.id == "agent-1"


@pytest.mark.asyncio
async def test_role_required_rejects_unauthorized_actor():
    dependency = role_required(UserRole.ADMIN)
    actor = Actor("user-1", UserRole.USER)
    with pytest.raises(HTTPException) as exc:
        await dependency(actor)  # type: ignore[arg-type]

    assert exc.value.status_code == 403
    assert exc.value.detail == "Access denied. Insufficient permissions."


def test_resolve_actor_from_known_token():
    actor = resolve_actor_from_token("admin-token")
    assert actor == Actor("admin-1", UserRole.ADMIN)
    assert actor.has_role(UserRole.ADMIN)
    assert not actor.has_role(UserRole.USER)


@pytest.mark.parametrize(
    "token, detail",
    [(None, "Access denied. No token provided."), ("bogus", "Invalid or expired token.")],
)
def test_resolve_actor_rejects_missing_or_unknown_token(token, detail):
    with pytest.raises(HTTPException) as exc:
        resolve_actor_from_token(token)

    assert exc.value.status_code == 401
    assert exc.value.detail == detail
