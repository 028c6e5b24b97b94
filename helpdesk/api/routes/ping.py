from fastapi import APIRouter

from helpdesk.dependencies.auth import CurrentActor

router = APIRouter(tags=["health"])


@router.get("/ping")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ping/secure")
async def secure_ping(actor: CurrentActor) -> dict[str, str]:
    return {"status": "ok", "user": actor.id, "role": actor.role.value}
