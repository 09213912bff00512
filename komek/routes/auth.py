from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from komek.deps import Services, bearer_token, get_current_actor, get_services
from komek.identity import AuthenticatedActor

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
async def me(actor: AuthenticatedActor = Depends(get_current_actor)) -> JSONResponse:
    return JSONResponse(content={
        "id": actor.id,
        "displayName": actor.display_name,
        "specialtyCapabilities": sorted(actor.specialty_capabilities),
    })


@router.post("/logout")
async def logout(
    authorization: str | None = Header(default=None),
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Revoke the bearer token used for this request."""
    revoked = await services.token_store.revoke(bearer_token(authorization))
    return JSONResponse(content={"status": "ok", "revoked": revoked})
