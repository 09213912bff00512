"""FastAPI dependency providers. Collaborators are built once in the lifespan and kept on app.state."""
from dataclasses import dataclass

from fastapi import Header, Request

from komek.engine import OrderLifecycleEngine
from komek.errors import UnauthorizedError
from komek.identity import AuthenticatedActor, TokenStore, UserDirectory
from komek.listing import OrderQueries
from komek.location import LocationTracker
from komek.store import OrderStore


@dataclass
class Services:
    engine: OrderLifecycleEngine
    locations: LocationTracker
    queries: OrderQueries
    users: UserDirectory
    token_store: TokenStore

    @classmethod
    def build(cls, store: OrderStore, users: UserDirectory, token_store: TokenStore) -> "Services":
        return cls(
            engine=OrderLifecycleEngine(store),
            locations=LocationTracker(store),
            queries=OrderQueries(store),
            users=users,
            token_store=token_store,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


def bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip() or None


async def get_current_actor(
    request: Request,
    authorization: str | None = Header(default=None),
) -> AuthenticatedActor:
    services = get_services(request)
    token = bearer_token(authorization)
    if token is None:
        raise UnauthorizedError("Authorization required")
    user_id = await services.token_store.resolve(token)
    if user_id is None:
        raise UnauthorizedError("Invalid or expired token")
    actor = await services.users.get_actor(user_id)
    if actor is None:
        raise UnauthorizedError("User no longer exists")
    return actor
