"""Database operations for OAuth2 client lookup and registration."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from osa.crypto.client_secrets import generate_client_secret, hash_secret
from osa.db.models_clients import OAuthClientEntity


async def get_active_client(
    session: AsyncSession, client_id: str
) -> OAuthClientEntity | None:
    """Return the client if it exists and is active."""
    stmt = select(OAuthClientEntity).where(
        OAuthClientEntity.client_id == client_id,
        OAuthClientEntity.is_active.is_(True),
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def client_exists(session: AsyncSession, client_id: str) -> bool:
    """Check for a client with this id, active or not."""
    entity = await session.get(OAuthClientEntity, client_id)
    return entity is not None


async def create_client(
    session: AsyncSession, *, client_id: str, name: str, scopes: str
) -> tuple[OAuthClientEntity, str]:
    """Register a client; returns the entity and its one-time plaintext secret."""
    secret = generate_client_secret()
    entity = OAuthClientEntity(
        client_id=client_id,
        client_secret_hash=hash_secret(secret),
        name=name,
        scopes=scopes,
        is_active=True,
    )
    session.add(entity)
    await session.flush()
    return entity, secret
