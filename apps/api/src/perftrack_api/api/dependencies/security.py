import secrets

from fastapi import Depends, Header, HTTPException, status

from perftrack_api.core.settings import Settings, get_settings


async def require_api_key(
    x_api_key: str = Header("", alias="X-API-Key"),
    config: Settings = Depends(get_settings),
) -> None:
    if not config.api_key:
        return

    if not secrets.compare_digest(x_api_key, config.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


async def caller_is_trusted(
    x_api_key: str = Header("", alias="X-API-Key"),
    config: Settings = Depends(get_settings),
) -> bool:
    """Whether visitor claims in an ingestion body come from the storefront backend."""

    if not config.api_key:
        return True
    return secrets.compare_digest(x_api_key, config.api_key)
