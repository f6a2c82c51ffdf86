from fastapi import Header, HTTPException, status

from rewardflow_api.core.settings import settings


async def require_internal_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Event sources authenticate with the shared internal key when one is configured."""
    if not settings.internal_api_key:
        return

    if x_api_key != settings.internal_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
