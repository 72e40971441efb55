from fastapi import Header, HTTPException, status

from cashly_api.core.settings import settings


async def require_console_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    if not settings.console_api_key:
        return

    if x_api_key != settings.console_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
