"""Dependencies для аутентификации."""
import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from storefront.core.security import decode_access_token

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Проверка токена покупателя.

    Возвращает payload токена; `sub` содержит ID пользователя.
    """
    token = credentials.credentials
    payload = decode_access_token(token)

    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Неверный или истекший токен",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


async def get_current_user_id(user: dict = Depends(get_current_user)) -> uuid.UUID:
    """ID текущего пользователя из токена."""
    try:
        return uuid.UUID(str(user["sub"]))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Неверный идентификатор пользователя в токене",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_admin(user: dict = Depends(get_current_user)) -> dict:
    """
    Проверка токена администратора.

    Используется для эндпоинтов админ-панели (ручная сверка платежей, статусы заказов).
    """
    if user.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Недостаточно прав доступа",
        )

    return user
