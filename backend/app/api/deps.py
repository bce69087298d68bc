from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import get_db
from app.core.security import ALGORITHM
from app.core.rbac import Role
from app.models.user import User
from app.services.panel.client import PanelClient
from app.services.panel.config_resolver import PanelConfigResolver
from app.services.panel.factory import get_panel_client, panel_config_resolver

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

INVALID_TOKEN = "Invalid token"


async def get_current_principal(
    db: AsyncSession = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> tuple[User, Role]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        sub: str | None = payload.get("sub")
        token_role: str | None = payload.get("role")
        if not sub or not token_role:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_TOKEN)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_TOKEN)

    q = await db.execute(select(User).where(User.username == sub))
    user = q.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    # Role is authoritative in the database; the JWT claim is only a cache.
    try:
        db_role = Role((user.role or "user").strip().lower())
    except ValueError:
        db_role = Role.user

    # A role change in the DB invalidates tokens issued before it.
    if token_role != db_role.value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_TOKEN)

    return user, db_role


async def require_user(principal=Depends(get_current_principal)) -> User:
    user, _role = principal
    return user


async def require_admin(principal=Depends(get_current_principal)) -> User:
    user, role = principal
    if role != Role.admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return user


def get_panel() -> PanelClient:
    return get_panel_client()


def get_panel_resolver() -> PanelConfigResolver:
    return panel_config_resolver
