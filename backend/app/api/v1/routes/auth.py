from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from app.core.db import get_db
from app.core.security import verify_password, create_access_token, hash_password
from app.schemas.auth import LoginRequest, RegisterRequest, TokenResponse, ChangePasswordRequest, MeOut
from app.models.user import User
from app.api.deps import get_current_principal

router = APIRouter()


@router.post("/register", response_model=TokenResponse)
async def register(payload: RegisterRequest, db: AsyncSession = Depends(get_db)):
    username = payload.username.strip()
    email = payload.email.strip().lower()
    q = await db.execute(select(User).where(or_(User.username == username, User.email == email)))
    if q.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username or email already exists")

    user = User(username=username, email=email, password_hash=hash_password(payload.password), role="user")
    db.add(user)
    await db.commit()
    return TokenResponse(access_token=create_access_token(subject=user.username, role=user.role))


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest, db: AsyncSession = Depends(get_db)):
    q = await db.execute(select(User).where(User.username == payload.username))
    user = q.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")

    # Role comes from the database, never from the request.
    role = (user.role or "user").strip().lower()
    token = create_access_token(subject=user.username, role=role)
    return TokenResponse(access_token=token)


@router.get("/me", response_model=MeOut)
async def me(principal=Depends(get_current_principal)):
    user, role = principal
    return MeOut(
        id=user.id,
        username=user.username,
        email=user.email,
        role=role.value,
        coins=user.coins,
        server_slots=user.server_slots,
        panel_linked=bool(user.panel_user_id),
    )


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    principal=Depends(get_current_principal),
):
    user, _role = principal

    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    new_password = (payload.new_password or "").strip()
    if verify_password(new_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="New password must differ from the current one")

    user.password_hash = hash_password(new_password)
    await db.commit()
    return {"ok": True}
