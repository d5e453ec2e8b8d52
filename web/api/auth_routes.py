"""Auth API routes: dashboard login, current identity, dashboard staff accounts."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select

import config
from robomania.errors import NotFound, ValidationError
from robomania.models import User
from robomania.models.base import async_session_factory
from web.auth import (
    PARTICIPANT_ROLE,
    create_access_token,
    get_current_email,
    get_current_user,
    get_user_by_username,
    hash_password,
    require_admin_user,
    require_user,
    verify_password,
)

logger = logging.getLogger("robomania.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])

# Dashboard roles. Participants never get a dashboard account.
STAFF_ROLES = ("moderator", "admin")


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    username: str
    role: str


class StaffResponse(BaseModel):
    username: str
    role: str


class StaffCreate(BaseModel):
    username: str
    password: str
    role: str = "moderator"


class StaffUpdate(BaseModel):
    password: Optional[str] = None
    role: Optional[str] = None


def _check_role(role: str) -> str:
    role = (role or "").strip().lower()
    if role not in STAFF_ROLES:
        raise ValidationError(f"Invalid role: {role or 'none'} (expected one of {', '.join(STAFF_ROLES)})")
    return role


async def _bootstrap_admin() -> User:
    async with async_session_factory() as session:
        user = User(
            username=config.INITIAL_ADMIN_USERNAME,
            password_hash=hash_password(config.INITIAL_ADMIN_PASSWORD),
            role="admin",
        )
        session.add(user)
        await session.commit()
    logger.info("Bootstrapped admin user %s", user.username)
    return user


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest):
    """Dashboard sign-in. The first admin is created on first login with INITIAL_ADMIN_PASSWORD."""
    user = await get_user_by_username(body.username)
    if not user and (
        config.INITIAL_ADMIN_PASSWORD
        and body.username == config.INITIAL_ADMIN_USERNAME
        and body.password == config.INITIAL_ADMIN_PASSWORD
    ):
        user = await _bootstrap_admin()
    elif not user or not verify_password(body.password, user.password_hash):
        logger.warning("Failed dashboard login for %s", body.username)
        raise HTTPException(status_code=401, detail="Invalid username or password")
    token = create_access_token(user.username, user.role)
    return LoginResponse(access_token=token, username=user.username, role=user.role)


@router.get("/me", response_model=StaffResponse)
async def get_me(user: User = Depends(require_user)):
    """Current dashboard user."""
    return StaffResponse(username=user.username, role=user.role)


@router.get("/me/optional")
async def get_me_optional(
    user: Optional[User] = Depends(get_current_user),
    email: Optional[str] = Depends(get_current_email),
):
    """Dashboard user or signed-in participant, else null. Lets the frontend pick which UI to show."""
    if user:
        return {"username": user.username, "role": user.role}
    if email:
        return {"email": email, "role": PARTICIPANT_ROLE}
    return None


@router.get("/users", response_model=list[StaffResponse])
async def list_staff(admin: User = Depends(require_admin_user)):
    async with async_session_factory() as session:
        result = await session.execute(select(User).order_by(User.username))
        return [StaffResponse(username=u.username, role=u.role) for u in result.scalars().all()]


@router.post("/users", response_model=StaffResponse)
async def create_staff(body: StaffCreate, admin: User = Depends(require_admin_user)):
    """Add a moderator or admin account."""
    role = _check_role(body.role)
    username = body.username.strip()
    if not username or not body.password:
        raise ValidationError("Username and password are required")
    async with async_session_factory() as session:
        existing = await session.execute(select(User).where(User.username == username))
        if existing.scalar_one_or_none():
            raise ValidationError("Username already exists")
        user = User(username=username, password_hash=hash_password(body.password), role=role)
        session.add(user)
        await session.commit()
    logger.info("%s created %s account %s", admin.username, role, username)
    return StaffResponse(username=user.username, role=user.role)


@router.patch("/users/{username}", response_model=StaffResponse)
async def update_staff(username: str, body: StaffUpdate, admin: User = Depends(require_admin_user)):
    """Reset a password or change a role."""
    role = _check_role(body.role) if body.role is not None else None
    async with async_session_factory() as session:
        result = await session.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        if not user:
            raise NotFound("User not found")
        if body.password:
            user.password_hash = hash_password(body.password)
        if role:
            user.role = role
        await session.commit()
    logger.info("%s updated account %s", admin.username, username)
    return StaffResponse(username=user.username, role=user.role)


@router.delete("/users/{username}")
async def delete_staff(username: str, admin: User = Depends(require_admin_user)):
    if username == admin.username:
        raise ValidationError("Cannot delete your own account")
    async with async_session_factory() as session:
        result = await session.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        if not user:
            raise NotFound("User not found")
        await session.delete(user)
        await session.commit()
    logger.info("%s deleted account %s", admin.username, username)
    return {"success": True}
