# auth.py — Authentication for Tracklane
# Features:
# - HS256 JWT access tokens carrying the user id and role
# - bcrypt password hashes
# - Capability scopes resolved through access_policy
# - FastAPI dependencies: get_current_user, require_permission, require_tier

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import access_policy
from database import get_db_session
from errors import AuthenticationError, AuthorizationError, ConflictError
from models import User, UserRole
from responses import CamelModel

logger = logging.getLogger("tracklane.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
MIN_PASSWORD_LENGTH = 8

# auto_error=False so a missing header is a 401, not FastAPI's default 403
security = HTTPBearer(auto_error=False)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(CamelModel):
    email: EmailStr
    password: str
    first_name: str = ""
    last_name: str = ""

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class CurrentUser(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole
    permissions: List[str] = []


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def token_for(user: User) -> str:
        role = user.role.value if isinstance(user.role, UserRole) else user.role
        return AuthService.create_access_token({"sub": user.id, "email": user.email, "role": role})

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except JWTError:
            raise AuthenticationError("Invalid token")

    @staticmethod
    async def register_user(data: UserRegister, db: AsyncSession) -> User:
        """Self-registration always yields a contributor; admins promote later."""
        stmt = select(User).where(User.email == data.email)
        if (await db.execute(stmt)).scalar_one_or_none():
            raise ConflictError("User already exists")

        user = User(
            email=data.email,
            first_name=data.first_name,
            last_name=data.last_name,
            password_hash=AuthService.hash_password(data.password),
            role=UserRole.DEVELOPER,
            is_active=True,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        logger.info(f"User registered: {user.id}")
        return user

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        stmt = select(User).where(User.email == email)
        user = (await db.execute(stmt)).scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            logger.info(f"Failed login for {email}")
            return None
        if not user.is_active:
            return None
        return user


def to_current_user(user: User) -> CurrentUser:
    return CurrentUser(
        id=user.id,
        email=user.email,
        first_name=user.first_name or "",
        last_name=user.last_name or "",
        role=user.role,
        permissions=sorted(access_policy.permissions_for(user.role)),
    )


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = AuthService.verify_token(credentials.credentials)
    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token")

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")

    # Role is re-read from the store so a demotion takes effect immediately
    return to_current_user(user)


def require_permission(*scopes: str):
    """Dependency factory: require every listed capability scope"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        for scope in scopes:
            access_policy.require(user.role, scope)
        return user
    return _check


def require_tier(*tiers: access_policy.Tier):
    """Dependency factory: require the user's role to fall in one of the tiers"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if access_policy.tier_of(user.role) not in tiers:
            raise AuthorizationError("Insufficient role privileges")
        return user
    return _check
