# routers/auth.py — Login, registration and the current user
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService, UserRegister, UserLogin, CurrentUser, get_current_user, to_current_user
from database import get_db_session
from errors import AuthenticationError
from responses import ok

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _token_payload(user) -> dict:
    current = to_current_user(user)
    return {
        "token": AuthService.token_for(user),
        "tokenType": "bearer",
        "user": _user_out(current),
    }


def _user_out(user: CurrentUser) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role.value,
        "permissions": user.permissions,
    }


@router.post("/register", status_code=201)
async def register(data: UserRegister, db: AsyncSession = Depends(get_db_session)):
    user = await AuthService.register_user(data, db)
    return ok(_token_payload(user), "Registration successful")


@router.post("/login")
async def login(credentials: UserLogin, db: AsyncSession = Depends(get_db_session)):
    """Authenticate and receive an access token"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise AuthenticationError("Invalid credentials")
    return ok(_token_payload(user), "Login successful")


@router.get("/me")
async def me(user: CurrentUser = Depends(get_current_user)):
    return ok(_user_out(user))
