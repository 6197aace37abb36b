"""
Authentication endpoints for API v1.

``/auth/login`` exchanges credentials for a bearer token and
``/auth/me`` returns the account behind a token.  Account creation is
an administrative task handled by ``manage.py``.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from support_desk.app.core.security import create_access_token, get_current_user
from support_desk.app.schemas.user import LoginRequest, TokenResponse, UserRead
from support_desk.app.services.account_service import AccountService

router = APIRouter()


@router.post("/login", response_model=TokenResponse)
async def login(credentials: LoginRequest) -> TokenResponse:
    """Authenticate by e-mail and password and return a token."""
    user = await AccountService.authenticate(credentials.email, credentials.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return TokenResponse(access_token=create_access_token({"sub": user.email}))


@router.get("/me", response_model=UserRead)
async def me(current_user: dict = Depends(get_current_user)) -> UserRead:
    """Return the authenticated account; the console uses it to pick its view."""
    user = await AccountService.get_user(current_user["user_id"])
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User no longer exists")
    return user
