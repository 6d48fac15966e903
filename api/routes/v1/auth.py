"""
api/routes/v1/auth.py -- Registration, login and token lifecycle endpoints.

Routes:
  POST /api/v1/auth/register              -- create account; returns user + token pair
  POST /api/v1/auth/login                 -- password login; returns token pair, sets cookie
  POST /api/v1/auth/logout                -- clears cookie
  GET  /api/v1/auth/verify-email/{token}  -- redeem verification link
  POST /api/v1/auth/verify-email          -- same, token in body
  POST /api/v1/auth/forgot-password       -- request reset link (same reply for any email)
  POST /api/v1/auth/reset-password        -- redeem reset token, set new password
  POST /api/v1/auth/resend-verification   -- new verification link (requires auth)
  GET  /api/v1/auth/me                    -- current user (requires auth)

Security:
  [H2] POST /login is rate-limited per IP (Settings.login_rate_limit).
  [C1] AuthService.login() equalizes timing for unknown emails -- never inline
       a lookup + compare here.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers that hash or compare passwords are plain `def`, so FastAPI runs them
in its thread pool and bcrypt never blocks the event loop. AuthError subclasses
raised by the service are rendered by the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserView,
    VerifyEmailRequest,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.models import User
from auth.service import AuthResult, AuthService
from auth.tokens import set_auth_cookie
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - register, login, logout, verify-email, forgot-password, reset-password: public
# - resend-verification, me: requires auth (get_current_user)
router = APIRouter()


def _token_response(result: AuthResult, message: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            message=message,
            user=UserView.from_user(result.user),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=result.expires_in,
        ).model_dump(),
    )
    set_auth_cookie(resp, result.access_token, max_age=result.expires_in, secure=_settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    body: RegisterRequest,
    background_tasks: BackgroundTasks,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an unverified account and log it in immediately.

    The verification email goes out as a background task after the response
    is sent; a delivery failure is logged and does not affect the 201.
    """
    result = service.register(
        str(body.email),
        body.password,
        role=body.role.value,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        background_tasks=background_tasks,
    )
    return _token_response(
        result,
        "Registration successful. Please check your email for verification.",
        status_code=201,
    )


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Wrong password and unknown email produce the identical 401
    ("invalid_credentials") so the endpoint cannot be used to enumerate
    registered addresses.
    """
    result = service.login(str(body.email), body.password, remember_me=body.remember_me)
    return _token_response(result, "Login successful")


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the session cookie. Bearer tokens simply expire; nothing is stored server side."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/verify-email/{token}", response_model=MessageResponse)
def verify_email_link(token: str, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Redeem the link from the verification email."""
    service.verify_email(token)
    return MessageResponse(message="Email verified successfully")


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(body: VerifyEmailRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Redeem a verification token posted by a frontend that captured it from the link."""
    service.verify_email(body.token)
    return MessageResponse(message="Email verified successfully")


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    body: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Request a password reset link.

    The reply is identical whether or not the email has an account.
    """
    service.forgot_password(str(body.email), background_tasks=background_tasks)
    return MessageResponse(message="If an account exists for that email, a password reset link has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(body: ResetPasswordRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Set a new password using the token from the reset email."""
    service.reset_password(body.token, body.new_password)
    return MessageResponse(message="Password reset successful")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Send a fresh verification link. The previous link stops working."""
    service.resend_verification(current_user.id, background_tasks=background_tasks)
    return MessageResponse(message="Verification email sent")


@router.get("/auth/me", response_model=UserView)
def me(current_user: User = Depends(get_current_user)) -> UserView:
    """Return the currently authenticated user."""
    return UserView.from_user(current_user)
