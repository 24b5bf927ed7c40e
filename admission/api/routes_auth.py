from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..auth.principals import PrincipalExists
from ..errors import InvalidIdentifier
from ..facade import AdmissionRequest
from ..passwords import MAX_PASSWORD_BYTES, password_too_long, validate_password_strength
from .dependencies import bearer_scheme, enforce, get_facade, guard

router = APIRouter(prefix="/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class Credentials(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class RegisterResponse(BaseModel):
    email: str


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------

@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(
    request: Request,
    body: Credentials,
    _adm: AdmissionRequest = Depends(guard("register")),
) -> RegisterResponse:
    config = get_facade(request).config
    if password_too_long(body.password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must not exceed {MAX_PASSWORD_BYTES} bytes.",
        )
    if not validate_password_strength(body.password, config):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 8 characters with upper, lower, digit and special character.",
        )
    directory = request.app.state.principals
    try:
        principal = await run_in_threadpool(directory.add, body.email, body.password)
    except InvalidIdentifier:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email.")
    except PrincipalExists:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Account already exists.")
    return RegisterResponse(email=principal.identity)


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

@router.post("/login", response_model=TokenResponse)
async def login(request: Request, body: Credentials) -> TokenResponse:
    # Lockout is checked before the password is ever looked at
    adm = await enforce(request, "login", body.email)

    principal = request.app.state.principals.find_by_identity(body.email)
    ok = principal is not None and await run_in_threadpool(principal.check_password, body.password)

    # StoreUnavailable here is answered with 503 by the app-level handler
    await get_facade(request).record_attempt(adm, ok)

    if not ok:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid credentials.")

    issuer = request.app.state.token_issuer
    return TokenResponse(
        access_token=issuer.issue(principal.identity),
        expires_in=issuer.expire_minutes * 60,
    )


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------

@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    request: Request,
    bearer: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    adm: AdmissionRequest = Depends(guard("refresh")),
) -> TokenResponse:
    if not bearer or not bearer.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No credentials provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    issuer = request.app.state.token_issuer
    try:
        subject = issuer.decode(bearer.credentials).get("sub", "")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid or expired token.")

    await get_facade(request).record_token_refresh(
        AdmissionRequest(ip=adm.ip, user_agent=adm.user_agent, account_key=subject)
    )
    return TokenResponse(
        access_token=issuer.issue(subject),
        expires_in=issuer.expire_minutes * 60,
    )
