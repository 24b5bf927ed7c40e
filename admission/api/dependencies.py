from __future__ import annotations

from typing import Callable, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from ..auth.principals import Principal
from ..errors import InvalidIdentifier
from ..facade import AdmissionFacade, AdmissionRequest, EndpointPolicy
from ..schemas import Decision, DenyReason

bearer_scheme = HTTPBearer(auto_error=False)

_DENY_STATUS: Dict[DenyReason, int] = {
    DenyReason.IP_BLOCKED: status.HTTP_403_FORBIDDEN,
    DenyReason.ACCOUNT_LOCKED: status.HTTP_403_FORBIDDEN,
    DenyReason.INVALID_IDENTIFIER: status.HTTP_403_FORBIDDEN,
    DenyReason.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    DenyReason.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


# ---------------------------------------------------------------------------
# Request inspection
# ---------------------------------------------------------------------------

def client_ip(request: Request) -> str:
    """
    Resolve the caller's address. When forwarded headers are trusted:
      - first hop of X-Forwarded-For
      - X-Real-IP
    then the socket peer.
    """
    if request.app.state.settings.trust_forwarded_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    return request.client.host if request.client else "unknown"


def get_facade(request: Request) -> AdmissionFacade:
    return request.app.state.facade


def get_policy(request: Request, name: str) -> EndpointPolicy:
    policies: Dict[str, EndpointPolicy] = request.app.state.endpoint_policies
    return policies.get(name) or policies["default"]


def admission_request(request: Request, account_key: Optional[str] = None) -> AdmissionRequest:
    return AdmissionRequest(
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        account_key=account_key,
    )


# ---------------------------------------------------------------------------
# Enforcement
# ---------------------------------------------------------------------------

def raise_for_denial(decision: Decision) -> None:
    """Translate a denial into the transport response. No-op when allowed."""
    if decision.allowed:
        return
    headers = {"Retry-After": str(decision.retry_after)} if decision.retry_after else None
    raise HTTPException(
        status_code=_DENY_STATUS[decision.reason],
        detail={"reason": decision.reason.value, "detail": decision.detail},
        headers=headers,
    )


async def enforce(request: Request, policy_name: str, account_key: Optional[str] = None) -> AdmissionRequest:
    """Run the admission checks for ``policy_name``; raises HTTPException on denial."""
    adm = admission_request(request, account_key)
    decision = await get_facade(request).admit(adm, get_policy(request, policy_name))
    raise_for_denial(decision)
    return adm


def guard(policy_name: str) -> Callable:
    """FastAPI dependency for endpoints whose policy needs no account key."""

    async def _dependency(request: Request) -> AdmissionRequest:
        return await enforce(request, policy_name)

    return _dependency


# ---------------------------------------------------------------------------
# Operator authentication
# ---------------------------------------------------------------------------

def require_principal(
    request: Request,
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    """Resolve the bearer token to an active principal, or raise 401."""
    if not bearer or not bearer.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No credentials provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        subject = request.app.state.token_issuer.decode(bearer.credentials).get("sub", "")
        principal = request.app.state.principals.find_by_identity(subject)
    except (JWTError, InvalidIdentifier):
        principal = None
    if principal is None or not principal.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
