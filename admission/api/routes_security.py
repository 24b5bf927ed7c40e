from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from ..auth.principals import Principal
from ..errors import InvalidIdentifier
from ..facade import AdmissionRequest
from ..schemas import LockoutStatus
from .dependencies import get_facade, guard, require_principal

router = APIRouter(prefix="/security", tags=["security"])


class IPStatus(BaseModel):
    ip: str
    allowed: bool
    block: Optional[dict] = None


@router.get("/config")
async def get_security_config(
    request: Request,
    _adm: AdmissionRequest = Depends(guard("default")),
    _operator: Principal = Depends(require_principal),
) -> dict:
    """Redacted view of the active security policy."""
    return get_facade(request).config.redacted()


@router.get("/lockouts/{account_key}", response_model=LockoutStatus)
async def get_lockout_status(
    account_key: str,
    request: Request,
    _adm: AdmissionRequest = Depends(guard("default")),
    _operator: Principal = Depends(require_principal),
) -> LockoutStatus:
    try:
        return await get_facade(request).lockout.status(account_key)
    except InvalidIdentifier as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/ips/{ip}", response_model=IPStatus)
async def get_ip_status(
    ip: str,
    request: Request,
    _adm: AdmissionRequest = Depends(guard("default")),
    _operator: Principal = Depends(require_principal),
) -> IPStatus:
    facade = get_facade(request)
    try:
        allowed = await facade.is_ip_allowed(ip)
        block = await facade.ip_access.block_record(ip)
    except InvalidIdentifier as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return IPStatus(ip=ip, allowed=allowed, block=block)
