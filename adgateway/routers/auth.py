from __future__ import annotations

from typing import Any, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..ad import DirectoryClient, DirectoryConfig
from ..ad.client import ConnectionFactory
from ..authtoken import TokenError, sign_token
from ..deps import (
    CLAIM_BASE_DN,
    CLAIM_BIND_PASSWORD,
    CLAIM_BIND_USERNAME,
    CLAIM_FOLLOW_REFERRALS,
    CLAIM_PAGE_SIZE,
    CLAIM_SKIP_VERIFY,
    CLAIM_START_TLS,
    TOKEN_ISSUER,
    dial_or_raise,
    get_connection_factory,
    get_directory_client,
    get_settings,
)
from ..settings import GatewaySettings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth")


class AuthTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str = ""
    base_dn: str = Field("", alias="baseDN")
    username: str = ""
    password: str = ""
    start_tls: Optional[bool] = Field(None, alias="startTLS")
    skip_verify: Optional[bool] = Field(None, alias="skipVerify")
    page_size: Optional[int] = Field(None, alias="pageSize")
    follow_referrals: Optional[bool] = Field(None, alias="followReferrals")


@router.post("/token")
def issue_token(
    req: AuthTokenRequest,
    settings: GatewaySettings = Depends(get_settings),
    factory: ConnectionFactory | None = Depends(get_connection_factory),
) -> dict[str, str]:
    """Prove the credentials with a bind, then hand them back inside a signed token."""
    if not req.address.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="address is a required field")
    if not req.base_dn.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="baseDN is a required field")

    plain_claims: dict[str, Any] = {
        CLAIM_BASE_DN: req.base_dn,
        CLAIM_BIND_USERNAME: req.username,
    }
    cfg = DirectoryConfig(
        address=req.address,
        base_dn=req.base_dn,
        bind_username=req.username,
        bind_password=req.password,
    )

    if req.follow_referrals is not None:
        plain_claims[CLAIM_FOLLOW_REFERRALS] = req.follow_referrals
        cfg.follow_referrals = req.follow_referrals
    if req.page_size is not None and req.page_size > 0:
        plain_claims[CLAIM_PAGE_SIZE] = req.page_size
        cfg.page_size = req.page_size
    if req.skip_verify is not None:
        plain_claims[CLAIM_SKIP_VERIFY] = req.skip_verify
        cfg.skip_verify = req.skip_verify
    if req.start_tls is not None:
        plain_claims[CLAIM_START_TLS] = req.start_tls
        cfg.start_tls = req.start_tls

    client = dial_or_raise(cfg, factory)
    client.close()

    try:
        token = sign_token(
            settings.secret_key,
            TOKEN_ISSUER,
            req.address,
            plain_claims,
            {CLAIM_BIND_PASSWORD: req.password},
            expires_in=settings.token_ttl_seconds,
        )
    except TokenError as e:
        logger.error("could not sign token: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"could not sign token: {e}")

    logger.info("token issued for %s at %s", req.username or "<anonymous>", req.address)
    return {"token": token}


@router.get("/token")
def check_token(client: DirectoryClient = Depends(get_directory_client)) -> dict[str, str]:
    return {"result": "OK"}
