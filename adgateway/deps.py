from __future__ import annotations

from typing import Any, Iterator
import logging

from fastapi import Depends, HTTPException, Request, status

from .ad import (
    ConfigError,
    DirectoryClient,
    DirectoryConfig,
    DirectoryConnectionError,
    dial,
)
from .ad.client import ConnectionFactory
from .authtoken import TokenError, validate_token
from .settings import GatewaySettings, SettingsError, SettingsStore

logger = logging.getLogger(__name__)

TOKEN_ISSUER = "adgateway"
LDAP_ADDRESS_HEADER = "X-Ldap-Address"

CLAIM_BIND_USERNAME = "bun"
CLAIM_BIND_PASSWORD = "bpw"
CLAIM_START_TLS = "stls"
CLAIM_SKIP_VERIFY = "skvy"
CLAIM_BASE_DN = "bdn"
CLAIM_PAGE_SIZE = "psz"
CLAIM_FOLLOW_REFERRALS = "fref"


def get_settings(request: Request) -> GatewaySettings:
    store: SettingsStore = request.app.state.settings_store
    store.check_for_changes()
    try:
        return store.load()
    except SettingsError as e:
        logger.error("could not get settings: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="configuration error, please see server logs for more information",
        )


def get_connection_factory(request: Request) -> ConnectionFactory | None:
    return getattr(request.app.state, "connection_factory", None)


def dial_or_raise(cfg: DirectoryConfig, factory: ConnectionFactory | None) -> DirectoryClient:
    """Dial the directory, translating failures to HTTP errors."""
    try:
        return dial(cfg, factory)
    except ConfigError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DirectoryConnectionError as e:
        code = status.HTTP_401_UNAUTHORIZED if e.invalid_credentials else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=str(e))


def config_from_claims(address: str, claims: dict[str, Any]) -> DirectoryConfig:
    base_dn = claims.get(CLAIM_BASE_DN)
    if not isinstance(base_dn, str) or not base_dn:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"token does not contain `{CLAIM_BASE_DN}` claim",
        )

    cfg = DirectoryConfig(address=address, base_dn=base_dn)
    cfg.bind_username = str(claims.get(CLAIM_BIND_USERNAME) or "")
    pw = claims.get(CLAIM_BIND_PASSWORD) or ""
    cfg.bind_password = pw if isinstance(pw, str) else pw.decode("utf-8", errors="replace")
    if CLAIM_FOLLOW_REFERRALS in claims:
        cfg.follow_referrals = bool(claims[CLAIM_FOLLOW_REFERRALS])
    if CLAIM_START_TLS in claims:
        cfg.start_tls = bool(claims[CLAIM_START_TLS])
    if CLAIM_SKIP_VERIFY in claims:
        cfg.skip_verify = bool(claims[CLAIM_SKIP_VERIFY])
    if CLAIM_PAGE_SIZE in claims:
        cfg.page_size = claims[CLAIM_PAGE_SIZE]
    return cfg


def get_directory_client(
    request: Request,
    settings: GatewaySettings = Depends(get_settings),
    factory: ConnectionFactory | None = Depends(get_connection_factory),
) -> Iterator[DirectoryClient]:
    """Dial a fresh client from the bearer token; closed when the request is done."""
    auth = request.headers.get("Authorization", "")
    if not auth:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization header required")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="unknown Authorization method")

    address = request.headers.get(LDAP_ADDRESS_HEADER, "").strip()
    if not address:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"{LDAP_ADDRESS_HEADER} header required"
        )

    token = auth[len("Bearer "):].strip()
    try:
        claims = validate_token(settings.secret_key, TOKEN_ISSUER, address, token)
    except TokenError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    client = dial_or_raise(config_from_claims(address, claims), factory)
    try:
        yield client
    finally:
        client.close()
