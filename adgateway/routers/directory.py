from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from ldap3.core.exceptions import (
    LDAPAttributeError,
    LDAPException,
    LDAPInvalidDnError,
    LDAPInvalidFilterError,
    LDAPInvalidScopeError,
)

from ..ad import DirectoryClient, DirectoryError, InjectionGuardError, SearchResult
from ..deps import get_directory_client
from ..formatter import FORMATTERS, format_search_result

router = APIRouter(prefix="/v1")

# rejected locally before anything reaches the wire
_CLIENT_ERRORS = (
    InjectionGuardError,
    LDAPInvalidFilterError,
    LDAPInvalidScopeError,
    LDAPInvalidDnError,
    LDAPAttributeError,
)

_MEDIA_TYPES = {
    "json": "application/json",
    "json-pretty": "application/json",
    "yaml": "application/yaml",
    "ldif": "text/plain",
    "text": "text/plain",
}


def _split_attrs(attributes: str) -> list[str]:
    return [a.strip() for a in (attributes or "").split(",") if a.strip()]


def _render(result: SearchResult, output: str) -> Response:
    if output not in FORMATTERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"unrecognized format: {output}")
    return Response(content=format_search_result(output, result), media_type=_MEDIA_TYPES[output])


def _directory_error(e: Exception) -> HTTPException:
    if isinstance(e, _CLIENT_ERRORS):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.get("/search")
def search(
    filter: str = Query(..., min_length=1),
    attributes: str = "",
    output: str = "json",
    client: DirectoryClient = Depends(get_directory_client),
) -> Response:
    try:
        result = client.search(client.new_search_request(filter, _split_attrs(attributes)))
    except (DirectoryError, LDAPException) as e:
        raise _directory_error(e)
    return _render(result, output)


@router.get("/groups/members")
def group_members(
    dn: str = Query(..., min_length=1),
    attributes: str = "",
    output: str = "json",
    client: DirectoryClient = Depends(get_directory_client),
) -> Response:
    try:
        result = client.group_members_extended(dn, _split_attrs(attributes))
    except (DirectoryError, LDAPException) as e:
        raise _directory_error(e)
    return _render(result, output)


@router.get("/ou/members")
def ou_members(
    dn: str = "",
    attributes: str = "",
    output: str = "json",
    client: DirectoryClient = Depends(get_directory_client),
) -> Response:
    try:
        result = client.organizational_unit_members(dn, _split_attrs(attributes))
    except (DirectoryError, LDAPException) as e:
        raise _directory_error(e)
    return _render(result, output)
