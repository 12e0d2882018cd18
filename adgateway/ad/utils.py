from __future__ import annotations

from ldap3.core.exceptions import (
    LDAPCommunicationError,
    LDAPSessionTerminatedByServerError,
    LDAPSocketCloseError,
    LDAPSocketReceiveError,
    LDAPSocketSendError,
)

# RFC 4515: characters that break out of a filter value.
_DN_BAD_CHARACTERS = "\x00()*\\"
# RFC 4514 "special characters" on top of the filter ones.
_NAME_BAD_CHARACTERS = "\x00()*\\,='\"#+;<>"

_CLOSED_ERRORS = (
    LDAPSessionTerminatedByServerError,
    LDAPSocketCloseError,
    LDAPSocketReceiveError,
    LDAPSocketSendError,
)


def escape_ldap_filter_value(value: str) -> str:
    """RFC 4515 escaping for LDAP filter values."""
    out: list[str] = []
    for ch in value:
        if ch == "\\":
            out.append("\\5c")
        elif ch == "*":
            out.append("\\2a")
        elif ch == "(":
            out.append("\\28")
        elif ch == ")":
            out.append("\\29")
        elif ch == "\x00":
            out.append("\\00")
        else:
            out.append(ch)
    return "".join(out)


def is_dn_sanitized(dn: str) -> bool:
    """True if the DN can be interpolated into a filter without injection."""
    return not any(ch in _DN_BAD_CHARACTERS for ch in dn)


def is_name_sanitized(name: str) -> bool:
    """True if a name / attribute type contains none of the DN special characters."""
    return not any(ch in _NAME_BAD_CHARACTERS for ch in name)


def parse_base_dn(dn: str) -> str:
    """Return only the `dc=` portion of a DN (e.g. cn=x,ou=y,dc=a,dc=b -> dc=a,dc=b)."""
    if len(dn) < 3:
        return dn
    if dn[:3].lower() == "dc=":
        return dn

    idx = dn.lower().find(",dc=")
    if idx == -1:
        return dn
    return dn[idx + 1:]


def parse_domain_from_dn(dn: str) -> str:
    """Domain in dot notation from a DN: cn=x,dc=example,dc=com -> example.com."""
    if len(dn) < 3:
        return dn

    base = parse_base_dn(dn).lower()
    if not base.startswith("dc="):
        return base
    return base[3:].replace(",dc=", ".")


def parse_base_dn_from_domain(domain: str) -> str:
    """Base DN from a domain or address: ldap://example.com:389 -> dc=example,dc=com."""
    if not domain:
        return domain

    idx = domain.find("://")
    if idx > -1:
        domain = domain[idx + 3:]

    domain = domain.split(":", 1)[0]
    domain = domain.split("/", 1)[0]
    return "dc=" + domain.replace(".", ",dc=")


def calculate_user_principal_name(username: str, base_dn: str) -> str:
    """user@domain for a bare username; DNs and UPNs are returned as-is."""
    if not username or not base_dn or "@" in username or "=" in username:
        return username
    return f"{username}@{parse_domain_from_dn(base_dn)}"


def format_password(password: str) -> bytes:
    """AD `unicodePwd` value: the password in double quotes, UTF-16-LE encoded."""
    return f'"{password}"'.encode("utf-16-le")


def is_connection_closed(exc: BaseException | None) -> bool:
    """Whether the error means the underlying connection was dropped."""
    if exc is None:
        return False
    if isinstance(exc, _CLOSED_ERRORS):
        return True
    if isinstance(exc, LDAPCommunicationError):
        text = str(exc).lower()
        return "closed" in text or "not open" in text
    return False
