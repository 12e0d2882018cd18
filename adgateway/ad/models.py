from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List

from ldap3 import SUBTREE

from .errors import ConfigError
from .utils import calculate_user_principal_name

ATTR_COMMON_NAME = "cn"
ATTR_DEPARTMENT = "department"
ATTR_DESCRIPTION = "description"
ATTR_DISPLAY_NAME = "displayName"
ATTR_DISTINGUISHED_NAME = "distinguishedName"
ATTR_MAIL = "mail"
ATTR_MEMBER = "member"
ATTR_MEMBER_OF = "memberOf"
ATTR_OBJECT_CLASS = "objectClass"
ATTR_SAM_ACCOUNT_NAME = "sAMAccountName"
ATTR_UNICODE_PASSWORD = "unicodePwd"
ATTR_USER_PRINCIPAL_NAME = "userPrincipalName"

OBJECT_CLASS_GROUP = "group"
OBJECT_CLASS_PERSON = "person"

DEFAULT_PAGE_SIZE = 1000
MIN_PAGE_SIZE = 100
MAX_PAGE_SIZE = 10000


def _page_size(value) -> int:
    try:
        v = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PAGE_SIZE
    return min(max(v, MIN_PAGE_SIZE), MAX_PAGE_SIZE)


@dataclass
class DirectoryConfig:
    address: str  # ldap://host:389 or ldaps://host:636
    base_dn: str
    bind_username: str = ""  # DN, UPN or bare username
    bind_password: str = ""
    start_tls: bool = False
    skip_verify: bool = False
    page_size: int = DEFAULT_PAGE_SIZE
    default_time_limit: int = 0  # seconds, 0 = no limit
    follow_referrals: bool = True
    user_principal_name: str = field(default="", init=False, repr=False)

    def validate(self) -> None:
        """Check required fields, clamp page size and compute the bind identity."""
        self.address = (self.address or "").strip()
        self.base_dn = (self.base_dn or "").strip()
        if not self.address:
            raise ConfigError("address is a required field")
        if not self.base_dn:
            raise ConfigError("base DN is a required field")

        self.page_size = _page_size(self.page_size)
        self.user_principal_name = calculate_user_principal_name(self.bind_username, self.base_dn)


@dataclass
class SearchRequest:
    base_dn: str
    filter: str
    attributes: List[str] = field(default_factory=list)
    scope: str = SUBTREE
    time_limit: int = 0
    size_limit: int = 0


@dataclass
class Attribute:
    name: str
    values: List[str] = field(default_factory=list)


@dataclass
class Entry:
    dn: str
    attributes: List[Attribute] = field(default_factory=list)

    def get_attribute_values(self, name: str) -> list[str]:
        n = name.lower()
        for a in self.attributes:
            if a.name.lower() == n:
                return list(a.values)
        return []

    def get_attribute_value(self, name: str) -> str:
        vals = self.get_attribute_values(name)
        return vals[0] if vals else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "distinguishedName": self.dn,
            "attributes": [{"name": a.name, "values": list(a.values)} for a in self.attributes],
        }


@dataclass
class SearchResult:
    entries: List[Entry] = field(default_factory=list)
    referrals: List[str] = field(default_factory=list)

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.entries]
