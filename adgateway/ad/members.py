"""Group and organizational-unit membership queries.

Mixed into `DirectoryClient`; relies on its `new_search_request()` / `search()`.
"""
from __future__ import annotations

import logging

from ldap3 import LEVEL
from ldap3.core.exceptions import LDAPException

from .errors import DirectoryError, InjectionGuardError, MemberLookupError
from .models import (
    ATTR_DISTINGUISHED_NAME,
    ATTR_MEMBER,
    ATTR_MEMBER_OF,
    ATTR_OBJECT_CLASS,
    Entry,
    SearchResult,
)
from .utils import escape_ldap_filter_value, is_dn_sanitized

logger = logging.getLogger(__name__)

# Asks AD for the whole multi-valued attribute instead of the first 1500 values.
MEMBER_RANGE = f"{ATTR_MEMBER};range=0-*"


def _ranged_member_values(entry: Entry) -> list[str]:
    """Values of member;range=... (AD may answer with a narrower range than requested)."""
    vals = entry.get_attribute_values(MEMBER_RANGE)
    if vals:
        return vals
    prefix = f"{ATTR_MEMBER};range=".lower()
    for a in entry.attributes:
        if a.name.lower().startswith(prefix):
            return list(a.values)
    return entry.get_attribute_values(ATTR_MEMBER)


class GroupMembershipMixin:
    def group_members(self, group_dn: str, attributes: list[str] | None = None) -> SearchResult:
        """Direct members of a group via (memberOf=<group>). Nested groups are not expanded.

        Without attributes only objectClass is returned for each member.
        """
        if not is_dn_sanitized(group_dn):
            raise InjectionGuardError(f"group DN contains invalid characters: {group_dn}")

        attrs = list(attributes or []) or [ATTR_OBJECT_CLASS]
        req = self.new_search_request(f"({ATTR_MEMBER_OF}={group_dn})", attrs)
        return self.search(req)

    def group_members_extended(self, group_dn: str, attributes: list[str] | None = None) -> SearchResult:
        """`group_members` plus members only listed in the group's own `member` attribute.

        Members from other domains have no memberOf back-link in this domain, so they are
        looked up one by one. A failed lookup still yields the member as a DN-only entry.
        """
        attrs = list(attributes or []) or [ATTR_OBJECT_CLASS]
        resp = self.group_members(group_dn, attrs)

        index = {e.dn.lower() for e in resp.entries}

        req = self.new_search_request(f"({ATTR_DISTINGUISHED_NAME}={group_dn})", [MEMBER_RANGE])
        group_resp = self.search(req)
        if len(group_resp.entries) != 1:
            return resp

        for dn in _ranged_member_values(group_resp.entries[0]):
            key = dn.lower()
            if key in index:
                continue
            index.add(key)

            member_req = self.new_search_request(
                f"({ATTR_DISTINGUISHED_NAME}={escape_ldap_filter_value(dn)})", attrs
            )
            try:
                member_resp = self.search(member_req)
            except (DirectoryError, LDAPException) as e:
                logger.warning("could not get member attributes: %s", MemberLookupError(dn, e))
                resp.entries.append(Entry(dn=dn, attributes=[]))
                continue

            if member_resp.entries:
                resp.entries.append(member_resp.entries[0])

        return resp

    def organizational_unit_members(self, base_dn: str = "", attributes: list[str] | None = None) -> SearchResult:
        """One-level listing of an OU (defaults to the configured base DN)."""
        req = self.new_search_request("(objectClass=*)", list(attributes or []))
        req.scope = LEVEL
        if base_dn:
            req.base_dn = base_dn
        return self.search(req)
