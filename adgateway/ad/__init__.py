"""Active Directory (LDAP) client package.

Public API:
    - DirectoryConfig, SearchRequest, SearchResult, Entry
    - DirectoryClient, dial
    - naming / sanitization helpers
"""

from .client import DirectoryClient, build_connection, dial
from .errors import (
    ConfigError,
    DirectoryConnectionError,
    DirectoryError,
    DirectoryOperationError,
    InjectionGuardError,
    MemberLookupError,
    ReferralError,
    TransientTransportError,
)
from .models import Attribute, DirectoryConfig, Entry, SearchRequest, SearchResult
from .utils import (
    calculate_user_principal_name,
    escape_ldap_filter_value,
    is_dn_sanitized,
    is_name_sanitized,
    parse_base_dn,
    parse_base_dn_from_domain,
    parse_domain_from_dn,
)

__all__ = [
    "Attribute",
    "ConfigError",
    "DirectoryClient",
    "DirectoryConfig",
    "DirectoryConnectionError",
    "DirectoryError",
    "DirectoryOperationError",
    "Entry",
    "InjectionGuardError",
    "MemberLookupError",
    "ReferralError",
    "SearchRequest",
    "SearchResult",
    "TransientTransportError",
    "build_connection",
    "calculate_user_principal_name",
    "dial",
    "escape_ldap_filter_value",
    "is_dn_sanitized",
    "is_name_sanitized",
    "parse_base_dn",
    "parse_base_dn_from_domain",
    "parse_domain_from_dn",
]
