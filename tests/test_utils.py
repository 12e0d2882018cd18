import pytest
from ldap3.core.exceptions import (
    LDAPCommunicationError,
    LDAPInvalidFilterError,
    LDAPSessionTerminatedByServerError,
    LDAPSocketCloseError,
)

from adgateway.ad.utils import (
    calculate_user_principal_name,
    escape_ldap_filter_value,
    format_password,
    is_connection_closed,
    is_dn_sanitized,
    is_name_sanitized,
    parse_base_dn,
    parse_base_dn_from_domain,
    parse_domain_from_dn,
)


@pytest.mark.parametrize("dn", ["cn=alice,ou=people,dc=example,dc=com", "CN=Smith, John,DC=x", ""])
def test_is_dn_sanitized_accepts_plain_dns(dn):
    assert is_dn_sanitized(dn) is True


@pytest.mark.parametrize("dn", ["cn=*", "cn=a)(uid=*", "cn=a(", "cn=a\\2a", "cn=a\x00"])
def test_is_dn_sanitized_rejects_filter_metacharacters(dn):
    assert is_dn_sanitized(dn) is False


def test_is_name_sanitized():
    assert is_name_sanitized("alice") is True
    assert is_name_sanitized("sAMAccountName") is True
    for bad in ["a,b", "a=b", "a'b", 'a"b', "#a", "a+b", "a;b", "<a", "a>", "a*", "a)"]:
        assert is_name_sanitized(bad) is False, bad


def test_escape_ldap_filter_value():
    assert escape_ldap_filter_value("cn=a*b(c)\\d\x00") == "cn=a\\2ab\\28c\\29\\5cd\\00"
    assert escape_ldap_filter_value("plain") == "plain"


def test_parse_base_dn():
    assert parse_base_dn("cn=x,ou=y,dc=example,dc=com") == "dc=example,dc=com"
    assert parse_base_dn("CN=x,DC=Example,DC=com") == "DC=Example,DC=com"
    assert parse_base_dn("dc=example,dc=com") == "dc=example,dc=com"
    assert parse_base_dn("ou=nodc") == "ou=nodc"
    assert parse_base_dn("ab") == "ab"


def test_parse_domain_from_dn():
    assert parse_domain_from_dn("cn=x,dc=example,dc=com") == "example.com"
    assert parse_domain_from_dn("DC=Corp,DC=Example,DC=org") == "corp.example.org"
    assert parse_domain_from_dn("ou=nodc") == "ou=nodc"


def test_parse_base_dn_from_domain():
    assert parse_base_dn_from_domain("example.com") == "dc=example,dc=com"
    assert parse_base_dn_from_domain("ldap://ldap.example.com:389") == "dc=ldap,dc=example,dc=com"
    assert parse_base_dn_from_domain("ldaps://corp.local/") == "dc=corp,dc=local"
    assert parse_base_dn_from_domain("") == ""


def test_domain_and_base_dn_are_inverse():
    assert parse_domain_from_dn(parse_base_dn_from_domain("sub.example.com")) == "sub.example.com"


def test_calculate_user_principal_name():
    assert calculate_user_principal_name("alice", "dc=example,dc=com") == "alice@example.com"
    assert calculate_user_principal_name("alice@corp.com", "dc=example,dc=com") == "alice@corp.com"
    assert calculate_user_principal_name("cn=alice,dc=example,dc=com", "dc=example,dc=com") == (
        "cn=alice,dc=example,dc=com"
    )
    assert calculate_user_principal_name("", "dc=example,dc=com") == ""


def test_format_password():
    assert format_password("Pa55") == '"Pa55"'.encode("utf-16-le")


def test_is_connection_closed():
    assert is_connection_closed(LDAPSessionTerminatedByServerError("terminated")) is True
    assert is_connection_closed(LDAPSocketCloseError("socket closed")) is True
    assert is_connection_closed(LDAPCommunicationError("connection is not open")) is True
    assert is_connection_closed(LDAPCommunicationError("timed out")) is False
    assert is_connection_closed(LDAPInvalidFilterError("bad filter")) is False
    assert is_connection_closed(None) is False
