"""Stateless HTTP gateway to LDAP / Active Directory."""

__version__ = "0.3.0"
