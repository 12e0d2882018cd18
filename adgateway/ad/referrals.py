from __future__ import annotations

from urllib.parse import unquote, urlsplit

from .errors import ReferralError
from .models import DirectoryConfig


def referral_config(parent: DirectoryConfig, referral: str) -> DirectoryConfig:
    """Build the config for a referral target.

    ldap://dc2.child.example.com/DC=child,DC=example,DC=com -> address ldap://dc2.child.example.com,
    base DN DC=child,DC=example,DC=com. Credentials, TLS mode, page size and time limit are
    inherited; referral following is always off for the child (one hop only).
    """
    try:
        u = urlsplit(referral)
    except ValueError as e:
        raise ReferralError(referral, f"cannot parse referral: {e}") from e

    if not u.scheme or not u.netloc:
        raise ReferralError(referral, "cannot parse referral: scheme and host are required")

    return DirectoryConfig(
        address=f"{u.scheme}://{u.netloc}",
        base_dn=unquote(u.path).strip("/"),
        bind_username=parent.bind_username,
        bind_password=parent.bind_password,
        start_tls=parent.start_tls,
        skip_verify=parent.skip_verify,
        page_size=parent.page_size,
        default_time_limit=parent.default_time_limit,
        follow_referrals=False,
    )
