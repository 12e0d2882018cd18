from __future__ import annotations

from typing import Any


class DirectoryError(Exception):
    """Base class for all directory client errors."""


class ConfigError(DirectoryError):
    """Directory configuration is incomplete (address / base DN)."""


class DirectoryConnectionError(DirectoryError):
    """Transport, TLS or bind failure while dialing the directory."""

    def __init__(self, message: str, result_code: int | None = None) -> None:
        super().__init__(message)
        self.result_code = result_code

    @property
    def invalid_credentials(self) -> bool:
        return self.result_code == 49


class TransientTransportError(DirectoryError):
    """The connection was closed mid-operation and could not be re-established."""


class DirectoryOperationError(DirectoryError):
    """The server answered an operation with a non-success result code."""

    def __init__(self, operation: str, result: dict[str, Any] | None = None) -> None:
        self.operation = operation
        self.result = dict(result or {})
        self.result_code = self.result.get("result")
        desc = self.result.get("description") or "unknown error"
        msg = self.result.get("message") or ""
        text = f"{operation}: {desc}"
        if msg:
            text += f" ({msg})"
        super().__init__(text)


class ReferralError(DirectoryError):
    """A referral could not be parsed, dialed or searched. Logged, never raised to callers."""

    def __init__(self, referral: str, reason: Any) -> None:
        super().__init__(f"{referral}: {reason}")
        self.referral = referral


class MemberLookupError(DirectoryError):
    """Per-member lookup failed during extended group resolution. Logged, never raised."""

    def __init__(self, member_dn: str, reason: Any) -> None:
        super().__init__(f"{member_dn}: {reason}")
        self.member_dn = member_dn


class InjectionGuardError(DirectoryError, ValueError):
    """Caller-supplied filter fragment contains forbidden characters."""
