from __future__ import annotations

from typing import Any, Optional
import re

import pytest
from ldap3 import ALL_ATTRIBUTES, LEVEL, MOCK_SYNC, Connection, Server
from ldap3.core.exceptions import LDAPSocketOpenError

from adgateway.ad import DirectoryConfig
from adgateway.ad.models import ATTR_MEMBER

PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"

_SIMPLE_FILTER = re.compile(r"^\(([^=()]+)=(.*)\)$")
_ESCAPES = {"\\5c": "\\", "\\2a": "*", "\\28": "(", "\\29": ")", "\\00": "\x00"}


def _unescape(value: str) -> str:
    for k, v in _ESCAPES.items():
        value = value.replace(k, v)
    return value


def _parent(dn: str) -> str:
    return dn.split(",", 1)[1] if "," in dn else ""


class FakeDirectory:
    """In-memory stand-in for one or more LDAP servers, keyed by address.

    Understands single-term equality / presence filters; anything else matches every
    entry under the base. Records every connection and search it sees.
    """

    def __init__(self) -> None:
        self.entries: dict[str, list[tuple[str, dict[str, list[str]]]]] = {}
        self.referrals: dict[str, list[str]] = {}
        self.passwords: dict[str, str] = {}
        self.open_errors: dict[str, Exception] = {}
        self.search_errors: list[Exception] = []
        # next errors raised by add / modify / delete, keyed by operation name
        self.write_errors: dict[str, list[Exception]] = {}
        self.filter_errors: dict[str, Exception] = {}
        self.address_errors: dict[str, Exception] = {}
        self.connections: list[FakeConnection] = []
        self.searches: list[dict[str, Any]] = []
        self.writes: list[tuple[str, str]] = []

    def add(self, address: str, dn: str, **attrs: Any) -> None:
        values = {k: v if isinstance(v, list) else [v] for k, v in attrs.items()}
        self.entries.setdefault(address, []).append((dn, values))

    def factory(self, cfg: DirectoryConfig) -> "FakeConnection":
        conn = FakeConnection(self, cfg)
        self.connections.append(conn)
        return conn

    def connections_to(self, address: str) -> list["FakeConnection"]:
        return [c for c in self.connections if c.address == address]

    def check_credentials(self, user: Optional[str], password: Optional[str]) -> bool:
        if not password:
            return True
        return self.passwords.get(user or "") == password

    def match(self, address: str, base: str, search_filter: str, scope: str) -> list[tuple[str, dict]]:
        out = []
        m = _SIMPLE_FILTER.match(search_filter)
        for dn, attrs in self.entries.get(address, []):
            if scope == LEVEL:
                if _parent(dn).lower() != base.lower():
                    continue
            elif not dn.lower().endswith(base.lower()):
                continue

            if m:
                name, value = m.group(1), _unescape(m.group(2))
                if name.lower() == "distinguishedname":
                    if value != "*" and dn.lower() != value.lower():
                        continue
                else:
                    have = {a.lower(): v for a, v in attrs.items()}.get(name.lower())
                    if not have:
                        continue
                    if value != "*" and value.lower() not in (v.lower() for v in have):
                        continue
            out.append((dn, attrs))
        return out


class FakeConnection:
    """Duck-typed ldap3.Connection backed by a FakeDirectory."""

    def __init__(self, directory: FakeDirectory, cfg: DirectoryConfig) -> None:
        self.directory = directory
        self.address = cfg.address
        self.user = cfg.user_principal_name
        self.password = cfg.bind_password
        self.result: dict[str, Any] = {}
        self.response: list[dict[str, Any]] = []
        self.opened = False
        self.bound = False
        self.unbound = False
        self.tls_started = False

    def open(self) -> None:
        err = self.directory.open_errors.get(self.address)
        if err is not None:
            raise err
        self.opened = True

    def start_tls(self) -> bool:
        self.tls_started = True
        return True

    def _bind_result(self, ok: bool) -> bool:
        if ok:
            self.result = {"result": 0, "description": "success", "message": ""}
        else:
            self.result = {"result": 49, "description": "invalidCredentials", "message": "bad password"}
        self.bound = ok
        return ok

    def bind(self) -> bool:
        return self._bind_result(self.directory.check_credentials(self.user, self.password))

    def rebind(self, user=None, password=None, authentication=None) -> bool:
        ok = self.directory.check_credentials(user, password)
        if ok:
            self.user, self.password = user, password
        return self._bind_result(ok)

    def unbind(self) -> bool:
        self.unbound = True
        self.bound = False
        return True

    def _project(self, attrs: dict[str, list[str]], requested: list[str]) -> dict[str, list[str]]:
        if ALL_ATTRIBUTES in requested:
            return {k: list(v) for k, v in attrs.items()}
        lower = {k.lower(): (k, v) for k, v in attrs.items()}
        out: dict[str, list[str]] = {}
        for r in requested:
            if r.lower().startswith(f"{ATTR_MEMBER};range=".lower()):
                if ATTR_MEMBER.lower() in lower:
                    out[r] = list(lower[ATTR_MEMBER.lower()][1])
            elif r.lower() in lower:
                name, values = lower[r.lower()]
                out[name] = list(values)
        return out

    def search(self, search_base, search_filter, search_scope=None, attributes=None,
               size_limit=0, time_limit=0, paged_size=None, paged_cookie=None, **kwargs) -> bool:
        self.directory.searches.append({
            "address": self.address,
            "base": search_base,
            "filter": search_filter,
            "scope": search_scope,
            "attributes": list(attributes or []),
            "paged_size": paged_size,
            "cookie": paged_cookie,
        })

        if self.directory.search_errors:
            raise self.directory.search_errors.pop(0)
        err = self.directory.address_errors.get(self.address)
        if err is not None:
            raise err
        for frag, err in self.directory.filter_errors.items():
            if frag in search_filter:
                raise err

        matched = self.directory.match(self.address, search_base, search_filter, search_scope)
        start = int(paged_cookie) if paged_cookie else 0
        stop = start + paged_size if paged_size else len(matched)
        page = matched[start:stop]

        self.response = [
            {"type": "searchResEntry", "dn": dn, "attributes": self._project(attrs, list(attributes or []))}
            for dn, attrs in page
        ]
        cookie = str(stop).encode("ascii") if stop < len(matched) else b""

        refs = self.directory.referrals.get(self.address, []) if not cookie else []
        for uri in refs:
            self.response.append({"type": "searchResRef", "uri": [uri]})

        self.result = {
            "result": 0,
            "description": "success",
            "message": "",
            "referrals": None,
            "controls": {PAGED_RESULTS_OID: {"value": {"size": 0, "cookie": cookie}}},
        }
        return True

    def _raise_write_error(self, operation: str) -> None:
        self.directory.writes.append((operation, self.address))
        pending = self.directory.write_errors.get(operation)
        if pending:
            raise pending.pop(0)

    def add(self, dn, object_class=None, attributes=None, controls=None) -> bool:
        self._raise_write_error("add")
        if any(d.lower() == dn.lower() for d, _ in self.directory.entries.get(self.address, [])):
            self.result = {"result": 68, "description": "entryAlreadyExists", "message": ""}
            return False
        attrs = dict(attributes or {})
        if object_class:
            attrs["objectClass"] = object_class
        self.directory.add(self.address, dn, **attrs)
        self.result = {"result": 0, "description": "success", "message": ""}
        return True

    def modify(self, dn, changes, controls=None) -> bool:
        self._raise_write_error("modify")
        self.directory.searches.append({"address": self.address, "modify": dn, "changes": changes})
        self.result = {"result": 0, "description": "success", "message": ""}
        return True

    def delete(self, dn, controls=None) -> bool:
        self._raise_write_error("delete")
        entries = self.directory.entries.get(self.address, [])
        for i, (d, _) in enumerate(entries):
            if d.lower() == dn.lower():
                del entries[i]
                self.result = {"result": 0, "description": "success", "message": ""}
                return True
        self.result = {"result": 32, "description": "noSuchObject", "message": ""}
        return False


PRIMARY = "ldap://dc1.example.com"
BASE_DN = "dc=example,dc=com"
ADMIN_DN = "cn=admin,dc=example,dc=com"
ADMIN_PASSWORD = "secret"


@pytest.fixture
def directory() -> FakeDirectory:
    d = FakeDirectory()
    d.passwords[ADMIN_DN] = ADMIN_PASSWORD
    d.add(PRIMARY, "cn=alice,ou=people,dc=example,dc=com", cn="alice", objectClass=["top", "person"])
    d.add(PRIMARY, "cn=bob,ou=people,dc=example,dc=com", cn="bob", objectClass=["top", "person"])
    return d


@pytest.fixture
def config() -> DirectoryConfig:
    return DirectoryConfig(
        address=PRIMARY,
        base_dn=BASE_DN,
        bind_username=ADMIN_DN,
        bind_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def unreachable() -> Exception:
    return LDAPSocketOpenError("unable to open socket")


# ---------------------------
# ldap3 mock server (end-to-end)
# ---------------------------

MOCK_ADDRESS = "ldap://ldap.example.com"
MOCK_BASE_DN = "dc=example,dc=com"
MOCK_READER_DN = "cn=read-only-admin,dc=example,dc=com"
MOCK_READER_PASSWORD = "password"

_SCIENTISTS = [
    ("einstein", "Albert Einstein"),
    ("newton", "Isaac Newton"),
    ("tesla", "Nikola Tesla"),
]


def _mock_add(conn: Connection, dn: str, attrs: dict[str, Any]) -> None:
    attrs = dict(attrs)
    attrs["distinguishedName"] = dn
    conn.strategy.add_entry(dn, attrs)


@pytest.fixture
def mock_server() -> Server:
    """A populated ldap3 MOCK_SYNC directory shared by every connection to this Server."""
    server = Server("my_fake_server")
    seed = Connection(server, client_strategy=MOCK_SYNC)

    _mock_add(seed, "dc=example,dc=com", {"objectClass": ["top", "domain"], "dc": "example"})
    _mock_add(seed, MOCK_READER_DN, {
        "objectClass": ["top", "person"],
        "cn": "read-only-admin",
        "userPassword": MOCK_READER_PASSWORD,
    })
    _mock_add(seed, "ou=scientists,dc=example,dc=com", {
        "objectClass": ["top", "organizationalUnit"],
        "ou": "scientists",
    })
    for uid, name in _SCIENTISTS:
        _mock_add(seed, f"cn={uid},ou=scientists,dc=example,dc=com", {
            "objectClass": ["top", "person"],
            "cn": uid,
            "displayName": name,
            "sn": name.split()[-1],
            "mail": f"{uid}@ldap.example.com",
        })
    return server


@pytest.fixture
def mock_factory(mock_server: Server):
    def factory(cfg: DirectoryConfig) -> Connection:
        if cfg.bind_password:
            return Connection(
                mock_server,
                user=cfg.user_principal_name,
                password=cfg.bind_password,
                client_strategy=MOCK_SYNC,
                auto_referrals=False,
                raise_exceptions=False,
                return_empty_attributes=False,
            )
        return Connection(
            mock_server,
            client_strategy=MOCK_SYNC,
            auto_referrals=False,
            raise_exceptions=False,
            return_empty_attributes=False,
        )

    return factory
