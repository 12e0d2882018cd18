from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional
import logging
import ssl

from ldap3 import (
    ALL_ATTRIBUTES,
    ANONYMOUS,
    MODIFY_REPLACE,
    NONE,
    SIMPLE,
    Connection,
    Server,
    Tls,
)
from ldap3.core.exceptions import LDAPBindError, LDAPException

from .errors import (
    ConfigError,
    DirectoryConnectionError,
    DirectoryError,
    DirectoryOperationError,
    ReferralError,
    TransientTransportError,
)
from .members import GroupMembershipMixin
from .models import (
    ATTR_UNICODE_PASSWORD,
    Attribute,
    DirectoryConfig,
    Entry,
    SearchRequest,
    SearchResult,
)
from .referrals import referral_config
from .utils import calculate_user_principal_name, format_password, is_connection_closed

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[DirectoryConfig], Connection]

_PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"
_RESULT_SUCCESS = 0
_RESULT_REFERRAL = 10


def build_connection(cfg: DirectoryConfig) -> Connection:
    """Unopened ldap3 connection for the config (the default connection factory)."""
    tls = Tls(validate=ssl.CERT_NONE if cfg.skip_verify else ssl.CERT_REQUIRED)
    server = Server(cfg.address, get_info=NONE, tls=tls)

    if cfg.bind_password:
        return Connection(
            server,
            user=cfg.user_principal_name,
            password=cfg.bind_password,
            authentication=SIMPLE,
            auto_bind=False,
            auto_referrals=False,
            raise_exceptions=False,
            return_empty_attributes=False,
        )
    return Connection(
        server,
        authentication=ANONYMOUS,
        auto_bind=False,
        auto_referrals=False,
        raise_exceptions=False,
        return_empty_attributes=False,
    )


def _describe(result: Any) -> str:
    res = dict(result or {})
    desc = str(res.get("description") or "unknown error")
    msg = str(res.get("message") or "")
    return f"{desc} ({msg})" if msg else desc


def _safe_unbind(conn: Optional[Connection]) -> None:
    if conn is None:
        return
    try:
        conn.unbind()
    except LDAPException as e:
        logger.debug("unbind failed: %s", e)


def _normalize_values(value: Any) -> list[str]:
    vals = value if isinstance(value, (list, tuple)) else [value]
    out: list[str] = []
    for it in vals:
        if it is None:
            continue
        if isinstance(it, (bytes, bytearray)):
            it = bytes(it).decode("utf-8", errors="replace")
        elif isinstance(it, datetime):
            if it.tzinfo is None:
                it = it.replace(tzinfo=timezone.utc)
            it = it.astimezone(timezone.utc).isoformat(timespec="seconds")
        else:
            it = str(it)
        if it == "":
            continue
        out.append(it)
    return out


def _to_entry(item: dict) -> Entry:
    attrs: list[Attribute] = []
    for name, value in (item.get("attributes") or {}).items():
        vals = _normalize_values(value)
        if vals:
            attrs.append(Attribute(name=str(name), values=vals))
    return Entry(dn=str(item.get("dn") or ""), attributes=attrs)


class DirectoryClient(GroupMembershipMixin):
    """One live connection to a directory plus cached referral sub-clients.

    Not thread-safe: a client belongs to a single request / execution context.
    Every wire operation reconnects and retries exactly once when the
    connection turns out to be closed.
    """

    def __init__(self, cfg: DirectoryConfig, connection_factory: ConnectionFactory | None = None) -> None:
        self.cfg = cfg
        self._connection_factory = connection_factory or build_connection
        self._conn: Optional[Connection] = None
        self._referrals: dict[str, DirectoryClient] = {}

    def __enter__(self) -> "DirectoryClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def referral_clients(self) -> dict[str, "DirectoryClient"]:
        return dict(self._referrals)

    # ---------------------------
    # connection lifecycle
    # ---------------------------

    def _open_connection(self) -> Connection:
        cfg = self.cfg
        step = "connecting to LDAP"
        conn: Optional[Connection] = None
        try:
            conn = self._connection_factory(cfg)
            conn.open()

            if cfg.start_tls:
                step = "starting TLS"
                if not conn.start_tls():
                    raise DirectoryConnectionError(f"{step}: {_describe(conn.result)}")

            step = "binding to LDAP" if cfg.bind_password else "unauthenticated bind to LDAP"
            if not conn.bind():
                res = dict(conn.result or {})
                raise DirectoryConnectionError(f"{step}: {_describe(res)}", res.get("result"))
        except LDAPException as e:
            _safe_unbind(conn)
            raise DirectoryConnectionError(f"{step}: {e}") from e
        except DirectoryConnectionError:
            _safe_unbind(conn)
            raise
        return conn

    def reconnect(self) -> None:
        """Replay the full dial sequence and swap in the new connection."""
        conn = self._open_connection()
        old, self._conn = self._conn, conn
        _safe_unbind(old)

    def close(self) -> None:
        """Close the connection and every referral sub-client."""
        conn, self._conn = self._conn, None
        _safe_unbind(conn)

        for sub in self._referrals.values():
            sub.close()
        self._referrals = {}

    def _connection(self) -> Connection:
        if self._conn is None:
            raise DirectoryConnectionError("client is closed")
        return self._conn

    def _with_retry(self, operation: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except LDAPException as e:
            if not is_connection_closed(e):
                raise
            logger.info("LDAP connection closed during %s (%s), reconnecting to %s", operation, e, self.cfg.address)

        try:
            self.reconnect()
        except DirectoryError as e:
            raise TransientTransportError(f"while attempting to reconnect: {e}") from e
        return fn()

    def bind(self, username: str, password: str) -> None:
        """Re-authenticate the live connection as another identity.

        Referral sub-clients dialed with the previous credentials are dropped.
        """
        upn = calculate_user_principal_name(username, self.cfg.base_dn)
        if password and not upn:
            raise DirectoryConnectionError("cannot bind without a username")

        def op() -> None:
            conn = self._connection()
            step = "binding to LDAP" if password else "unauthenticated bind to LDAP"
            try:
                if password:
                    ok = conn.rebind(user=upn, password=password, authentication=SIMPLE)
                else:
                    ok = conn.rebind(authentication=ANONYMOUS)
            except LDAPBindError as e:
                raise DirectoryConnectionError(f"{step}: {e}") from e
            if not ok:
                res = dict(conn.result or {})
                raise DirectoryConnectionError(f"{step}: {_describe(res)}", res.get("result"))

        self._with_retry("bind", op)

        self.cfg.bind_username = username
        self.cfg.bind_password = password
        self.cfg.user_principal_name = upn

        for sub in self._referrals.values():
            sub.close()
        self._referrals = {}

    # ---------------------------
    # search
    # ---------------------------

    def new_search_request(self, search_filter: str, attributes: list[str] | None = None) -> SearchRequest:
        """Whole-subtree request rooted at the configured base DN."""
        return SearchRequest(
            base_dn=self.cfg.base_dn,
            filter=search_filter,
            attributes=list(attributes or []),
            time_limit=self.cfg.default_time_limit,
        )

    def _search_pages(self, req: SearchRequest) -> SearchResult:
        conn = self._connection()
        result = SearchResult()
        attrs = list(req.attributes) or [ALL_ATTRIBUTES]
        cookie = None

        while True:
            conn.search(
                search_base=req.base_dn,
                search_filter=req.filter,
                search_scope=req.scope,
                attributes=attrs,
                size_limit=req.size_limit,
                time_limit=req.time_limit,
                paged_size=self.cfg.page_size,
                paged_cookie=cookie,
            )
            res = dict(conn.result or {})

            for item in conn.response or []:
                kind = item.get("type")
                if kind == "searchResEntry":
                    result.entries.append(_to_entry(item))
                elif kind == "searchResRef":
                    result.referrals.extend(str(u) for u in (item.get("uri") or []))
            for ref in res.get("referrals") or []:
                if ref not in result.referrals:
                    result.referrals.append(str(ref))

            if res.get("result") not in (_RESULT_SUCCESS, _RESULT_REFERRAL):
                raise DirectoryOperationError("search", res)

            cookie = (((res.get("controls") or {}).get(_PAGED_RESULTS_OID) or {}).get("value") or {}).get("cookie")
            if not cookie:
                break

        return result

    def search(self, req: SearchRequest) -> SearchResult:
        """Paged search; referrals are followed one hop when enabled."""
        result: SearchResult = self._with_retry("search", lambda: self._search_pages(req))

        if self.cfg.follow_referrals and result.referrals:
            self._configure_referrals(result.referrals)
            for ref in result.referrals:
                sub = self._referrals.get(ref)
                if sub is None:
                    continue

                sub_req = replace(req, base_dn=sub.cfg.base_dn)
                try:
                    sub_result = sub.search(sub_req)
                except (DirectoryError, LDAPException) as e:
                    logger.warning("could not follow referral: %s", ReferralError(ref, e))
                    continue
                result.entries.extend(sub_result.entries)

        return result

    def _configure_referrals(self, referrals: list[str]) -> None:
        """Dial (and cache) one sub-client per new referral target."""
        for ref in referrals:
            if ref in self._referrals:
                continue
            try:
                cfg = referral_config(self.cfg, ref)
                self._referrals[ref] = dial(cfg, self._connection_factory)
            except ReferralError as e:
                logger.warning("%s", e)
            except DirectoryError as e:
                logger.warning("dialing referral failed: %s", ReferralError(ref, e))

    # ---------------------------
    # write operations
    # ---------------------------

    def add(self, dn: str, attributes: dict[str, Any] | None = None, object_class: Any = None) -> None:
        def op() -> None:
            conn = self._connection()
            if not conn.add(dn, object_class=object_class, attributes=attributes):
                raise DirectoryOperationError("add", conn.result)

        self._with_retry("add", op)

    def modify(self, dn: str, changes: dict[str, list[tuple]]) -> None:
        """Apply {attribute: [(MODIFY_ADD|MODIFY_DELETE|MODIFY_REPLACE, [values])]} to an entry."""
        def op() -> None:
            conn = self._connection()
            if not conn.modify(dn, changes):
                raise DirectoryOperationError("modify", conn.result)

        self._with_retry("modify", op)

    def delete(self, dn: str) -> None:
        def op() -> None:
            conn = self._connection()
            if not conn.delete(dn):
                raise DirectoryOperationError("delete", conn.result)

        self._with_retry("delete", op)

    def set_password(self, user_dn: str, password: str) -> None:
        """Replace the AD `unicodePwd` of a user. Requires an encrypted connection on real AD."""
        self.modify(user_dn, {ATTR_UNICODE_PASSWORD: [(MODIFY_REPLACE, [format_password(password)])]})


def dial(cfg: DirectoryConfig, connection_factory: ConnectionFactory | None = None) -> DirectoryClient:
    """Validate the config, connect and bind."""
    if cfg is None:
        raise ConfigError("config cannot be None")
    cfg.validate()

    client = DirectoryClient(cfg, connection_factory)
    client.reconnect()
    return client
