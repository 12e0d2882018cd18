"""adgateway-cli: search objects in LDAP / Active Directory from the command line.

Connection options given on the command line override the state saved by `login`
(~/.adgateway/adgatewaycli.yaml).
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional
import argparse
import getpass
import os
import sys

import yaml
from ldap3.core.exceptions import LDAPException

from .ad import (
    DirectoryClient,
    DirectoryConfig,
    DirectoryError,
    InjectionGuardError,
    SearchResult,
    dial,
    is_dn_sanitized,
    is_name_sanitized,
    parse_base_dn_from_domain,
)
from .ad.client import ConnectionFactory
from .ad.models import ATTR_COMMON_NAME, ATTR_OBJECT_CLASS
from .formatter import FORMATTERS, format_search_result
from .log_config import setup_logging

STATE_KEYS = ("address", "basedn", "binddn", "bindpw", "start_tls", "insecure")
DEFAULT_ATTRIBUTES = [ATTR_COMMON_NAME, ATTR_OBJECT_CLASS]


class CLIError(Exception):
    pass


def default_state_file() -> Path:
    return Path.home() / ".adgateway" / "adgatewaycli.yaml"


def load_state(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CLIError(f"unable to read state: {e}") from e
    return {k: v for k, v in data.items() if k in STATE_KEYS} if isinstance(data, dict) else {}


def save_state(path: Path, state: dict[str, Any]) -> None:
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    try:
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump({k: state[k] for k in STATE_KEYS if k in state}, f, sort_keys=False)
        os.chmod(path, 0o600)
    except OSError as e:
        raise CLIError(f"unable to write state: {e}") from e


def _split_attrs(values: list[str] | None) -> list[str]:
    out: list[str] = []
    for v in values or []:
        out.extend(a.strip() for a in v.split(",") if a.strip())
    return out


def merge_state(args: argparse.Namespace, state: dict[str, Any]) -> dict[str, Any]:
    merged = dict(state)
    for key in STATE_KEYS:
        v = getattr(args, key, None)
        if v not in (None, "", False):
            merged[key] = v
    return merged


def get_client(
    state: dict[str, Any],
    connection_factory: ConnectionFactory | None = None,
    prompt=getpass.getpass,
) -> DirectoryClient:
    """Dial using the merged state, filling in base DN and password when missing."""
    address = str(state.get("address") or "")
    if not address:
        raise CLIError("no address configured")
    if not address.startswith("ldap"):
        raise CLIError(f"unknown address format: {address}")

    if not state.get("basedn"):
        state["basedn"] = parse_base_dn_from_domain(address)

    if state.get("binddn") and not state.get("bindpw"):
        state["bindpw"] = prompt("Enter password: ").strip()

    cfg = DirectoryConfig(
        address=address,
        base_dn=str(state["basedn"]),
        bind_username=str(state.get("binddn") or ""),
        bind_password=str(state.get("bindpw") or ""),
        start_tls=bool(state.get("start_tls")),
        skip_verify=bool(state.get("insecure")),
    )
    return dial(cfg, connection_factory)


def build_filter(args: argparse.Namespace) -> str:
    """LDAP filter from --filter / --dn / --cn / --by-attr, with injection checks."""
    if args.filter:
        return args.filter

    if args.dn:
        if not is_dn_sanitized(args.dn):
            raise InjectionGuardError(f"dn contains invalid characters: {args.dn}")
        return f"(distinguishedName={args.dn})"

    if args.cn:
        if not is_name_sanitized(args.cn):
            raise InjectionGuardError(f"cn contains invalid characters: {args.cn}")
        return f"(cn={args.cn})"

    if args.by_attr:
        if "=" not in args.by_attr:
            raise CLIError(f"by-attr missing value to search for: {args.by_attr}")
        name, value = args.by_attr.split("=", 1)
        if not is_name_sanitized(name):
            raise InjectionGuardError(f"by-attr name contains invalid characters: {name}")
        if not is_dn_sanitized(value):
            raise InjectionGuardError(f"by-attr value contains invalid characters: {value}")
        return f"({name}={value})"

    raise CLIError("search requires one of: --dn, --cn, --by-attr, --filter")


def _search(client: DirectoryClient, args: argparse.Namespace) -> SearchResult:
    attrs = _split_attrs(args.attributes) or list(DEFAULT_ATTRIBUTES)
    return client.search(client.new_search_request(build_filter(args), attrs))


def cmd_login(client: DirectoryClient, args: argparse.Namespace) -> str:
    save_state(args.state_file, args.state)
    return ""


def cmd_search(client: DirectoryClient, args: argparse.Namespace) -> str:
    return format_search_result(args.output, _search(client, args))


def cmd_members(client: DirectoryClient, args: argparse.Namespace) -> str:
    resp = _search(client, args)
    if not resp.entries:
        raise CLIError("group not found")

    attrs = _split_attrs(args.attributes) or list(DEFAULT_ATTRIBUTES)
    return format_search_result(args.output, client.group_members_extended(resp.entries[0].dn, attrs))


def cmd_list(client: DirectoryClient, args: argparse.Namespace) -> str:
    attrs = _split_attrs(args.attributes) or list(DEFAULT_ATTRIBUTES)
    dn = args.ou_dn or client.cfg.base_dn
    return format_search_result(args.output, client.organizational_unit_members(dn, attrs))


def _add_output_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--attributes", action="append", help="Comma-separated list of attributes to return")
    p.add_argument(
        "-o", "--output", default="text", choices=sorted(FORMATTERS),
        help="Output format (default: text)",
    )


def _add_selector_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--dn", default="", help="Find by distinguishedName")
    p.add_argument("--cn", default="", help="Find by common name (CN)")
    p.add_argument("--by-attr", dest="by_attr", default="", help="Find by attribute, format <attribute>=<value>")
    p.add_argument("--filter", default="", help="Find using LDAP filter")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="adgateway-cli",
        description="Search objects in LDAP/Active Directory",
    )
    parser.add_argument(
        "-a", "--address", default="",
        help="Address of the LDAP server: ldap://server.local:389 or ldaps://server.local:636",
    )
    parser.add_argument("-b", "--basedn", default="", help="BaseDN for searching, defaults to auto discovery")
    parser.add_argument("-u", "--binddn", default="", help="BindDN (or username) to use for authentication")
    parser.add_argument("-p", "--bindpw", default="", help="Password to use for authentication, prompted if not set")
    parser.add_argument("--start-tls", dest="start_tls", action="store_true", help="Start TLS")
    parser.add_argument("--insecure", action="store_true", help="Skip TLS validation errors")
    parser.add_argument("--state-file", dest="state_file", type=Path, default=None, help=argparse.SUPPRESS)
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="Save login information for later commands")
    p.set_defaults(func=cmd_login)

    p = sub.add_parser("search", help="Search directory")
    _add_selector_args(p)
    _add_output_args(p)
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("members", help="List members of a group")
    _add_selector_args(p)
    _add_output_args(p)
    p.set_defaults(func=cmd_members)

    p = sub.add_parser("list", help="List members of an Organizational Unit")
    p.add_argument("ou_dn", nargs="?", default="", help="OU DN, defaults to the base DN")
    _add_output_args(p)
    p.set_defaults(func=cmd_list)

    return parser


def main(argv: Optional[list[str]] = None, connection_factory: ConnectionFactory | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.debug else "WARNING")

    if args.state_file is None:
        args.state_file = default_state_file()

    client: Optional[DirectoryClient] = None
    try:
        args.state = merge_state(args, load_state(args.state_file))
        client = get_client(args.state, connection_factory)
        output = args.func(client, args)
    except (CLIError, DirectoryError, LDAPException, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        if client is not None:
            client.close()

    if output:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
