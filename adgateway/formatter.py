"""Render a directory search result as json, json-pretty, ldif, text or yaml."""
from __future__ import annotations

from typing import Callable
import json
import os

import yaml
from ldap3.protocol.rfc2849 import add_ldif_header, operation_to_ldif

from .ad.models import SearchResult

DEFAULT_FORMAT = "text"


def format_json(result: SearchResult) -> str:
    return json.dumps(result.to_list(), ensure_ascii=False)


def format_json_pretty(result: SearchResult) -> str:
    return json.dumps(result.to_list(), ensure_ascii=False, indent=2)


def format_yaml(result: SearchResult) -> str:
    return yaml.safe_dump(result.to_list(), allow_unicode=True, sort_keys=False)


def format_ldif(result: SearchResult) -> str:
    # ldap3's LDIF writer consumes raw search responses.
    responses = [
        {
            "type": "searchResEntry",
            "dn": e.dn,
            "raw_attributes": {a.name: [v.encode("utf-8") for v in a.values] for a in e.attributes},
        }
        for e in result.entries
    ]
    lines = add_ldif_header(operation_to_ldif("searchResponse", responses))
    return os.linesep.join(lines)


def format_text(result: SearchResult) -> str:
    blocks: list[str] = []
    for e in result.entries:
        lines = [f"Distinguished Name: {e.dn}", "Attributes:"]
        for a in e.attributes:
            lines.append(f"  {a.name}: {'; '.join(a.values)}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


FORMATTERS: dict[str, Callable[[SearchResult], str]] = {
    "json": format_json,
    "json-pretty": format_json_pretty,
    "ldif": format_ldif,
    "text": format_text,
    "yaml": format_yaml,
}


def format_search_result(fmt: str, result: SearchResult) -> str:
    """Format `result`; an empty format means text."""
    f = FORMATTERS.get(fmt or DEFAULT_FORMAT)
    if f is None:
        raise ValueError(f"unrecognized format: {fmt}")
    return f(result)
