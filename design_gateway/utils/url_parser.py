"""
Figma URL parsing and generation.

Normalizes the URL shapes users paste into the wizard into a canonical
ResourceIdentifier. Matching uses an ordered list of structural matchers:
the first one that matches wins, and nothing is guessed from near-misses.
Upstream URL formats evolve independently, so each shape gets its own
matcher instead of one universal grammar.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern
from urllib.parse import parse_qs, quote, unquote

from design_gateway.utils.types import ResourceIdentifier

FIGMA_WEB_BASE = "https://www.figma.com"
UNTITLED = "Untitled"

_HOST = r"^https://(?:www\.)?figma\.com"
_KEY = r"(?P<key>[A-Za-z0-9]+)"
_TAIL = r"/?(?:\?(?P<query>[^#]*))?(?:#(?P<fragment>.*))?$"

BARE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


@dataclass(frozen=True)
class UrlMatcher:
    """One recognized URL shape."""

    name: str
    pattern: Pattern[str]

    def match(self, url: str) -> Optional[re.Match]:
        return self.pattern.match(url)


# Priority order matters: first structural match wins.
URL_MATCHERS: List[UrlMatcher] = [
    UrlMatcher(
        "file",
        re.compile(_HOST + r"/file/" + _KEY + r"/(?P<name>[^/?#]+)" + _TAIL),
    ),
    UrlMatcher(
        "file_node",
        re.compile(
            _HOST
            + r"/file/"
            + _KEY
            + r"(?:/(?P<name>[^/?#]*))?/?\?(?P<query>[^#]*node-id=[^#]*)(?:#.*)?$"
        ),
    ),
    UrlMatcher(
        "proto",
        re.compile(_HOST + r"/proto/" + _KEY + r"/(?P<name>[^/?#]+)" + _TAIL),
    ),
    UrlMatcher(
        "design",
        re.compile(_HOST + r"/design/" + _KEY + r"/(?P<name>[^/?#]+)" + _TAIL),
    ),
]


def _decode_name(slug: Optional[str]) -> Optional[str]:
    if not slug:
        return None
    return unquote(slug.replace("-", " "))


def _extract_node_id(query: Optional[str]) -> Optional[str]:
    if not query:
        return None
    values = parse_qs(query).get("node-id")
    if not values or not values[0]:
        return None
    return values[0]


def parse(raw: str) -> ResourceIdentifier:
    """
    Parse a Figma URL or bare file key into a ResourceIdentifier.

    Never raises. Unrecognized input yields ``is_valid=False`` with an empty
    ``file_key`` and the trimmed input preserved in ``original_url``.

    Args:
        raw: URL or key as supplied by the user

    Returns:
        ResourceIdentifier for the input
    """
    if not isinstance(raw, str):
        return ResourceIdentifier(
            file_key="", is_valid=False, original_url="" if raw is None else str(raw)
        )

    trimmed = raw.strip()

    for matcher in URL_MATCHERS:
        match = matcher.match(trimmed)
        if match:
            return ResourceIdentifier(
                file_key=match.group("key"),
                node_id=_extract_node_id(match.group("query")),
                file_name=_decode_name(match.group("name")),
                is_valid=True,
                original_url=trimmed,
            )

    if BARE_KEY_PATTERN.match(trimmed):
        return ResourceIdentifier(file_key=trimmed, is_valid=True, original_url=trimmed)

    return ResourceIdentifier(file_key="", is_valid=False, original_url=trimmed)


def extract_file_key(raw: str) -> Optional[str]:
    """Return the canonical file key, or None if the input is not recognized."""
    parsed = parse(raw)
    return parsed.file_key if parsed.is_valid else None


def is_valid_figma_url(raw: str) -> bool:
    return parse(raw).is_valid


def generate_file_url(file_key: str, file_name: Optional[str] = None) -> str:
    """
    Build the canonical file URL for a key.

    Whitespace runs in the display name become single hyphens and the slug
    is percent-encoded, so ``parse`` recovers both key and name.
    """
    if file_name and file_name.strip():
        slug = quote(re.sub(r"\s+", "-", file_name.strip()), safe="")
    else:
        slug = UNTITLED
    return f"{FIGMA_WEB_BASE}/file/{file_key}/{slug}"


def generate_node_url(
    file_key: str, node_id: str, file_name: Optional[str] = None
) -> str:
    """Build a file URL that points at a specific node."""
    return f"{generate_file_url(file_key, file_name)}?node-id={quote(node_id, safe='')}"
