"""
RSS/Atom feed normalization into a fixed JSON shape.
"""

import json
from typing import Any, Dict, List, Optional

from lxml import etree

from transit_shared.errors import FeedParseError

from service_proxy.app.adapters.upstream_client import UpstreamResponse


JSON_CONTENT_TYPE = "application/json"

_PUBLISHED_FIELDS = ("pubDate", "published", "updated", "date")
_SUMMARY_FIELDS = ("description", "summary")


def make_feed_parser() -> etree.XMLParser:
    """XML parser that never fetches DTDs, resolves entities or touches the network."""
    return etree.XMLParser(
        recover=False,
        resolve_entities=False,
        load_dtd=False,
        no_network=True,
        remove_blank_text=True,
        huge_tree=False,
    )


def _local_name(element: etree._Element) -> str:
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname


def _children(element: etree._Element, name: str) -> List[etree._Element]:
    return [child for child in element if _local_name(child) == name]


def _child(element: etree._Element, name: str) -> Optional[etree._Element]:
    for child in element:
        if _local_name(child) == name:
            return child
    return None


def _text(element: Optional[etree._Element]) -> str:
    if element is None:
        return ""
    return "".join(element.itertext()).strip()


def _first_text(element: etree._Element, names) -> str:
    for name in names:
        value = _text(_child(element, name))
        if value:
            return value
    return ""


def _link(item: etree._Element) -> str:
    links = _children(item, "link")
    # Atom: <link rel="alternate" href="..."/>, rel defaults to alternate
    for link in links:
        href = link.get("href")
        if href and link.get("rel", "alternate") == "alternate":
            return href.strip()
    # RSS: <link>...</link>
    for link in links:
        value = _text(link)
        if value:
            return value
    for link in links:
        href = link.get("href")
        if href:
            return href.strip()
    return ""


def _feed_element(root: etree._Element) -> Optional[etree._Element]:
    name = _local_name(root)
    if name == "rss":
        return _child(root, "channel")
    if name == "feed":
        return root
    return None


def parse_feed(body: bytes) -> Dict[str, Any]:
    """
    Parse an RSS 2.0 or Atom document into ``{"title", "items"}``.

    Items keep document order and carry ``title``, ``link``, ``published``
    and ``summary``; absent fields are empty strings. A well-formed document
    that is neither RSS nor Atom yields an empty feed.

    Raises:
        FeedParseError: if ``body`` is not well-formed XML.
    """
    try:
        root = etree.fromstring(body, parser=make_feed_parser())
    except (etree.XMLSyntaxError, ValueError) as exc:
        raise FeedParseError(str(exc) or "malformed feed document") from exc

    feed = _feed_element(root)
    if feed is None:
        return {"title": "", "items": []}

    items = _children(feed, "item") or _children(feed, "entry")
    return {
        "title": _text(_child(feed, "title")),
        "items": [
            {
                "title": _text(_child(item, "title")),
                "link": _link(item),
                "published": _first_text(item, _PUBLISHED_FIELDS),
                "summary": _first_text(item, _SUMMARY_FIELDS),
            }
            for item in items
        ],
    }


def normalize_feed_response(response: UpstreamResponse) -> UpstreamResponse:
    """Replace a fetched feed body with its normalized JSON form, keeping the status."""
    payload = parse_feed(response.body)
    return UpstreamResponse(
        status=response.status,
        content_type=JSON_CONTENT_TYPE,
        body=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
    )
