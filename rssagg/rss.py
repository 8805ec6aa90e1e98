"""Fetching and decoding of RSS documents."""

from __future__ import annotations

import urllib.error
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Union

DEFAULT_TIMEOUT = 10.0


class FeedParseError(ValueError):
    """Raised when a document cannot be decoded as XML."""


@dataclass
class RSSItem:
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""


@dataclass
class RSSFeed:
    title: str = ""
    link: str = ""
    description: str = ""
    language: str = ""
    items: List[RSSItem] = field(default_factory=list)


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _chardata(element: ET.Element) -> str:
    """Text directly inside ``element``, excluding that of nested elements."""
    return (element.text or "") + "".join(child.tail or "" for child in element)


def _parse_item(element: ET.Element) -> RSSItem:
    item = RSSItem()
    for child in element:
        name = _local_name(child.tag)
        if name == "title":
            item.title = _chardata(child)
        elif name == "link":
            item.link = _chardata(child)
        elif name == "description":
            item.description = _chardata(child)
        elif name == "pubDate":
            item.pub_date = _chardata(child)
    return item


def parse_feed(data: Union[bytes, str]) -> RSSFeed:
    """Decode an RSS document; unknown elements are ignored."""
    try:
        root = ET.fromstring(data)
    except (ET.ParseError, ValueError) as exc:
        raise FeedParseError(str(exc)) from exc

    feed = RSSFeed()
    for channel in root:
        if _local_name(channel.tag) != "channel":
            continue
        for child in channel:
            name = _local_name(child.tag)
            if name == "title":
                feed.title = _chardata(child)
            elif name == "link":
                feed.link = _chardata(child)
            elif name == "description":
                feed.description = _chardata(child)
            elif name == "language":
                feed.language = _chardata(child)
            elif name == "item":
                feed.items.append(_parse_item(child))
    return feed


def url_to_feed(url: str, timeout: float = DEFAULT_TIMEOUT) -> RSSFeed:
    """Download ``url`` and decode its body, whatever the response status."""
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            data = response.read()
    except urllib.error.HTTPError as exc:
        with exc:
            data = exc.read()
    return parse_feed(data)