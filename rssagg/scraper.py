"""Periodic collection of posts from stored feeds."""

from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Union

from rssagg.database import DatabaseError, DuplicateKeyError, Feed, Post, Queries
from rssagg.rss import RSSFeed, url_to_feed

log = logging.getLogger(__name__)

Fetcher = Callable[[str], RSSFeed]

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_MONTHS = ("jan", "feb", "mar", "apr", "may", "jun",
           "jul", "aug", "sep", "oct", "nov", "dec")

_RFC1123Z = re.compile(
    r"(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun), "
    r"(?P<day>\d{2}) (?P<month>[A-Za-z]{3}) (?P<year>\d{4}) "
    r"(?P<hour>\d{1,2}):(?P<minute>\d{2}):(?P<second>\d{2})(?P<fraction>[.,]\d+)? "
    r"(?P<sign>[+-])(?P<off_hours>\d{2})(?P<off_minutes>\d{2})",
    re.IGNORECASE,
)


def parse_pub_date(value: str) -> datetime:
    """Parse an RFC 1123 date with numeric zone, e.g. ``Mon, 02 Jan 2006 15:04:05 -0700``."""
    match = _RFC1123Z.fullmatch(value)
    if match is None:
        raise ValueError(f"cannot parse {value!r} as an RFC 1123 date with numeric zone")
    try:
        month = _MONTHS.index(match["month"].lower()) + 1
    except ValueError:
        raise ValueError(f"unknown month in {value!r}") from None

    offset = timedelta(hours=int(match["off_hours"]), minutes=int(match["off_minutes"]))
    if match["sign"] == "-":
        offset = -offset
    microsecond = 0
    if match["fraction"]:
        microsecond = int(match["fraction"][1:7].ljust(6, "0"))
    try:
        return datetime(
            int(match["year"]),
            month,
            int(match["day"]),
            int(match["hour"]),
            int(match["minute"]),
            int(match["second"]),
            microsecond,
            tzinfo=timezone(offset),
        )
    except ValueError as exc:
        raise ValueError(f"date {value!r} out of range: {exc}") from exc


def scrape_feed(queries: Queries, feed: Feed, fetch: Fetcher = url_to_feed) -> List[Post]:
    """Mark ``feed`` as fetched, download it and store its new posts."""
    try:
        queries.mark_feed_as_fetched(feed.id)
    except DatabaseError as exc:
        log.error("Error marking feed as fetched: %s", exc)
        return []

    try:
        rss_feed = fetch(feed.url)
    except Exception as exc:
        log.error("Error fetching feed: %s", exc)
        return []

    created: List[Post] = []
    for item in rss_feed.items:
        try:
            published_at = parse_pub_date(item.pub_date)
        except ValueError as exc:
            log.warning("Couldn't parse date %s with err %s", item.pub_date, exc)
            published_at = ZERO_TIME

        now = datetime.now(timezone.utc)
        try:
            post = queries.create_post(
                uuid.uuid4(),
                now,
                now,
                item.title,
                item.description or None,
                published_at,
                item.link,
                feed.id,
            )
        except DuplicateKeyError:
            continue
        except DatabaseError as exc:
            log.error("Failed to create post: %s", exc)
            continue
        created.append(post)

    log.info("Feed %s collected, %d posts found", feed.name, len(rss_feed.items))
    return created


def start_scraping(
    queries: Queries,
    concurrency: int,
    interval: Union[float, timedelta],
    stop_event: Optional[threading.Event] = None,
    fetch: Fetcher = url_to_feed,
) -> None:
    """Scrape up to ``concurrency`` feeds at once, one round every ``interval``.

    Runs until ``stop_event`` is set; without one it runs forever.
    """
    period = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
    if period <= 0:
        raise ValueError("non-positive interval for start_scraping")
    stop = stop_event if stop_event is not None else threading.Event()

    log.info("Scraping on %s threads every %s seconds", concurrency, period)
    next_tick = time.monotonic() + period
    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
        while not stop.is_set():
            try:
                feeds = queries.get_next_feeds_to_fetch(concurrency)
            except DatabaseError as exc:
                log.error("error fetching feeds: %s", exc)
                feeds = []

            futures = [pool.submit(scrape_feed, queries, feed, fetch) for feed in feeds]
            for future in futures:
                future.result()

            if stop.wait(max(0.0, next_tick - time.monotonic())):
                break
            next_tick += period
            now = time.monotonic()
            if next_tick < now:
                next_tick = now