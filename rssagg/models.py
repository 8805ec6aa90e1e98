"""JSON-ready representations of stored records."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from rssagg.database import Feed, FeedFollow, Post, User


def _format_time(value: datetime) -> str:
    """Format as RFC 3339 with trimmed fractional seconds and ``Z`` for UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def user_to_json(user: User) -> Dict[str, Any]:
    return {
        "id": str(user.id),
        "created_at": _format_time(user.created_at),
        "updated_at": _format_time(user.updated_at),
        "name": user.name,
        "api_key": user.api_key,
    }


def feed_to_json(feed: Feed) -> Dict[str, Any]:
    return {
        "id": str(feed.id),
        "created_at": _format_time(feed.created_at),
        "updated_at": _format_time(feed.updated_at),
        "name": feed.name,
        "url": feed.url,
        "user_id": str(feed.user_id),
    }


def feed_follow_to_json(follow: FeedFollow) -> Dict[str, Any]:
    return {
        "id": str(follow.id),
        "created_at": _format_time(follow.created_at),
        "updated_at": _format_time(follow.updated_at),
        "user_id": str(follow.user_id),
        "feed_id": str(follow.feed_id),
    }


def post_to_json(post: Post) -> Dict[str, Any]:
    return {
        "id": str(post.id),
        "created_at": _format_time(post.created_at),
        "updated_at": _format_time(post.updated_at),
        "title": post.title,
        "description": post.description,
        "published_at": _format_time(post.published_at),
        "url": post.url,
        "feed_id": str(post.feed_id),
    }