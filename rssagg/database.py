"""SQLite storage for users, feeds, feed follows and posts."""

from __future__ import annotations

import hashlib
import secrets
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Sequence

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL,
    api_key TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS feeds (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    last_fetched_at TEXT
);
CREATE TABLE IF NOT EXISTS feed_follows (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    UNIQUE (user_id, feed_id)
);
CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    published_at TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE
);
"""

_USER_COLUMNS = "id, created_at, updated_at, name, api_key"
_FEED_COLUMNS = "id, created_at, updated_at, name, url, user_id, last_fetched_at"
_FOLLOW_COLUMNS = "id, created_at, updated_at, user_id, feed_id"
_POST_COLUMNS = (
    "posts.id, posts.created_at, posts.updated_at, posts.title, "
    "posts.description, posts.published_at, posts.url, posts.feed_id"
)


class DatabaseError(Exception):
    """Raised when a query fails."""


class NotFoundError(DatabaseError):
    """Raised when a query that must return a row finds none."""


class DuplicateKeyError(DatabaseError):
    """Raised when an insert violates a unique constraint."""


@dataclass(frozen=True)
class User:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str
    api_key: str


@dataclass(frozen=True)
class Feed:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str
    url: str
    user_id: uuid.UUID
    last_fetched_at: Optional[datetime]


@dataclass(frozen=True)
class FeedFollow:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    user_id: uuid.UUID
    feed_id: uuid.UUID


@dataclass(frozen=True)
class Post:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    title: str
    description: Optional[str]
    published_at: datetime
    url: str
    feed_id: uuid.UUID


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds")


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _new_api_key() -> str:
    return hashlib.sha256(secrets.token_bytes(32)).hexdigest()


def _user(row: sqlite3.Row) -> User:
    return User(
        id=uuid.UUID(row["id"]),
        created_at=_from_db_time(row["created_at"]),
        updated_at=_from_db_time(row["updated_at"]),
        name=row["name"],
        api_key=row["api_key"],
    )


def _feed(row: sqlite3.Row) -> Feed:
    return Feed(
        id=uuid.UUID(row["id"]),
        created_at=_from_db_time(row["created_at"]),
        updated_at=_from_db_time(row["updated_at"]),
        name=row["name"],
        url=row["url"],
        user_id=uuid.UUID(row["user_id"]),
        last_fetched_at=_from_db_time(row["last_fetched_at"]),
    )


def _follow(row: sqlite3.Row) -> FeedFollow:
    return FeedFollow(
        id=uuid.UUID(row["id"]),
        created_at=_from_db_time(row["created_at"]),
        updated_at=_from_db_time(row["updated_at"]),
        user_id=uuid.UUID(row["user_id"]),
        feed_id=uuid.UUID(row["feed_id"]),
    )


def _post(row: sqlite3.Row) -> Post:
    return Post(
        id=uuid.UUID(row["id"]),
        created_at=_from_db_time(row["created_at"]),
        updated_at=_from_db_time(row["updated_at"]),
        title=row["title"],
        description=row["description"],
        published_at=_from_db_time(row["published_at"]),
        url=row["url"],
        feed_id=uuid.UUID(row["feed_id"]),
    )


class Queries:
    """Typed queries over an SQLite connection, safe to share between threads."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        self._conn.isolation_level = None
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self._lock:
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(_SCHEMA)

    def __enter__(self) -> "Queries":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator["Queries"]:
        """Run the enclosed queries atomically; roll back on any exception."""
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                yield self
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            if "UNIQUE constraint failed" in str(exc):
                raise DuplicateKeyError(
                    f"duplicate key value violates unique constraint: {exc}"
                ) from exc
            raise DatabaseError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc

    def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._execute(sql, params).fetchall()

    def _fetch_one(self, sql: str, params: Sequence[Any]) -> sqlite3.Row:
        rows = self._fetch_all(sql, params)
        if not rows:
            raise NotFoundError("no rows in result set")
        return rows[0]

    # users

    def create_user(
        self, user_id: uuid.UUID, created_at: datetime, updated_at: datetime, name: str
    ) -> User:
        with self._lock:
            self._execute(
                "INSERT INTO users (id, created_at, updated_at, name, api_key) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    str(user_id),
                    _to_db_time(created_at),
                    _to_db_time(updated_at),
                    name,
                    _new_api_key(),
                ),
            )
            row = self._fetch_one(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (str(user_id),)
            )
        return _user(row)

    def get_user_by_api_key(self, api_key: str) -> User:
        row = self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM users WHERE api_key = ?", (api_key,)
        )
        return _user(row)

    # feeds

    def create_feed(
        self,
        feed_id: uuid.UUID,
        created_at: datetime,
        updated_at: datetime,
        name: str,
        url: str,
        user_id: uuid.UUID,
    ) -> Feed:
        with self._lock:
            self._execute(
                "INSERT INTO feeds (id, created_at, updated_at, name, url, user_id) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    str(feed_id),
                    _to_db_time(created_at),
                    _to_db_time(updated_at),
                    name,
                    url,
                    str(user_id),
                ),
            )
            row = self._fetch_one(
                f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = ?", (str(feed_id),)
            )
        return _feed(row)

    def get_feeds(self) -> List[Feed]:
        return [_feed(row) for row in self._fetch_all(f"SELECT {_FEED_COLUMNS} FROM feeds")]

    def get_next_feeds_to_fetch(self, limit: int) -> List[Feed]:
        """Return up to ``limit`` feeds, never-fetched first, then least recent."""
        rows = self._fetch_all(
            f"SELECT {_FEED_COLUMNS} FROM feeds "
            "ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC LIMIT ?",
            (int(limit),),
        )
        return [_feed(row) for row in rows]

    def mark_feed_as_fetched(self, feed_id: uuid.UUID) -> Feed:
        now = _to_db_time(datetime.now(timezone.utc))
        with self._lock:
            cursor = self._execute(
                "UPDATE feeds SET last_fetched_at = ?, updated_at = ? WHERE id = ?",
                (now, now, str(feed_id)),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("no rows in result set")
            row = self._fetch_one(
                f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = ?", (str(feed_id),)
            )
        return _feed(row)

    # feed follows

    def create_feed_follow(
        self,
        follow_id: uuid.UUID,
        created_at: datetime,
        updated_at: datetime,
        user_id: uuid.UUID,
        feed_id: uuid.UUID,
    ) -> FeedFollow:
        with self._lock:
            self._execute(
                "INSERT INTO feed_follows (id, created_at, updated_at, user_id, feed_id) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    str(follow_id),
                    _to_db_time(created_at),
                    _to_db_time(updated_at),
                    str(user_id),
                    str(feed_id),
                ),
            )
            row = self._fetch_one(
                f"SELECT {_FOLLOW_COLUMNS} FROM feed_follows WHERE id = ?",
                (str(follow_id),),
            )
        return _follow(row)

    def get_feed_follows(self, user_id: uuid.UUID) -> List[FeedFollow]:
        rows = self._fetch_all(
            f"SELECT {_FOLLOW_COLUMNS} FROM feed_follows WHERE user_id = ?",
            (str(user_id),),
        )
        return [_follow(row) for row in rows]

    def delete_feed_follow(self, follow_id: uuid.UUID, user_id: uuid.UUID) -> None:
        with self._lock:
            self._execute(
                "DELETE FROM feed_follows WHERE id = ? AND user_id = ?",
                (str(follow_id), str(user_id)),
            )

    # posts

    def create_post(
        self,
        post_id: uuid.UUID,
        created_at: datetime,
        updated_at: datetime,
        title: str,
        description: Optional[str],
        published_at: datetime,
        url: str,
        feed_id: uuid.UUID,
    ) -> Post:
        with self._lock:
            self._execute(
                "INSERT INTO posts (id, created_at, updated_at, title, description, "
                "published_at, url, feed_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    str(post_id),
                    _to_db_time(created_at),
                    _to_db_time(updated_at),
                    title,
                    description,
                    _to_db_time(published_at),
                    url,
                    str(feed_id),
                ),
            )
            row = self._fetch_one(
                f"SELECT {_POST_COLUMNS} FROM posts WHERE id = ?", (str(post_id),)
            )
        return _post(row)

    def get_posts_for_user(self, user_id: uuid.UUID, limit: int) -> List[Post]:
        """Return the newest posts from the feeds the user follows."""
        rows = self._fetch_all(
            f"SELECT {_POST_COLUMNS} FROM posts "
            "JOIN feed_follows ON posts.feed_id = feed_follows.feed_id "
            "WHERE feed_follows.user_id = ? "
            "ORDER BY posts.published_at DESC LIMIT ?",
            (str(user_id), int(limit)),
        )
        return [_post(row) for row in rows]


def connect(path: str) -> Queries:
    """Open (creating if needed) the database at ``path``."""
    try:
        connection = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc)) from exc
    return Queries(connection)