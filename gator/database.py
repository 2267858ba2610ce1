"""SQLite storage for users, feeds, follows and posts."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from uuid import UUID

from .models import Feed, FeedFollowRow, Post, PostForUser, User


class DatabaseError(Exception):
    """A query failed."""


class NoRowsError(DatabaseError):
    """A query expected a row and found none."""


class UniqueViolationError(DatabaseError):
    """An insert broke a uniqueness constraint."""


_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS feeds (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    last_fetched_at TEXT
);
CREATE TABLE IF NOT EXISTS feed_follows (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    feed_id TEXT NOT NULL REFERENCES feeds (id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    UNIQUE (user_id, feed_id)
);
CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    title TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    description TEXT,
    published_at TEXT,
    feed_id TEXT NOT NULL REFERENCES feeds (id) ON DELETE CASCADE
);
"""

_USER_COLUMNS = "id, name, updated_at, created_at"
_FEED_COLUMNS = "id, created_at, updated_at, name, url, user_id, last_fetched_at"
_POST_COLUMNS = (
    "posts.id, posts.created_at, posts.updated_at, posts.title, posts.url, "
    "posts.description, posts.published_at, posts.feed_id"
)
_FOLLOW_SELECT = """
SELECT feed_follows.id, feed_follows.created_at, feed_follows.updated_at,
       feed_follows.feed_id, feed_follows.user_id,
       feeds.name AS feed_name, users.name AS user_name
FROM feed_follows
JOIN feeds ON feed_follows.feed_id = feeds.id
JOIN users ON feed_follows.user_id = users.id
"""

# Fixed-width UTC text so that string order equals time order.
_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _db_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIME_FORMAT)


def _py_time(text: str | None) -> datetime | None:
    return None if text is None else datetime.fromisoformat(text)


def _db_id(value: UUID | str) -> str:
    return str(value if isinstance(value, UUID) else UUID(str(value)))


def _now() -> str:
    return _db_time(datetime.now(timezone.utc))


def _user(row: tuple) -> User:
    return User(UUID(row[0]), row[1], _py_time(row[2]), _py_time(row[3]))


def _feed(row: tuple) -> Feed:
    return Feed(
        UUID(row[0]),
        _py_time(row[1]),
        _py_time(row[2]),
        row[3],
        row[4],
        UUID(row[5]),
        _py_time(row[6]),
    )


def _post(row: tuple) -> Post:
    return Post(
        UUID(row[0]),
        _py_time(row[1]),
        _py_time(row[2]),
        row[3],
        row[4],
        row[5],
        _py_time(row[6]),
        UUID(row[7]),
    )


def _post_for_user(row: tuple) -> PostForUser:
    post = _post(row[:8])
    return PostForUser(
        post.id,
        post.created_at,
        post.updated_at,
        post.title,
        post.url,
        post.description,
        post.published_at,
        post.feed_id,
        row[8],
    )


def _follow_row(row: tuple) -> FeedFollowRow:
    return FeedFollowRow(
        UUID(row[0]),
        _py_time(row[1]),
        _py_time(row[2]),
        UUID(row[3]),
        UUID(row[4]),
        row[5],
        row[6],
    )


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as exc:
        if "UNIQUE constraint failed" in str(exc):
            raise UniqueViolationError(str(exc)) from exc
        raise DatabaseError(str(exc)) from exc
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc)) from exc


class Queries:
    """The queries the application runs against one connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        with _translate_errors():
            self._conn.execute("PRAGMA foreign_keys = ON")

    def __enter__(self) -> Queries:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    def create_schema(self) -> None:
        """Create the tables if they do not exist yet."""
        with _translate_errors():
            self._conn.executescript(_SCHEMA)

    def _fetch_one(self, sql: str, params: tuple, factory):
        with _translate_errors():
            row = self._conn.execute(sql, params).fetchone()
        if row is None:
            raise NoRowsError("no rows in result set")
        return factory(row)

    def _fetch_all(self, sql: str, params: tuple, factory) -> list:
        with _translate_errors():
            rows = self._conn.execute(sql, params).fetchall()
        return [factory(row) for row in rows]

    def _execute(self, sql: str, params: tuple = ()) -> None:
        with _translate_errors():
            self._conn.execute(sql, params)

    # feed follows

    def create_feed_follow(self, id, created_at, updated_at, feed_id, user_id) -> FeedFollowRow:
        follow_id = _db_id(id)
        self._execute(
            "INSERT INTO feed_follows (id, created_at, updated_at, feed_id, user_id) "
            "VALUES (?, ?, ?, ?, ?)",
            (follow_id, _db_time(created_at), _db_time(updated_at), _db_id(feed_id), _db_id(user_id)),
        )
        return self._fetch_one(
            _FOLLOW_SELECT + "WHERE feed_follows.id = ?", (follow_id,), _follow_row
        )

    def delete_feed_follow(self, feed_id, user_id) -> None:
        self._execute(
            "DELETE FROM feed_follows WHERE feed_id = ? AND user_id = ?",
            (_db_id(feed_id), _db_id(user_id)),
        )

    def get_feed_follows_for_user(self, user_id) -> list[FeedFollowRow]:
        return self._fetch_all(
            _FOLLOW_SELECT + "WHERE feed_follows.user_id = ?", (_db_id(user_id),), _follow_row
        )

    # feeds

    def create_feed(self, id, created_at, updated_at, name, url, user_id) -> Feed:
        feed_id = _db_id(id)
        self._execute(
            "INSERT INTO feeds (id, created_at, updated_at, name, url, user_id) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (feed_id, _db_time(created_at), _db_time(updated_at), name, url, _db_id(user_id)),
        )
        return self._fetch_one(
            f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = ?", (feed_id,), _feed
        )

    def get_feed_by_url(self, url: str) -> Feed:
        return self._fetch_one(f"SELECT {_FEED_COLUMNS} FROM feeds WHERE url = ?", (url,), _feed)

    def get_feeds(self) -> list[Feed]:
        return self._fetch_all(f"SELECT {_FEED_COLUMNS} FROM feeds", (), _feed)

    def get_next_feed_to_fetch(self) -> Feed:
        """Return the feed fetched longest ago, never-fetched feeds first."""
        return self._fetch_one(
            f"SELECT {_FEED_COLUMNS} FROM feeds "
            "ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC LIMIT 1",
            (),
            _feed,
        )

    def mark_feed_fetched(self, id) -> Feed:
        feed_id = _db_id(id)
        now = _now()
        self._execute(
            "UPDATE feeds SET last_fetched_at = ?, updated_at = ? WHERE id = ?",
            (now, now, feed_id),
        )
        return self._fetch_one(
            f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = ?", (feed_id,), _feed
        )

    # posts

    def create_post(
        self, id, created_at, updated_at, title, url, description, published_at, feed_id
    ) -> Post:
        post_id = _db_id(id)
        self._execute(
            "INSERT INTO posts (id, created_at, updated_at, title, url, description, "
            "published_at, feed_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                post_id,
                _db_time(created_at),
                _db_time(updated_at),
                title,
                url,
                description,
                _db_time(published_at),
                _db_id(feed_id),
            ),
        )
        return self._fetch_one(
            f"SELECT {_POST_COLUMNS} FROM posts WHERE posts.id = ?", (post_id,), _post
        )

    def get_posts_for_user(self, user_id, limit: int) -> list[PostForUser]:
        """Newest posts from the feeds *user_id* follows; undated posts first."""
        if limit < 0:
            raise DatabaseError("LIMIT must not be negative")
        return self._fetch_all(
            f"SELECT {_POST_COLUMNS}, feeds.name AS feed_name FROM posts "
            "JOIN feed_follows ON feed_follows.feed_id = posts.feed_id "
            "JOIN feeds ON posts.feed_id = feeds.id "
            "WHERE feed_follows.user_id = ? "
            "ORDER BY posts.published_at IS NULL DESC, posts.published_at DESC "
            "LIMIT ?",
            (_db_id(user_id), limit),
            _post_for_user,
        )

    # users

    def create_user(self, id, created_at, updated_at, name) -> User:
        user_id = _db_id(id)
        self._execute(
            "INSERT INTO users (id, created_at, updated_at, name) VALUES (?, ?, ?, ?)",
            (user_id, _db_time(created_at), _db_time(updated_at), name),
        )
        return self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,), _user
        )

    def delete_users(self) -> None:
        self._execute("DELETE FROM users")

    def get_user(self, name: str) -> User:
        return self._fetch_one(f"SELECT {_USER_COLUMNS} FROM users WHERE name = ?", (name,), _user)

    def get_user_by_id(self, id) -> User:
        return self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (_db_id(id),), _user
        )

    def get_users(self) -> list[User]:
        return self._fetch_all(f"SELECT {_USER_COLUMNS} FROM users", (), _user)


def open_database(url: str) -> Queries:
    """Open the SQLite database named by *url* and make sure its tables exist.

    *url* is a file path, ``:memory:``, or of the form ``sqlite:///path``.
    """
    if url.startswith("sqlite:///"):
        target = url[len("sqlite:///"):] or ":memory:"
    elif url == "sqlite://":
        target = ":memory:"
    elif "://" in url:
        raise DatabaseError(f"unsupported database url: {url}")
    else:
        target = url
    try:
        connection = sqlite3.connect(target, isolation_level=None)
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc)) from exc
    queries = Queries(connection)
    queries.create_schema()
    return queries