"""Handlers for the user, feed, follow, browse and aggregation commands."""

from __future__ import annotations

import functools
import http.client
import logging
import re
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from fractions import Fraction
from pathlib import Path

from .commands import Command, CommandError
from .config import Config
from .database import DatabaseError, Queries, UniqueViolationError
from .models import Feed, User
from .rss import fetch_feed

log = logging.getLogger(__name__)

SEPARATOR = "====================================="

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_MONTH_NUMBERS = {name.lower(): number for number, name in enumerate(_MONTHS, start=1)}

_NANOSECOND = 1
_MICROSECOND = 1000 * _NANOSECOND
_MILLISECOND = 1000 * _MICROSECOND
_SECOND = 1000 * _MILLISECOND
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE
_MAX_DURATION = 2**63 - 1

_UNITS = {
    "ns": _NANOSECOND,
    "us": _MICROSECOND,
    "\u00b5s": _MICROSECOND,
    "\u03bcs": _MICROSECOND,
    "ms": _MILLISECOND,
    "s": _SECOND,
    "m": _MINUTE,
    "h": _HOUR,
}
_COMPONENT = re.compile(r"([0-9]*)(?:\.([0-9]*))?([^0-9.]*)")
_INTEGER = re.compile(r"[+-]?[0-9]+", re.ASCII)
_RFC1123Z = re.compile(
    r"(mon|tue|wed|thu|fri|sat|sun), ([0-9]{2}) ([a-z]{3}) ([0-9]{4}) "
    r"([0-9]{2}):([0-9]{2}):([0-9]{2})(?:[.,]([0-9]+))? ([+-])([0-9]{2})([0-9]{2})",
    re.IGNORECASE | re.ASCII,
)

_FETCH_ERRORS = (OSError, ValueError, http.client.HTTPException)


@dataclass
class State:
    """What every handler works with: the database and the configuration."""

    db: Queries
    cfg: Config
    config_file: Path | None = None


LoggedInHandler = Callable[[State, Command, User], None]


# durations


def _parse_nanoseconds(text: str) -> int:
    rest = text
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return 0
    if not rest:
        raise ValueError(f'time: invalid duration "{text}"')

    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        whole, frac, unit = match.groups()
        if not whole and not frac:
            raise ValueError(f'time: invalid duration "{text}"')
        if not unit:
            raise ValueError(f'time: missing unit in duration "{text}"')
        if unit not in _UNITS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{text}"')
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _UNITS[unit]
        if total > _MAX_DURATION:
            raise ValueError(f'time: invalid duration "{text}"')
        pos = match.end()

    nanoseconds = int(total)
    return -nanoseconds if negative else nanoseconds


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``1m30s``, ``1.5h`` or ``250ms``."""
    return timedelta(microseconds=_parse_nanoseconds(text) / _MICROSECOND)


def _fractional(value: int, digits: int) -> str:
    whole, frac = divmod(value, 10**digits)
    if not frac:
        return str(whole)
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def _format_duration(nanoseconds: int) -> str:
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    size = abs(nanoseconds)
    if size < _MICROSECOND:
        return f"{sign}{size}ns"
    if size < _MILLISECOND:
        return f"{sign}{_fractional(size, 3)}\u00b5s"
    if size < _SECOND:
        return f"{sign}{_fractional(size, 6)}ms"
    hours, rest = divmod(size, _HOUR)
    minutes, rest = divmod(rest, _MINUTE)
    seconds = f"{_fractional(rest, 9)}s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes:
        return f"{sign}{minutes}m{seconds}"
    return f"{sign}{seconds}"


# times


def parse_pub_date(text: str) -> datetime | None:
    """Parse an RFC 1123 date with a numeric zone; ``None`` if it is not one."""
    match = _RFC1123Z.fullmatch(text)
    if match is None:
        return None
    _, day, month_name, year, hour, minute, second, frac, sign, off_h, off_m = match.groups()
    month = _MONTH_NUMBERS.get(month_name.lower())
    if month is None:
        return None
    micro = int((frac or "0")[:6].ljust(6, "0"))
    offset = timedelta(hours=int(off_h), minutes=int(off_m))
    if sign == "-":
        offset = -offset
    try:
        return datetime(
            int(year), month, int(day), int(hour), int(minute), int(second), micro,
            tzinfo=timezone(offset),
        )
    except ValueError:
        return None


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime(1, 1, 1, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _format_time(value: datetime | None) -> str:
    moment = _as_utc(value)
    stamp = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d} "
        f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    if moment.microsecond:
        stamp += f".{moment.microsecond:06d}".rstrip("0")
    total = int(moment.utcoffset().total_seconds())
    sign = "-" if total < 0 else "+"
    hours, minutes = divmod(abs(total) // 60, 60)
    zone = f"{sign}{hours:02d}{minutes:02d}"
    return f"{stamp} {zone} {'UTC' if total == 0 else zone}"


def _short_date(value: datetime | None) -> str:
    moment = _as_utc(value)
    return f"{_DAYS[moment.weekday()]} {_MONTHS[moment.month - 1]} {moment.day}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# aggregation


def scrape_feeds(state: State) -> None:
    """Fetch the feed that has waited longest and store its posts."""
    try:
        feed = state.db.get_next_feed_to_fetch()
    except DatabaseError as exc:
        log.info("Couldn't get next feeds to fetch %s", exc)
        return
    log.info("Found a feed to fetch!")
    scrape_feed(state.db, feed)


def scrape_feed(db: Queries, feed: Feed) -> None:
    """Mark *feed* fetched, download it and save each item as a post."""
    try:
        db.mark_feed_fetched(feed.id)
    except DatabaseError as exc:
        log.info("Couldn't mark feed %s fetched: %s", feed.name, exc)
        return

    try:
        data = fetch_feed(feed.url)
    except _FETCH_ERRORS as exc:
        log.info("Couldn't collect feed %s: %s", feed.name, exc)
        return

    for item in data.items:
        now = _now()
        try:
            db.create_post(
                id=uuid.uuid4(),
                created_at=now,
                updated_at=now,
                title=item.title,
                url=item.link,
                description=item.description,
                published_at=parse_pub_date(item.pub_date),
                feed_id=feed.id,
            )
        except UniqueViolationError:
            continue
        except DatabaseError as exc:
            log.info("Couldn't create post: %s", exc)
    log.info("Feed %s collected, %d posts found", feed.name, len(data.items))


def handler_agg(state: State, cmd: Command) -> None:
    """Scrape feeds now and then once per interval, until interrupted."""
    if not 1 <= len(cmd.args) <= 2:
        raise CommandError(f"usage: {cmd.name} <time_between_reqs>")
    try:
        nanoseconds = _parse_nanoseconds(cmd.args[0])
    except ValueError as exc:
        raise CommandError(f"invalid duration: {exc}") from exc

    log.info("Collecting feeds every %s...", _format_duration(nanoseconds))
    if nanoseconds <= 0:
        raise CommandError("non-positive interval for agg")

    interval = nanoseconds / _SECOND
    next_tick = time.monotonic() + interval
    while True:
        scrape_feeds(state)
        wait = next_tick - time.monotonic()
        time.sleep(max(0.0, wait))
        if wait >= 0:
            next_tick += interval
        else:
            # Ticks missed while scraping are dropped, as a ticker does.
            next_tick += (int(-wait // interval) + 1) * interval


# browsing


def _parse_limit(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f'parsing "{text}": invalid syntax')
    value = int(text)
    if not -(2**63) <= value < 2**63:
        raise ValueError(f'parsing "{text}": value out of range')
    return (value + 2**31) % 2**32 - 2**31


def handler_browse(state: State, cmd: Command, user: User) -> None:
    """Print the newest posts from the feeds *user* follows."""
    limit = 2
    if len(cmd.args) == 1:
        try:
            limit = _parse_limit(cmd.args[0])
        except ValueError as exc:
            raise CommandError(f"invalid limit: {exc}") from exc

    try:
        posts = state.db.get_posts_for_user(user.id, limit)
    except DatabaseError as exc:
        raise CommandError(f"couldn't get posts for user: {exc}") from exc

    print(f"Found {len(posts)} posts for user {user.name}:")
    for post in posts:
        print(f"{_short_date(post.published_at)} from {post.feed_name}")
        print(f"--- {post.title} ---")
        print(f"    {post.description or ''}")
        print(f"Link: {post.url}")
        print(SEPARATOR)


# feeds


def format_feed(feed: Feed, user: User) -> str:
    """Describe *feed* and its owner, one field per line."""
    fields = (
        ("ID", feed.id),
        ("Created", _format_time(feed.created_at)),
        ("Updated", _format_time(feed.updated_at)),
        ("Name", feed.name),
        ("URL", feed.url),
        ("User", user.name),
        ("LastFetchedAt", _format_time(feed.last_fetched_at)),
    )
    return "\n".join(f"* {label + ':':<15}{value}" for label, value in fields)


def format_feed_follow(user_name: str, feed_name: str) -> str:
    """Describe a follow by the names of its user and feed."""
    return f"* {'User:':<15}{user_name}\n* {'Feed:':<15}{feed_name}"


def handler_add_feed(state: State, cmd: Command, user: User) -> None:
    """Create a feed owned by *user* and follow it."""
    if len(cmd.args) != 2:
        raise CommandError(f"usage: {cmd.name} <name> <url>")
    name, url = cmd.args

    now = _now()
    try:
        feed = state.db.create_feed(
            id=uuid.uuid4(), created_at=now, updated_at=now, name=name, url=url, user_id=user.id
        )
    except DatabaseError as exc:
        raise CommandError(f"couldn't create feed: {exc}") from exc

    now = _now()
    try:
        follow = state.db.create_feed_follow(
            id=uuid.uuid4(), created_at=now, updated_at=now, feed_id=feed.id, user_id=user.id
        )
    except DatabaseError as exc:
        raise CommandError(f"couldn't create feed follow: {exc}") from exc

    print("Feed created successfully:")
    print(format_feed(feed, user))
    print()
    print("Feed followed successfully:")
    print(format_feed_follow(follow.user_name, follow.feed_name))
    print(SEPARATOR)


def handler_list_feeds(state: State, cmd: Command) -> None:
    """Print every feed together with its owner."""
    try:
        feeds = state.db.get_feeds()
    except DatabaseError as exc:
        raise CommandError(f"couldn't get feeds: {exc}") from exc

    if not feeds:
        print("No feeds found.")
        return

    print(f"Found {len(feeds)} feeds:")
    for feed in feeds:
        try:
            owner = state.db.get_user_by_id(feed.user_id)
        except DatabaseError as exc:
            raise CommandError(f"couldn't get user: {exc}") from exc
        print(format_feed(feed, owner))
        print(SEPARATOR)


# follows


def handler_follow(state: State, cmd: Command, user: User) -> None:
    """Follow the feed with the given URL."""
    if len(cmd.args) != 1:
        raise CommandError(f"usage: {cmd.name} <feed_url>")
    try:
        feed = state.db.get_feed_by_url(cmd.args[0])
    except DatabaseError as exc:
        raise CommandError(f"couldn't get feed: {exc}") from exc

    now = _now()
    try:
        follow = state.db.create_feed_follow(
            id=uuid.uuid4(), created_at=now, updated_at=now, feed_id=feed.id, user_id=user.id
        )
    except DatabaseError as exc:
        raise CommandError(f"couldn't create feed follow: {exc}") from exc

    print("Feed follow created:")
    print(format_feed_follow(follow.user_name, follow.feed_name))


def handler_list_feed_follows(state: State, cmd: Command, user: User) -> None:
    """Print the names of the feeds *user* follows."""
    try:
        follows = state.db.get_feed_follows_for_user(user.id)
    except DatabaseError as exc:
        raise CommandError(f"couldn't get feed follows: {exc}") from exc

    if not follows:
        print("No feed follows found for this user.")
        return

    print(f"Feed follows for user {user.name}:")
    for follow in follows:
        print(f"* {follow.feed_name}")


def handler_unfollow(state: State, cmd: Command, user: User) -> None:
    """Stop following the feed with the given URL."""
    if len(cmd.args) != 1:
        raise CommandError(f"usage: {cmd.name} <feed_url>")
    try:
        feed = state.db.get_feed_by_url(cmd.args[0])
    except DatabaseError as exc:
        raise CommandError(f"couldn't get feed: {exc}") from exc

    try:
        state.db.delete_feed_follow(feed_id=feed.id, user_id=user.id)
    except DatabaseError as exc:
        raise CommandError(f"couldn't delete feed follow: {exc}") from exc

    print(f"Successfully unfollowed feed: {feed.name}")


# users


def handler_reset(state: State, cmd: Command) -> None:
    """Delete every user, and with them everything they own."""
    try:
        state.db.delete_users()
    except DatabaseError as exc:
        raise CommandError(f"couldn't delete users: {exc}") from exc
    print("Database reset successfully!")


def format_user(user: User) -> str:
    """Describe *user* by id and name."""
    return f" * {'ID:':<9}{user.id}\n * {'Name:':<9}{user.name}"


def handler_register(state: State, cmd: Command) -> None:
    """Create a user and make it the current one."""
    if len(cmd.args) != 1:
        raise CommandError(f"usage: {cmd.name} <name>")

    now = _now()
    try:
        user = state.db.create_user(id=uuid.uuid4(), created_at=now, updated_at=now, name=cmd.args[0])
    except DatabaseError as exc:
        raise CommandError(f"couldn't create user: {exc}") from exc

    try:
        state.cfg.set_user(user.name, state.config_file)
    except OSError as exc:
        raise CommandError(f"couldn't set current user: {exc}") from exc

    print("User created successfully:")
    print(format_user(user))


def handler_login(state: State, cmd: Command) -> None:
    """Make an existing user the current one."""
    if len(cmd.args) != 1:
        raise CommandError(f"usage: {cmd.name} <name>")
    name = cmd.args[0]

    try:
        state.db.get_user(name)
    except DatabaseError as exc:
        raise CommandError(f"couldn't find user: {exc}") from exc

    try:
        state.cfg.set_user(name, state.config_file)
    except OSError as exc:
        raise CommandError(f"couldn't set current user: {exc}") from exc

    print("User switched successfully!")


def handler_list_users(state: State, cmd: Command) -> None:
    """Print every user, marking the current one."""
    try:
        users = state.db.get_users()
    except DatabaseError as exc:
        raise CommandError(f"couldn't list users: {exc}") from exc
    for user in users:
        if user.name == state.cfg.current_user_name:
            print(f"* {user.name} (current)")
        else:
            print(f"* {user.name}")


def middleware_logged_in(handler: LoggedInHandler) -> Callable[[State, Command], None]:
    """Wrap *handler* so that it receives the current user."""

    @functools.wraps(handler)
    def wrapped(state: State, cmd: Command) -> None:
        user = state.db.get_user(state.cfg.current_user_name)
        handler(state, cmd, user)

    return wrapped