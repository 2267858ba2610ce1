import logging
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from gator.commands import Command, CommandError
from gator.config import Config, read
from gator.database import NoRowsError, open_database
from gator.handlers import (
    State,
    format_feed,
    format_feed_follow,
    format_user,
    handler_add_feed,
    handler_agg,
    handler_browse,
    handler_follow,
    handler_list_feed_follows,
    handler_list_feeds,
    handler_list_users,
    handler_login,
    handler_register,
    handler_reset,
    handler_unfollow,
    middleware_logged_in,
    parse_duration,
    parse_pub_date,
    scrape_feed,
    scrape_feeds,
)
from gator.models import Feed, User

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel>
<title>Example</title><link>https://example.com</link><description>d</description>
<item><title>First</title><link>https://example.com/1</link><description>one</description>
<pubDate>Mon, 02 Jan 2006 15:04:05 -0700</pubDate></item>
<item><title>Second</title><link>https://example.com/2</link><description>two</description>
<pubDate>Tue, 03 Jan 2006 15:04:05 -0700</pubDate></item>
<item><title>Third</title><link>https://example.com/3</link><description>three</description>
<pubDate>not a date</pubDate></item>
</channel></rss>
"""
LINKS = ["https://example.com/1", "https://example.com/2", "https://example.com/3"]


class _Stop(Exception):
    pass


@pytest.fixture
def state(tmp_path):
    db = open_database(":memory:")
    yield State(db=db, cfg=Config(db_url=":memory:"), config_file=tmp_path / "cfg.json")
    db.close()


def _register(state, name):
    handler_register(state, Command("register", [name]))
    return state.db.get_user(name)


def _add_feed(state, user, tmp_path, name="Example Feed"):
    path = tmp_path / "feed.xml"
    path.write_text(RSS, encoding="utf-8")
    url = path.as_uri()
    handler_add_feed(state, Command("addfeed", [name, url]), user)
    return state.db.get_feed_by_url(url)


# durations


def test_parse_duration_values():
    assert parse_duration("1m") == timedelta(minutes=1)
    assert parse_duration("1h2m") == timedelta(hours=1) + timedelta(minutes=2)
    assert parse_duration("-2s") == -timedelta(seconds=2)
    assert parse_duration("0") == timedelta(0)
    assert parse_duration("1.5s") == timedelta(seconds=1.5)


@pytest.mark.parametrize("text", ["", "1", "1x", "abc", ".s", "-"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


# dates


def test_parse_pub_date_rfc1123z():
    parsed = parse_pub_date("Mon, 02 Jan 2006 15:04:05 -0700")
    assert parsed == datetime(2006, 1, 2, 15, 4, 5, tzinfo=timezone(-timedelta(hours=7)))


@pytest.mark.parametrize(
    "text", ["2006-01-02", "Mon, 02 Jan 2006 15:04:05 MST", "Mon, 31 Feb 2006 15:04:05 -0700", ""]
)
def test_parse_pub_date_invalid_gives_none(text):
    assert parse_pub_date(text) is None


# users


def test_register_creates_user_and_sets_current(state, capsys):
    user = _register(state, "alice")
    assert user.name == "alice"
    assert state.cfg.current_user_name == "alice"
    assert read(state.config_file).current_user_name == "alice"
    assert "User created successfully:" in capsys.readouterr().out


def test_register_usage(state):
    with pytest.raises(CommandError, match="usage: register <name>"):
        handler_register(state, Command("register"))


def test_register_duplicate(state):
    _register(state, "alice")
    with pytest.raises(CommandError, match="couldn't create user"):
        handler_register(state, Command("register", ["alice"]))


def test_login_switches_user(state, capsys):
    _register(state, "alice")
    _register(state, "bob")
    handler_login(state, Command("login", ["alice"]))
    assert state.cfg.current_user_name == "alice"
    assert read(state.config_file).current_user_name == "alice"
    assert "User switched successfully!" in capsys.readouterr().out


def test_login_unknown_user(state):
    with pytest.raises(CommandError, match="couldn't find user"):
        handler_login(state, Command("login", ["nobody"]))


def test_list_users_marks_current(state, capsys):
    _register(state, "alice")
    _register(state, "bob")
    capsys.readouterr()
    handler_list_users(state, Command("users"))
    lines = capsys.readouterr().out.splitlines()
    assert lines == ["* alice", "* bob (current)"]


def test_reset_deletes_users(state, capsys):
    _register(state, "alice")
    handler_reset(state, Command("reset"))
    assert state.db.get_users() == []
    assert "Database reset successfully!" in capsys.readouterr().out


def test_format_user():
    user = User(uuid.UUID(int=7), "alice", datetime.now(timezone.utc), datetime.now(timezone.utc))
    assert format_user(user) == f" * ID:      {user.id}\n * Name:    alice"


def test_middleware_requires_current_user(state):
    calls = []
    wrapped = middleware_logged_in(lambda s, c, u: calls.append(u.name))
    with pytest.raises(NoRowsError):
        wrapped(state, Command("x"))
    _register(state, "alice")
    wrapped(state, Command("x"))
    assert calls == ["alice"]


# feeds


def test_format_feed():
    created = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    feed = Feed(uuid.UUID(int=1), created, created, "tech", "https://example.com/feed.xml", uuid.UUID(int=2))
    user = User(uuid.UUID(int=2), "alice", created, created)
    lines = format_feed(feed, user).splitlines()
    assert lines[0] == f"* ID:            {feed.id}"
    assert lines[1] == "* Created:       2024-05-06 07:08:09 +0000 UTC"
    assert lines[3] == "* Name:          tech"
    assert lines[4] == "* URL:           https://example.com/feed.xml"
    assert lines[5] == "* User:          alice"
    assert lines[6] == "* LastFetchedAt: 0001-01-01 00:00:00 +0000 UTC"


def test_format_feed_follow():
    assert format_feed_follow("alice", "tech") == "* User:          alice\n* Feed:          tech"


def test_add_feed_creates_feed_and_follow(state, tmp_path, capsys):
    user = _register(state, "alice")
    feed = _add_feed(state, user, tmp_path)
    assert feed.name == "Example Feed"
    follows = state.db.get_feed_follows_for_user(user.id)
    assert [f.feed_name for f in follows] == ["Example Feed"]
    out = capsys.readouterr().out
    assert "Feed created successfully:" in out
    assert "Feed followed successfully:" in out


def test_add_feed_usage(state):
    user = _register(state, "alice")
    with pytest.raises(CommandError, match="usage: addfeed <name> <url>"):
        handler_add_feed(state, Command("addfeed", ["only-name"]), user)


def test_add_feed_duplicate_url(state, tmp_path):
    user = _register(state, "alice")
    feed = _add_feed(state, user, tmp_path)
    with pytest.raises(CommandError, match="couldn't create feed"):
        handler_add_feed(state, Command("addfeed", ["again", feed.url]), user)


def test_list_feeds_empty(state, capsys):
    handler_list_feeds(state, Command("feeds"))
    assert capsys.readouterr().out == "No feeds found.\n"


def test_list_feeds_shows_owner(state, tmp_path, capsys):
    user = _register(state, "alice")
    _add_feed(state, user, tmp_path)
    capsys.readouterr()
    handler_list_feeds(state, Command("feeds"))
    out = capsys.readouterr().out
    assert "Found 1 feeds:" in out
    assert "* User:          alice" in out


# follows


def test_follow_and_unfollow(state, tmp_path, capsys):
    alice = _register(state, "alice")
    feed = _add_feed(state, alice, tmp_path)
    bob = _register(state, "bob")
    handler_follow(state, Command("follow", [feed.url]), bob)
    assert [f.feed_id for f in state.db.get_feed_follows_for_user(bob.id)] == [feed.id]
    handler_unfollow(state, Command("unfollow", [feed.url]), bob)
    assert state.db.get_feed_follows_for_user(bob.id) == []
    assert "Successfully unfollowed feed: Example Feed" in capsys.readouterr().out


def test_follow_twice_fails(state, tmp_path):
    alice = _register(state, "alice")
    feed = _add_feed(state, alice, tmp_path)
    with pytest.raises(CommandError, match="couldn't create feed follow"):
        handler_follow(state, Command("follow", [feed.url]), alice)


def test_follow_unknown_feed(state):
    user = _register(state, "alice")
    with pytest.raises(CommandError, match="couldn't get feed"):
        handler_follow(state, Command("follow", ["https://example.com/none.xml"]), user)


def test_follow_usage(state):
    user = _register(state, "alice")
    with pytest.raises(CommandError, match="usage: follow <feed_url>"):
        handler_follow(state, Command("follow"), user)


def test_following_lists_feed_names(state, tmp_path, capsys):
    user = _register(state, "alice")
    capsys.readouterr()
    handler_list_feed_follows(state, Command("following"), user)
    assert capsys.readouterr().out == "No feed follows found for this user.\n"
    _add_feed(state, user, tmp_path)
    capsys.readouterr()
    handler_list_feed_follows(state, Command("following"), user)
    assert capsys.readouterr().out.splitlines() == ["Feed follows for user alice:", "* Example Feed"]


# scraping and browsing


def test_scrape_feed_stores_posts_once(state, tmp_path):
    user = _register(state, "alice")
    feed = _add_feed(state, user, tmp_path)
    scrape_feed(state.db, feed)
    scrape_feed(state.db, feed)
    posts = state.db.get_posts_for_user(user.id, 10)
    assert sorted(p.url for p in posts) == LINKS
    assert state.db.get_feed_by_url(feed.url).last_fetched_at is not None


def test_scrape_feed_unreachable_still_marks_fetched(state, tmp_path, caplog):
    caplog.set_level(logging.INFO, logger="gator.handlers")
    user = _register(state, "alice")
    url = (tmp_path / "missing.xml").as_uri()
    handler_add_feed(state, Command("addfeed", ["Gone", url]), user)
    feed = state.db.get_feed_by_url(url)
    scrape_feed(state.db, feed)
    assert state.db.get_feed_by_url(url).last_fetched_at is not None
    assert "Couldn't collect feed Gone" in caplog.text


def test_scrape_feeds_without_feeds_logs(state, caplog):
    caplog.set_level(logging.INFO, logger="gator.handlers")
    scrape_feeds(state)
    assert "Couldn't get next feeds to fetch" in caplog.text


def test_scrape_feeds_fetches_next_feed(state, tmp_path):
    user = _register(state, "alice")
    _add_feed(state, user, tmp_path)
    scrape_feeds(state)
    assert len(state.db.get_posts_for_user(user.id, 10)) == len(LINKS)


def test_browse_default_limit(state, tmp_path, capsys):
    user = _register(state, "alice")
    feed = _add_feed(state, user, tmp_path)
    scrape_feed(state.db, feed)
    capsys.readouterr()
    handler_browse(state, Command("browse"), user)
    out = capsys.readouterr().out
    assert out.startswith("Found 2 posts for user alice:\n")
    assert "--- Third ---" in out
    assert "--- Second ---" in out
    assert "--- First ---" not in out
    assert "Mon Jan 1 from Example Feed" in out
    assert "Tue Jan 3 from Example Feed" in out
    assert "Link: https://example.com/2" in out


def test_browse_explicit_limit(state, tmp_path, capsys):
    user = _register(state, "alice")
    feed = _add_feed(state, user, tmp_path)
    scrape_feed(state.db, feed)
    capsys.readouterr()
    handler_browse(state, Command("browse", ["10"]), user)
    assert capsys.readouterr().out.count("Link: ") == len(LINKS)


def test_browse_invalid_limit(state):
    user = _register(state, "alice")
    with pytest.raises(CommandError, match="invalid limit"):
        handler_browse(state, Command("browse", ["abc"]), user)


def test_browse_negative_limit(state):
    user = _register(state, "alice")
    with pytest.raises(CommandError, match="couldn't get posts for user"):
        handler_browse(state, Command("browse", ["-1"]), user)


# aggregation


def test_agg_usage(state):
    with pytest.raises(CommandError, match="usage: agg <time_between_reqs>"):
        handler_agg(state, Command("agg"))
    with pytest.raises(CommandError, match="usage: agg"):
        handler_agg(state, Command("agg", ["1s", "2", "3"]))


def test_agg_invalid_duration(state):
    with pytest.raises(CommandError, match="invalid duration"):
        handler_agg(state, Command("agg", ["abc"]))


def test_agg_non_positive(state):
    with pytest.raises(CommandError, match="non-positive"):
        handler_agg(state, Command("agg", ["0s"]))


@pytest.mark.parametrize(
    "text, shown",
    [("1m", "1m0s"), ("1h", "1h0m0s"), ("1500ms", "1.5s"), ("250ms", "250ms")],
)
def test_agg_logs_interval(state, caplog, text, shown):
    caplog.set_level(logging.INFO, logger="gator.handlers")
    with patch("gator.handlers.time.sleep", side_effect=_Stop):
        with pytest.raises(_Stop):
            handler_agg(state, Command("agg", [text]))
    assert f"Collecting feeds every {shown}..." in caplog.text


def test_agg_scrapes_before_waiting(state, tmp_path):
    user = _register(state, "alice")
    _add_feed(state, user, tmp_path)
    with patch("gator.handlers.time.sleep", side_effect=_Stop) as sleep:
        with pytest.raises(_Stop):
            handler_agg(state, Command("agg", ["1ms"]))
    assert sleep.call_count == 1
    assert len(state.db.get_posts_for_user(user.id, 10)) == len(LINKS)