# gator

`gator` is a small command-line RSS aggregator. You register a user, add
and follow RSS feeds, let the aggregator collect their posts, and then
browse the newest posts from the feeds you follow. Everything is kept in
a SQLite database. It needs nothing beyond the Python standard library.

## Installation

```
pip install .
```

This installs the `gator` command. The same entry point can also be run
as `python -m gator.cli`.

## Configuration

`gator` reads its settings from `.gatorconfig.json` in your home
directory. The file must exist before the first run; `gator` does not
create it. It holds the database location and the name of the user who is
currently logged in:

```json
{"db_url": "gator.db", "current_user_name": ""}
```

`db_url` is one of:

- a file path, such as `gator.db` or `/home/me/gator.db`;
- `sqlite:///path/to/gator.db`;
- `:memory:` or `sqlite://`, a database that lasts only for one command.

Any other URL with a `://` scheme is rejected. The tables are created the
first time the database is opened. `current_user_name` is rewritten for
you by `register` and `login`; the file is saved as a single line of JSON.

## Usage

```
gator <command> [args...]
```

Errors are logged to standard error and the command exits with status 1.

### Users

```
gator register alice      # create a user and log in as them
gator login alice         # switch to an existing user
gator users               # list all users, marking the current one
gator reset               # delete all users, with their feeds, follows and posts
```

User names are unique.

### Feeds

```
gator addfeed "Example Blog" https://example.com/index.xml
gator feeds                                   # list every feed and who added it
gator follow https://example.com/index.xml    # follow a feed someone else added
gator following                               # list the feeds you follow
gator unfollow https://example.com/index.xml
```

`addfeed` creates the feed and makes the current user follow it. A feed
URL can be added only once, and a user can follow a feed only once.
`addfeed`, `follow`, `following`, `unfollow` and `browse` need a logged-in
user.

### Collecting posts

```
gator agg 1m
```

`agg` takes the time between requests as a duration made of numbers and
units, such as `30s`, `1.5m`, `1h30m` or `500ms` (units `ns`, `us`, `µs`,
`ms`, `s`, `m`, `h`); the interval must be positive. It scrapes once
straight away and then once per interval. Each time it picks the feed
that has gone longest without being fetched (feeds never fetched come
first), marks it fetched, downloads it with a ten-second timeout and
stores its items as posts. Items whose link is already stored are
skipped. Publication dates in RFC 1123 form with a numeric zone
(`Mon, 02 Jan 2006 15:04:05 -0700`) are kept; other dates are stored as
unknown. Progress is logged to standard error. It runs until you stop it
with Ctrl-C, which exits with status 130.

### Reading

```
gator browse        # the 2 newest posts from the feeds you follow
gator browse 10     # the 10 newest
```

Each post is shown with its publication date, feed name, title,
description and link. Posts with no known publication date are listed
first.

## Using it as a library

- `gator.config` — `Config`, `read`, `write`, `config_path` and
  `Config.set_user`; each takes an optional path in place of the file in
  the home directory.
- `gator.database` — `open_database` returns a `Queries` object (usable as
  a context manager) with methods such as `create_user`, `get_users`,
  `create_feed`, `get_feeds`, `get_next_feed_to_fetch`,
  `mark_feed_fetched`, `create_post` and `get_posts_for_user`. Lookups
  that find nothing raise `NoRowsError`, duplicates raise
  `UniqueViolationError`, both subclasses of `DatabaseError`.
- `gator.models` — the frozen dataclasses `User`, `Feed`, `FeedFollow`,
  `Post`, `FeedFollowRow` and `PostForUser`.
- `gator.rss` — `fetch_feed` downloads and `parse_feed` parses an RSS
  document into an `RSSFeed` with its `RSSItem`s, with HTML entities in
  titles and descriptions unescaped. Malformed XML raises `ValueError`.
- `gator.commands` — `Commands` and `Command` for dispatching named
  commands to handlers; unknown names raise `CommandError`.
- `gator.handlers` — the command handlers, `State`, `parse_duration`,
  `parse_pub_date`, `scrape_feeds` and `scrape_feed`.
- `gator.cli` — `build_commands` and `main`.

## What it does not do

- Storage is SQLite only; no database server is supported.
- There is no command to delete a single user or feed; `reset` removes
  everything.
- Only RSS documents with a `<channel>` of `<item>`s are read; Atom feeds
  yield no posts.

## Running the tests

```
pip install ".[test]"
pytest
```