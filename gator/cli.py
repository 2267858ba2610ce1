"""The gator command line."""

from __future__ import annotations

import logging
import sys
from collections.abc import Sequence

from .commands import Command, CommandError, Commands
from .config import read as read_config
from .database import DatabaseError, open_database
from .handlers import (
    State,
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
)

log = logging.getLogger(__name__)


def build_commands() -> Commands:
    """Return a registry holding every command the program knows."""
    cmds = Commands()
    cmds.register("register", handler_register)
    cmds.register("login", handler_login)
    cmds.register("reset", handler_reset)
    cmds.register("users", handler_list_users)
    cmds.register("agg", handler_agg)
    cmds.register("addfeed", middleware_logged_in(handler_add_feed))
    cmds.register("feeds", handler_list_feeds)
    cmds.register("follow", middleware_logged_in(handler_follow))
    cmds.register("following", middleware_logged_in(handler_list_feed_follows))
    cmds.register("unfollow", middleware_logged_in(handler_unfollow))
    cmds.register("browse", middleware_logged_in(handler_browse))
    return cmds


def main(argv: Sequence[str] | None = None) -> int:
    """Run one command; return the process exit status."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(message)s", datefmt="%Y/%m/%d %H:%M:%S"
    )
    args = list(sys.argv[1:] if argv is None else argv)

    try:
        cfg = read_config()
    except (OSError, ValueError) as exc:
        log.error("error reading config: %s", exc)
        return 1

    try:
        db = open_database(cfg.db_url)
    except DatabaseError as exc:
        log.error("error connecting to database: %s", exc)
        return 1

    with db:
        state = State(db=db, cfg=cfg)
        cmds = build_commands()
        if not args:
            log.error("Usage: cli <command> [args...]")
            return 1
        try:
            cmds.run(state, Command(args[0], args[1:]))
        except (CommandError, DatabaseError) as exc:
            log.error("%s", exc)
            return 1
        except KeyboardInterrupt:
            return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())