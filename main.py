# main.py

import argparse
import logging
import sys
from datetime import datetime

from q3ladder.config import LOG_FORMAT, Settings
from q3ladder.database import Database, MatchDebouncePolicy
from q3ladder.match_state import MatchState
from q3ladder.pipeline import EventPipeline, PersistencePolicy
from q3ladder.tailer import LogTailer


def _safe_print(message: str) -> None:
    """Print with a fallback for restricted terminal encodings."""
    try:
        print(message)
    except UnicodeEncodeError:
        print(message.encode("ascii", errors="replace").decode("ascii"))


def _format_ts(ts) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def _open_db(settings: Settings) -> Database:
    return Database(settings.db_path, debounce=MatchDebouncePolicy(settings.match_debounce))


def cmd_serve(settings: Settings, args) -> int:
    import uvicorn
    from web.app import app

    uvicorn.run(app, host=args.host or settings.api_host, port=args.port or settings.api_port,
                log_level=settings.log_level.lower())
    return 0


def cmd_ladder(settings: Settings, args) -> int:
    db = _open_db(settings)
    try:
        rows = db.ladder(args.limit, offset=args.offset, include_bots=args.include_bots,
                         bot_names=settings.bot_names)
    finally:
        db.close()

    _safe_print("\n" + "=" * 56)
    _safe_print(f"{'#':>3}  {'Player':<24} {'K':>6} {'D':>6} {'K/D':>8}")
    _safe_print("=" * 56)
    for i, row in enumerate(rows, start=args.offset + 1):
        _safe_print(f"{i:>3}  {row['name'][:24]:<24} {row['kills']:>6} {row['deaths']:>6} {row['kd']:>8.2f}")
    if not rows:
        _safe_print("  (no frags recorded yet)")
    return 0


def cmd_profile(settings: Settings, args) -> int:
    db = _open_db(settings)
    try:
        profile = db.player_profile(args.name, since_days=args.since_days, top_n=args.top,
                                    bot_names=settings.bot_names)
    finally:
        db.close()
    if profile is None:
        _safe_print(f"Player not found: {args.name}")
        return 1

    totals = profile["totals"]
    player = profile["player"]
    _safe_print("\n" + "=" * 56)
    _safe_print(f"{player['name']}  (first seen {_format_ts(player['first_seen'])}, "
                f"last seen {_format_ts(player['last_seen'])})")
    _safe_print("=" * 56)
    _safe_print(f"  Kills {totals['kills']}  Deaths {totals['deaths']}  K/D {totals['kd']:.2f}  "
                f"Suicides {totals['suicides']}  World {totals['environment_deaths']}")
    for title, key in (("Most killed", "most_killed"), ("Killed by", "killed_by")):
        _safe_print(f"\n{title}:")
        for entry in profile[key]["humans"]:
            _safe_print(f"  {entry['name']:<24} {entry['count']:>5}")
        for entry in profile[key]["bots"]:
            _safe_print(f"  {entry['name'] + ' (bot)':<24} {entry['count']:>5}")
    if totals["kills_by_cause"]:
        _safe_print("\nWeapons:")
        for cause, n in totals["kills_by_cause"].items():
            _safe_print(f"  {cause:<24} {n:>5}")
    return 0


def cmd_matches(settings: Settings, args) -> int:
    db = _open_db(settings)
    try:
        rows = db.recent_matches(args.limit)
    finally:
        db.close()
    for m in rows:
        state = "open" if m["ended_at"] is None else _format_ts(m["ended_at"])
        _safe_print(f"#{m['id']:<5} {m['map']:<16} {_format_ts(m['started_at'])} -> {state:<16} frags={m['frags']}")
    return 0


def cmd_import_log(settings: Settings, args) -> int:
    """Replay a whole log file into the store (every event persisted)."""
    # Every replayed line is stamped "now"; back-to-back maps must not merge.
    db = Database(settings.db_path, debounce=MatchDebouncePolicy(window_seconds=0))
    try:
        pipeline = EventPipeline(MatchState(count_suicides=settings.count_suicides), db,
                                 PersistencePolicy(persist_seed=True))
        tailer = LogTailer(args.path, pipeline.handle)
        delivered = tailer.seed()
        if pipeline.current_match_id is not None and pipeline.match_state.match is None:
            db.close_match(pipeline.current_match_id)
    finally:
        db.close()
    _safe_print(f"Imported {delivered} events from {args.path} "
                f"({tailer.rejected_lines} malformed lines, {pipeline.lost_events} lost)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="q3ladder", description="Quake III kill/death ladder")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="tail the log and serve the HTTP API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.set_defaults(func=cmd_serve)

    ladder = sub.add_parser("ladder", help="print the career ladder")
    ladder.add_argument("--limit", type=int, default=25)
    ladder.add_argument("--offset", type=int, default=0)
    ladder.add_argument("--include-bots", action="store_true")
    ladder.set_defaults(func=cmd_ladder)

    profile = sub.add_parser("profile", help="print one player's profile")
    profile.add_argument("name")
    profile.add_argument("--since-days", type=float)
    profile.add_argument("--top", type=int, default=5)
    profile.set_defaults(func=cmd_profile)

    matches = sub.add_parser("matches", help="list recent matches")
    matches.add_argument("--limit", type=int, default=10)
    matches.set_defaults(func=cmd_matches)

    imp = sub.add_parser("import-log", help="persist every event of an existing log file")
    imp.add_argument("path")
    imp.set_defaults(func=cmd_import_log)
    return parser


def main(argv=None) -> int:
    settings = Settings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO), format=LOG_FORMAT)
    args = build_parser().parse_args(argv)
    return args.func(settings, args)


if __name__ == "__main__":
    sys.exit(main())
