from __future__ import annotations

import argparse
import asyncio
import json

from .config import load_config
from .logging_utils import setup_logging
from .orchestrate import Orchestrator


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="fantasy_live")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Poll continuously until interrupted")
    run.add_argument("--interval", type=float, help="Fixed base interval in seconds")

    poll = sub.add_parser("poll", help="Run one manual poll and print attributed events")
    poll.add_argument("--league", help="Only print events for this league id")
    poll.add_argument("--limit", type=int, default=20)

    sync = sub.add_parser("sync-players")
    sync.add_argument("--force", action="store_true")

    sub.add_parser("cleanup-players")
    sub.add_parser("status")

    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = _parse_args(argv)
    logger = setup_logging(args.log_level)
    cfg = load_config(args.config)
    orchestrator = Orchestrator(cfg, logger)

    async def _run() -> None:
        try:
            if args.command == "run":
                if args.interval is not None:
                    orchestrator.policy.live_hours = False
                    orchestrator.policy.base_interval_seconds = args.interval
                await orchestrator.run_forever()
            elif args.command == "poll":
                orchestrator.mapping.load()
                await orchestrator.load_rosters()
                report = await orchestrator.manual_poll()
                leagues = [args.league] if args.league else [l.league_id for l in cfg.leagues if l.enabled]
                events = {
                    league_id: [e.as_dict() for e in orchestrator.get_recent_events(league_id, args.limit)]
                    for league_id in leagues
                }
                print(json.dumps({"providers": report, "events": events}, indent=2, default=str))
            elif args.command == "sync-players":
                result = await orchestrator.sync_players(force_update=args.force)
                print(json.dumps(result))
            elif args.command == "cleanup-players":
                orchestrator.mapping.load()
                print(json.dumps({"removed": orchestrator.cleanup_players()}))
            elif args.command == "status":
                orchestrator.mapping.load()
                print(json.dumps(orchestrator.get_service_status(), indent=2, default=str))
        finally:
            await orchestrator.close()

    asyncio.run(_run())


if __name__ == "__main__":
    main()
