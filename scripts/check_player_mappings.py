import argparse
import json
from collections import Counter

from fantasy_live.config import load_config
from fantasy_live.mapping import PlayerMappingService
from fantasy_live.mapping_store import DynamoMappingStore
from fantasy_live.models import Platform


def summarize(store):
    mappings = store.all()
    platforms = Counter()
    for m in mappings:
        platforms.update(m.platform_ids.keys())
    print(f"mappings: {len(mappings)}")
    print(f"active:   {sum(1 for m in mappings if m.is_active)}")
    for name, count in sorted(platforms.items()):
        print(f"  {name}_id: {count}")


def check_rosters(cfg, service):
    missing = []
    for league in cfg.leagues:
        if not league.enabled or not league.roster:
            continue
        for player_id in league.roster:
            if service.find_player_by_platform_id(league.platform, player_id) is None:
                missing.append((league.league_id, league.platform.value, player_id))
    print(f"\nunresolved roster ids: {len(missing)}")
    for league_id, platform, player_id in missing:
        print(f"  {league_id} {platform}:{player_id}")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--lookup", nargs=2, metavar=("PLATFORM", "ID"))
    parser.add_argument("--syncs", type=int, default=3)
    args = parser.parse_args()

    cfg = load_config(args.config)
    store = DynamoMappingStore(
        cfg.region,
        table_name=cfg.mapping.get("table"),
        sync_table_name=cfg.mapping.get("sync_table"),
    )
    service = PlayerMappingService(store)

    summarize(store)
    print("\nrecent syncs:")
    for meta in service.sync_history(args.syncs):
        print(f"  {meta.started_at} {meta.status} total={meta.total_players} active={meta.active_players} failed_batches={meta.failed_batches}")
    print("needs sync:", service.needs_sync())

    check_rosters(cfg, service)

    if args.lookup:
        platform, player_id = args.lookup
        found = service.find_player_by_platform_id(Platform.parse(platform), player_id)
        print("\nlookup:", json.dumps(found.to_payload() if found else None, indent=2))


if __name__ == "__main__":
    main()
