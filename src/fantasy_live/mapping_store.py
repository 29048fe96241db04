from __future__ import annotations

import json
import os
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import boto3

from .models import CanonicalPlayerMapping, Platform, SyncMetadata
from .utils import chunked

DYNAMO_BATCH_SIZE = 25
MAX_UNPROCESSED_RETRIES = 5


class MemoryMappingStore:
    def __init__(self) -> None:
        self._players: Dict[str, CanonicalPlayerMapping] = {}
        self._syncs: Dict[str, SyncMetadata] = {}

    def get(self, player_id: str) -> Optional[CanonicalPlayerMapping]:
        return self._players.get(player_id)

    def find_by_platform_id(self, platform: Platform, platform_id: str) -> Optional[CanonicalPlayerMapping]:
        for mapping in self._players.values():
            if mapping.platform_id(platform) == platform_id:
                return mapping
        return None

    def put_batch(self, mappings: Iterable[CanonicalPlayerMapping]) -> None:
        for mapping in mappings:
            self._players[mapping.player_id] = mapping

    def delete(self, player_ids: Iterable[str]) -> int:
        removed = 0
        for player_id in player_ids:
            if self._players.pop(player_id, None) is not None:
                removed += 1
        return removed

    def all(self) -> List[CanonicalPlayerMapping]:
        return list(self._players.values())

    def save_sync(self, meta: SyncMetadata) -> None:
        self._syncs[meta.sync_id] = meta

    def list_syncs(self) -> List[SyncMetadata]:
        return sorted(self._syncs.values(), key=lambda m: m.started_at, reverse=True)


class DynamoMappingStore:
    """Player mappings and sync metadata in two DynamoDB tables.

    Each mapping row holds its JSON payload plus one ``<platform>_id``
    attribute per known platform id so lookups can filter on them.
    """

    def __init__(
        self,
        region: str,
        table_name: Optional[str] = None,
        sync_table_name: Optional[str] = None,
    ) -> None:
        self.table_name = table_name or os.getenv("FANTASY_PLAYER_TABLE", "fantasy_player_mappings")
        self.sync_table_name = sync_table_name or os.getenv("FANTASY_SYNC_TABLE", "fantasy_sync_metadata")
        self._client = boto3.client("dynamodb", region_name=region)

    def get(self, player_id: str) -> Optional[CanonicalPlayerMapping]:
        resp = self._client.get_item(
            TableName=self.table_name,
            Key={"player_id": {"S": player_id}},
        )
        item = resp.get("Item")
        if not item:
            return None
        return _mapping_from_item(item)

    def find_by_platform_id(self, platform: Platform, platform_id: str) -> Optional[CanonicalPlayerMapping]:
        if platform == Platform.TANK01:
            return self.get(platform_id)
        for item in self._scan(
            FilterExpression="#pid = :pid",
            ExpressionAttributeNames={"#pid": f"{platform.value}_id"},
            ExpressionAttributeValues={":pid": {"S": platform_id}},
        ):
            return _mapping_from_item(item)
        return None

    def put_batch(self, mappings: Iterable[CanonicalPlayerMapping]) -> None:
        requests = [{"PutRequest": {"Item": _mapping_to_item(m)}} for m in mappings]
        for chunk in chunked(requests, DYNAMO_BATCH_SIZE):
            self._batch_write(chunk)

    def delete(self, player_ids: Iterable[str]) -> int:
        requests = [{"DeleteRequest": {"Key": {"player_id": {"S": pid}}}} for pid in player_ids]
        for chunk in chunked(requests, DYNAMO_BATCH_SIZE):
            self._batch_write(chunk)
        return len(requests)

    def all(self) -> List[CanonicalPlayerMapping]:
        return [_mapping_from_item(item) for item in self._scan()]

    def save_sync(self, meta: SyncMetadata) -> None:
        self._client.put_item(
            TableName=self.sync_table_name,
            Item={
                "sync_id": {"S": meta.sync_id},
                "status": {"S": meta.status},
                "started_at": {"S": meta.started_at.isoformat()},
                "payload": {"S": json.dumps(asdict(meta), default=str)},
            },
        )

    def list_syncs(self) -> List[SyncMetadata]:
        syncs: List[SyncMetadata] = []
        paginator = self._client.get_paginator("scan")
        for page in paginator.paginate(TableName=self.sync_table_name):
            for item in page.get("Items", []):
                syncs.append(_sync_from_payload(json.loads(item["payload"]["S"])))
        return sorted(syncs, key=lambda m: m.started_at, reverse=True)

    def _scan(self, **kwargs: Any) -> Iterable[Dict[str, Any]]:
        paginator = self._client.get_paginator("scan")
        for page in paginator.paginate(TableName=self.table_name, **kwargs):
            yield from page.get("Items", [])

    def _batch_write(self, requests: List[Dict[str, Any]]) -> None:
        pending = {self.table_name: requests}
        for _ in range(MAX_UNPROCESSED_RETRIES):
            resp = self._client.batch_write_item(RequestItems=pending)
            pending = resp.get("UnprocessedItems") or {}
            if not pending:
                return
        raise RuntimeError(f"{len(pending.get(self.table_name, []))} writes left unprocessed in {self.table_name}")


def _mapping_to_item(mapping: CanonicalPlayerMapping) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "player_id": {"S": mapping.player_id},
        "is_active": {"BOOL": mapping.is_active},
        "payload": {"S": json.dumps(mapping.to_payload(), default=str)},
    }
    for platform, platform_id in mapping.platform_ids.items():
        if platform_id:
            item[f"{platform}_id"] = {"S": str(platform_id)}
    return item


def _mapping_from_item(item: Dict[str, Any]) -> CanonicalPlayerMapping:
    return CanonicalPlayerMapping.from_payload(json.loads(item["payload"]["S"]))


def _sync_from_payload(payload: Dict[str, Any]) -> SyncMetadata:
    for key in ("started_at", "completed_at"):
        if payload.get(key):
            payload[key] = datetime.fromisoformat(payload[key])
    return SyncMetadata(**payload)
