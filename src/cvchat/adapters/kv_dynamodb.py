# src/cvchat/adapters/kv_dynamodb.py
import json
import logging
import time
from decimal import Decimal
from typing import Any, Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cvchat.core.errors import StoreError

logger = logging.getLogger("cvchat.kv")


class DynamoKV:
    """
    Key-value cache on a DynamoDB table:
      pk  (S)  - the key
      v   (S)  - JSON-encoded value
      n   (N)  - numeric counters (incr)
      ttl (N)  - epoch seconds; DynamoDB purges lazily, so reads re-check it
    """

    def __init__(
        self,
        table: str,
        region: str = "us-east-1",
        client: Any = None,
        connect_timeout: float = 2.0,
        read_timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        if not table:
            raise ValueError("DynamoKV needs a table name (DDB_CACHE_TABLE)")
        self.table = table
        self.clock = clock
        self.client = client or boto3.client(
            "dynamodb",
            region_name=region,
            config=Config(connect_timeout=connect_timeout, read_timeout=read_timeout, retries={"max_attempts": 2}),
        )

    def _now(self) -> int:
        return int(self.clock())

    def _ttl(self, ttl_seconds: Optional[int]) -> Optional[str]:
        return str(self._now() + int(ttl_seconds)) if ttl_seconds else None

    def _expired(self, item: dict) -> bool:
        ttl = item.get("ttl", {}).get("N")
        return ttl is not None and int(ttl) <= self._now()

    def get(self, key: str) -> Any:
        try:
            r = self.client.get_item(TableName=self.table, Key={"pk": {"S": key}}, ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"kv get failed: {e}") from e
        item = r.get("Item")
        if not item or self._expired(item):
            return None
        if "n" in item:
            return float(Decimal(item["n"]["N"]))
        raw = item.get("v", {}).get("S")
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        item = {"pk": {"S": key}, "v": {"S": json.dumps(value, ensure_ascii=False)}}
        ttl = self._ttl(ttl_seconds)
        if ttl:
            item["ttl"] = {"N": ttl}
        try:
            self.client.put_item(TableName=self.table, Item=item)
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"kv put failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete_item(TableName=self.table, Key={"pk": {"S": key}})
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"kv delete failed: {e}") from e

    def add(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        item = {"pk": {"S": key}, "v": {"S": json.dumps(value, ensure_ascii=False)}}
        ttl = self._ttl(ttl_seconds)
        if ttl:
            item["ttl"] = {"N": ttl}
        try:
            self.client.put_item(
                TableName=self.table,
                Item=item,
                # an expired-but-unpurged item counts as absent
                ConditionExpression="attribute_not_exists(pk) OR #t <= :now",
                ExpressionAttributeNames={"#t": "ttl"},
                ExpressionAttributeValues={":now": {"N": str(self._now())}},
            )
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            raise StoreError(f"kv add failed: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"kv add failed: {e}") from e

    def incr(self, key: str, amount: float, ttl_seconds: Optional[int] = None) -> float:
        names = {"#n": "n"}
        values = {":a": {"N": str(amount)}}
        expr = "ADD #n :a"
        ttl = self._ttl(ttl_seconds)
        if ttl:
            # keep the first expiry so the counter still resets at the boundary
            expr += " SET #t = if_not_exists(#t, :t)"
            names["#t"] = "ttl"
            values[":t"] = {"N": ttl}
        try:
            r = self.client.update_item(
                TableName=self.table,
                Key={"pk": {"S": key}},
                UpdateExpression=expr,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="UPDATED_NEW",
            )
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"kv incr failed: {e}") from e
        return float(Decimal(r["Attributes"]["n"]["N"]))
