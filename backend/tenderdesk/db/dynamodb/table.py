from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, TypeVar

from boto3.dynamodb.types import TypeSerializer

from .client import dynamodb_client, table_resource
from .errors import DdbInternal
from .retry import RetryPolicy, ddb_call

T = TypeVar("T")

_serializer = TypeSerializer()

# Transactions contend on the number-uniqueness item; give them more room.
_TRANSACT_RETRY = RetryPolicy(max_attempts=8, base_delay_s=0.08, max_delay_s=2.0)


def to_attribute_values(values: dict[str, Any]) -> dict[str, Any]:
    """Plain python values -> low-level client AttributeValue shape."""
    return {k: _serializer.serialize(v) for k, v in values.items()}


def _expression_kwargs(
    condition: str | None,
    names: dict[str, str] | None,
    values: dict[str, Any] | None,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if condition:
        out["ConditionExpression"] = condition
    if names:
        out["ExpressionAttributeNames"] = names
    if values:
        out["ExpressionAttributeValues"] = values
    return out


@dataclass(slots=True)
class Page:
    items: list[dict[str, Any]]
    # Raw LastEvaluatedKey; None once the query is drained.
    last_key: dict[str, Any] | None


class DynamoTable:
    """Thin typed wrapper over one table; every call goes through `ddb_call`."""

    def __init__(self, *, table_name: str):
        self.table_name = str(table_name)
        self._table = table_resource(self.table_name)
        self._client = dynamodb_client()

    def _run(
        self,
        operation: str,
        fn: Callable[[], T],
        *,
        key: dict[str, Any] | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> T:
        return ddb_call(operation, fn, table_name=self.table_name, key=key, retry_policy=retry_policy)

    def get_item(self, *, key: dict[str, Any], consistent_read: bool = True) -> dict[str, Any] | None:
        resp = self._run(
            "GetItem",
            lambda: self._table.get_item(Key=key, ConsistentRead=bool(consistent_read)),
            key=key,
        )
        return resp.get("Item")

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        extra = _expression_kwargs(condition_expression, expression_attribute_names, expression_attribute_values)
        key = {"pk": item.get("pk"), "sk": item.get("sk")}
        return self._run("PutItem", lambda: self._table.put_item(Item=item, **extra), key=key)

    def delete_item(
        self,
        *,
        key: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        extra = _expression_kwargs(condition_expression, expression_attribute_names, expression_attribute_values)
        return self._run("DeleteItem", lambda: self._table.delete_item(Key=key, **extra), key=key)

    def update_item(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
        return_values: str = "ALL_NEW",
    ) -> dict[str, Any] | None:
        extra = _expression_kwargs(condition_expression, expression_attribute_names, expression_attribute_values)
        resp = self._run(
            "UpdateItem",
            lambda: self._table.update_item(
                Key=key,
                UpdateExpression=update_expression,
                ReturnValues=return_values,
                **extra,
            ),
            key=key,
        )
        return resp.get("Attributes")

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 50,
        scan_index_forward: bool = False,
        filter_expression: Any | None = None,
        exclusive_start_key: dict[str, Any] | None = None,
    ) -> Page:
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": key_condition_expression,
            "ScanIndexForward": bool(scan_index_forward),
            "Limit": max(1, min(500, int(limit or 50))),
        }
        if index_name:
            kwargs["IndexName"] = index_name
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        if exclusive_start_key:
            kwargs["ExclusiveStartKey"] = exclusive_start_key

        resp = self._run("Query", lambda: self._table.query(**kwargs))
        return Page(items=resp.get("Items") or [], last_key=resp.get("LastEvaluatedKey") or None)

    # --- transactions (low-level client shape) ---

    def tx_put(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        values = to_attribute_values(expression_attribute_values) if expression_attribute_values else None
        return {
            "TableName": self.table_name,
            "Item": to_attribute_values(item),
            **_expression_kwargs(condition_expression, expression_attribute_names, values),
        }

    def transact_write(
        self,
        *,
        puts: Iterable[dict[str, Any]] = (),
        retry_policy: RetryPolicy | None = None,
    ) -> dict[str, Any]:
        actions = [{"Put": p} for p in puts]
        if not actions:
            return {}
        return self._run(
            "TransactWriteItems",
            lambda: self._client.transact_write_items(TransactItems=actions),
            retry_policy=retry_policy or _TRANSACT_RETRY,
        )


def get_main_table() -> DynamoTable:
    from ...settings import get_settings

    table_name = get_settings().ddb_table_name
    if not table_name:
        raise DdbInternal(message="DDB_TABLE_NAME is not set", operation="Config")
    return DynamoTable(table_name=table_name)
