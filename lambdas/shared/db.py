"""DynamoDB client wrapper for single-table design.

The same table serves as the atomic counter store (rate-limit windows,
speculative budget reservations) and the durable store (ledger history,
per-subject usage, conversations). Every check-and-increment goes through a
single UpdateItem so concurrent handlers and instances never race.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import boto3
from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import NotFoundError, StoreUnavailableError

logger = Logger(child=True)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def convert_floats_to_decimal(obj: Any) -> Any:
    """Recursively convert floats to Decimal for DynamoDB compatibility.

    Args:
        obj: Any Python object (dict, list, or primitive)

    Returns:
        The object with all floats converted to Decimal
    """
    if isinstance(obj, float):
        return Decimal(str(obj))
    elif isinstance(obj, dict):
        return {k: convert_floats_to_decimal(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [convert_floats_to_decimal(item) for item in obj]
    return obj


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED


class DynamoDBClient:
    """DynamoDB client wrapper with consistent error handling and logging.

    Implements single-table design patterns with PK/SK composite keys.
    Store failures surface as StoreUnavailableError so callers fail closed;
    failed conditions surface as None/False return values.
    """

    def __init__(self, table_name: str) -> None:
        """Initialize with table name.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource("dynamodb")
        self.table = self.dynamodb.Table(table_name)

    def _unavailable(
        self, operation: str, error: Exception, pk: str | None, sk: str | None = None
    ) -> StoreUnavailableError:
        logger.error(
            "Store operation failed",
            extra={"operation": operation, "error": str(error), "pk": pk, "sk": sk},
        )
        return StoreUnavailableError(operation, pk)

    def put_item(self, pk: str, sk: str, data: dict[str, Any]) -> dict[str, Any]:
        """Put an item into the table.

        Args:
            pk: Partition key value
            sk: Sort key value
            data: Additional attributes to store

        Returns:
            The complete item that was stored
        """
        now = datetime.now(UTC).isoformat()
        item = {
            "PK": pk,
            "SK": sk,
            **convert_floats_to_decimal(data),
            "updated_at": now,
        }

        # Set created_at only if not provided
        if not item.get("created_at"):
            item["created_at"] = now

        try:
            self.table.put_item(Item=item)
            logger.info("Item created", extra={"pk": pk, "sk": sk})
            return item
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("put_item", e, pk, sk) from e

    def put_item_if_absent(self, pk: str, sk: str, data: dict[str, Any]) -> bool:
        """Create an item only if no item with the same key exists.

        Args:
            pk: Partition key value
            sk: Sort key value
            data: Additional attributes to store

        Returns:
            True if this call created the item, False if it already existed
        """
        item = {"PK": pk, "SK": sk, **convert_floats_to_decimal(data)}
        item.setdefault("created_at", datetime.now(UTC).isoformat())

        try:
            self.table.put_item(
                Item=item,
                ConditionExpression="attribute_not_exists(PK)",
            )
            return True
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise self._unavailable("put_item_if_absent", e, pk, sk) from e
        except BotoCoreError as e:
            raise self._unavailable("put_item_if_absent", e, pk, sk) from e

    def get_item(self, pk: str, sk: str) -> dict[str, Any] | None:
        """Get a single item by PK and SK.

        Args:
            pk: Partition key value
            sk: Sort key value

        Returns:
            Item dict or None if not found
        """
        try:
            response = self.table.get_item(Key={"PK": pk, "SK": sk}, ConsistentRead=True)
            item = response.get("Item")
            if item:
                logger.debug("Item found", extra={"pk": pk, "sk": sk})
            return item
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("get_item", e, pk, sk) from e

    def query_by_pk(
        self,
        pk: str,
        sk_prefix: str | None = None,
        limit: int = 100,
        newest_first: bool = False,
    ) -> list[dict[str, Any]]:
        """Query items by partition key with optional SK prefix.

        Args:
            pk: Partition key value
            sk_prefix: Optional sort key prefix filter
            limit: Maximum items to return
            newest_first: Return items in descending SK order

        Returns:
            List of matching items
        """
        try:
            params: dict[str, Any] = {
                "KeyConditionExpression": "PK = :pk",
                "ExpressionAttributeValues": {":pk": pk},
                "Limit": limit,
                "ScanIndexForward": not newest_first,
            }

            if sk_prefix:
                params["KeyConditionExpression"] += " AND begins_with(SK, :sk)"
                params["ExpressionAttributeValues"][":sk"] = sk_prefix

            response = self.table.query(**params)
            items = response.get("Items", [])
            logger.debug("Query complete", extra={"pk": pk, "count": len(items)})
            return items
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("query", e, pk) from e

    def delete_item(self, pk: str, sk: str) -> bool:
        """Delete an item by PK and SK.

        Args:
            pk: Partition key value
            sk: Sort key value

        Returns:
            True if deleted, False if not found
        """
        try:
            self.table.delete_item(
                Key={"PK": pk, "SK": sk},
                ConditionExpression="attribute_exists(PK)",
            )
            logger.info("Item deleted", extra={"pk": pk, "sk": sk})
            return True
        except ClientError as e:
            if _is_conditional_failure(e):
                logger.warning("Item not found for delete", extra={"pk": pk, "sk": sk})
                return False
            raise self._unavailable("delete_item", e, pk, sk) from e
        except BotoCoreError as e:
            raise self._unavailable("delete_item", e, pk, sk) from e

    def update_item(
        self,
        pk: str,
        sk: str,
        updates: dict[str, Any],
        condition: str | None = None,
        condition_names: dict[str, str] | None = None,
        condition_values: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Update specific attributes of an existing item.

        Args:
            pk: Partition key value
            sk: Sort key value
            updates: Dict of attribute names to new values
            condition: Extra condition ANDed with attribute_exists(PK)
            condition_names: Placeholder names used by the condition
            condition_values: Placeholder values used by the condition

        Returns:
            Updated item or None if not found or the condition failed
        """
        if not updates:
            return self.get_item(pk, sk)

        # Build update expression
        update_parts = []
        names: dict[str, str] = dict(condition_names or {})
        values: dict[str, Any] = {
            ":updated_at": datetime.now(UTC).isoformat(),
            **(condition_values or {}),
        }

        for i, (key, value) in enumerate(updates.items()):
            placeholder = f"#attr{i}"
            value_placeholder = f":val{i}"
            update_parts.append(f"{placeholder} = {value_placeholder}")
            names[placeholder] = key
            values[value_placeholder] = convert_floats_to_decimal(value)

        update_parts.append("updated_at = :updated_at")
        update_expr = "SET " + ", ".join(update_parts)

        condition_expr = "attribute_exists(PK)"
        if condition:
            condition_expr = f"{condition_expr} AND ({condition})"

        try:
            response = self.table.update_item(
                Key={"PK": pk, "SK": sk},
                UpdateExpression=update_expr,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
                ConditionExpression=condition_expr,
            )
            logger.info("Item updated", extra={"pk": pk, "sk": sk})
            return response.get("Attributes")
        except ClientError as e:
            if _is_conditional_failure(e):
                logger.warning("Update condition failed", extra={"pk": pk, "sk": sk})
                return None
            raise self._unavailable("update_item", e, pk, sk) from e
        except BotoCoreError as e:
            raise self._unavailable("update_item", e, pk, sk) from e

    def increment(
        self,
        pk: str,
        sk: str,
        counters: dict[str, int],
        ttl_epoch: int | None = None,
        condition: str | None = None,
        condition_names: dict[str, str] | None = None,
        condition_values: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Atomically add to numeric attributes, creating the item if needed.

        This is the store's increment-with-expiry / upsert-increment primitive:
        one round trip that both mutates and returns the post-increment item.

        Args:
            pk: Partition key value
            sk: Sort key value
            counters: Attribute name to amount to add
            ttl_epoch: Expiry set only when the item has no ttl yet
            condition: Optional ConditionExpression evaluated before the add
            condition_names: Placeholder names used by the condition
            condition_values: Placeholder values used by the condition

        Returns:
            Item after the increment, or None if the condition failed
        """
        names: dict[str, str] = dict(condition_names or {})
        values: dict[str, Any] = {
            ":updated_at": datetime.now(UTC).isoformat(),
            **(condition_values or {}),
        }

        add_parts = []
        for i, (key, amount) in enumerate(counters.items()):
            names[f"#ctr{i}"] = key
            values[f":inc{i}"] = Decimal(str(amount))
            add_parts.append(f"#ctr{i} :inc{i}")

        set_parts = ["updated_at = :updated_at"]
        if ttl_epoch is not None:
            names["#ttl_attr"] = "ttl"
            values[":ttl"] = ttl_epoch
            set_parts.append("#ttl_attr = if_not_exists(#ttl_attr, :ttl)")

        params: dict[str, Any] = {
            "Key": {"PK": pk, "SK": sk},
            "UpdateExpression": f"ADD {', '.join(add_parts)} SET {', '.join(set_parts)}",
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
            "ReturnValues": "ALL_NEW",
        }
        if condition:
            params["ConditionExpression"] = condition

        try:
            response = self.table.update_item(**params)
            return response.get("Attributes")
        except ClientError as e:
            if _is_conditional_failure(e):
                logger.debug("Increment condition failed", extra={"pk": pk, "sk": sk})
                return None
            raise self._unavailable("increment", e, pk, sk) from e
        except BotoCoreError as e:
            raise self._unavailable("increment", e, pk, sk) from e

    def get_item_or_raise(
        self,
        pk: str,
        sk: str,
        resource_type: str,
        resource_id: str,
    ) -> dict[str, Any]:
        """Get an item or raise NotFoundError if it doesn't exist.

        Args:
            pk: Partition key value
            sk: Sort key value
            resource_type: Type of resource for error message
            resource_id: ID of resource for error message

        Returns:
            The item dict

        Raises:
            NotFoundError: If item doesn't exist
        """
        item = self.get_item(pk, sk)
        if item is None:
            raise NotFoundError(resource_type, resource_id)
        return item
