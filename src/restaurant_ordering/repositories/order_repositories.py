"""DynamoDB repository classes for orders and order items.

As with the other repositories, expected failures are reported through simple
return values (None/False/empty list) rather than raised exceptions. The
checkout and order services decide what a failed write means for the user.
"""

import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from restaurant_ordering.models.order_models import Order, OrderItem, OrderStatusEnum

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def is_conditional_check_failure(error: Exception) -> bool:
    """Whether a DynamoDB error was caused by a failed condition expression."""
    if not isinstance(error, ClientError):
        return False
    return bool(error.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED)


class OrderRepository:
    """Repository for order CRUD operations.

    Manages order records in DynamoDB with order_id as partition key.
    """

    def __init__(self, dynamodb_resource: DynamoDBServiceResource, table_name: str) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the DynamoDB table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table: Table = dynamodb_resource.Table(table_name)

    def save_order(self, order: Order) -> bool:
        """Insert a new order.

        Args:
            order: Order to save

        Returns:
            bool: True if save succeeded, False otherwise
        """
        try:
            self.table.put_item(
                Item=order.to_dynamodb_item(),
                ConditionExpression="attribute_not_exists(order_id)",
            )
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to save order {order.order_id}: {e}")
            return False

    def get_order(self, order_id: str) -> Order | None:
        """Retrieve an order by ID.

        Args:
            order_id: Order identifier

        Returns:
            Order if found, None otherwise
        """
        try:
            response = self.table.get_item(Key={"order_id": order_id})

            if "Item" not in response:
                return None

            return Order.from_dynamodb_item(response["Item"])

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get order {order_id}: {e}")
            return None

    def delete_order(self, order_id: str) -> bool:
        """Delete an order.

        Args:
            order_id: Order identifier

        Returns:
            bool: True if delete succeeded, False otherwise
        """
        try:
            self.table.delete_item(Key={"order_id": order_id})
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to delete order {order_id}: {e}")
            return False

    def update_status(
        self,
        order_id: str,
        status: OrderStatusEnum,
        expected_status: OrderStatusEnum,
        cancellation_reason: str | None = None,
    ) -> bool:
        """Move an order to a new status if it is still in the expected one.

        Args:
            order_id: Order identifier
            status: New status
            expected_status: Status the order must currently have
            cancellation_reason: Reason stored alongside a cancellation

        Returns:
            bool: True if update succeeded, False otherwise
        """
        update_expression = "SET #estado = :status"
        values: dict[str, Any] = {":status": status.value, ":expected": expected_status.value}

        if cancellation_reason is not None:
            update_expression += ", motivo_cancelacion = :reason"
            values[":reason"] = cancellation_reason

        try:
            self.table.update_item(
                Key={"order_id": order_id},
                UpdateExpression=update_expression,
                ConditionExpression="#estado = :expected",
                ExpressionAttributeNames={"#estado": "estado"},
                ExpressionAttributeValues=values,
            )
            return True

        except (BotoCoreError, ClientError) as e:
            if is_conditional_check_failure(e):
                logger.warning(
                    f"Order {order_id} is no longer {expected_status.value}, status not changed"
                )
            else:
                logger.error(f"Failed to update status of order {order_id}: {e}")
            return False

    def list_orders_for_user(self, user_id: str, limit: int = 50) -> list[Order]:
        """List recent orders of a registered user.

        Uses a Global Secondary Index on user_id.

        Args:
            user_id: Registered user identifier
            limit: Maximum number of orders to return

        Returns:
            list: List of Order objects (empty list if none found)
        """
        try:
            response = self.table.query(
                IndexName="user_id-index",
                KeyConditionExpression="user_id = :uid",
                ExpressionAttributeValues={":uid": user_id},
                Limit=limit,
                ScanIndexForward=False,  # Most recent first
            )

            return [Order.from_dynamodb_item(item) for item in response.get("Items", [])]

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to list orders for user {user_id}: {e}")
            return []

    def list_orders_for_date(self, order_date: str) -> list[Order] | None:
        """List every order created on a calendar day.

        Uses a Global Secondary Index on order_date and follows pagination.

        Args:
            order_date: Day in YYYY-MM-DD format

        Returns:
            list of Order objects, or None if the query failed
        """
        query_kwargs: dict[str, Any] = {
            "IndexName": "order_date-index",
            "KeyConditionExpression": "order_date = :day",
            "ExpressionAttributeValues": {":day": order_date},
        }
        orders: list[Order] = []

        try:
            while True:
                response = self.table.query(**query_kwargs)
                orders.extend(Order.from_dynamodb_item(item) for item in response.get("Items", []))

                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    return orders
                query_kwargs["ExclusiveStartKey"] = last_key

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to list orders for {order_date}: {e}")
            return None


class OrderItemRepository:
    """Repository for order line items.

    Manages order item records in DynamoDB with composite key (order_id, product_id).
    """

    def __init__(self, dynamodb_resource: DynamoDBServiceResource, table_name: str) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the DynamoDB table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table: Table = dynamodb_resource.Table(table_name)

    def save_items(self, items: list[OrderItem]) -> bool:
        """Insert all items of an order in one batch.

        Args:
            items: Order items to save

        Returns:
            bool: True if every item was written, False otherwise
        """
        try:
            with self.table.batch_writer() as batch:
                for item in items:
                    batch.put_item(Item=item.to_dynamodb_item())
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to save order items: {e}")
            return False


    def delete_items(self, order_id: str, product_ids: list[str]) -> bool:
        """Delete the items of an order that is being rolled back.

        Args:
            order_id: Order the items belong to
            product_ids: Products of the order's lines

        Returns:
            bool: True if every item was deleted, False otherwise
        """
        try:
            with self.table.batch_writer() as batch:
                for product_id in product_ids:
                    batch.delete_item(Key={"order_id": order_id, "product_id": product_id})
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to delete items of order {order_id}: {e}")
            return False
