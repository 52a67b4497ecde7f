"""DynamoDB repository classes for the loyalty program.

The points balance record doubles as the lock for the single active discount
a user may hold: claiming the slot and spending the points happen in one
conditional update, so two concurrent redemptions cannot both succeed.
"""

import logging
from datetime import datetime
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from restaurant_ordering.models.rewards_models import (
    ActiveDiscount,
    PointsBalance,
    RewardDefinition,
)
from restaurant_ordering.repositories.order_repositories import is_conditional_check_failure

logger = logging.getLogger(__name__)


class RewardRepository:
    """Repository for the reward catalog.

    Manages reward definitions in DynamoDB with reward_id as partition key.
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

    def get_reward(self, reward_id: str) -> RewardDefinition | None:
        """Retrieve a reward definition by ID.

        Args:
            reward_id: Reward identifier

        Returns:
            RewardDefinition if found, None otherwise
        """
        try:
            response = self.table.get_item(Key={"reward_id": reward_id})

            if "Item" not in response:
                return None

            return RewardDefinition.from_dynamodb_item(response["Item"])

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get reward {reward_id}: {e}")
            return None

    def list_active_rewards(self) -> list[RewardDefinition]:
        """List rewards customers can currently redeem.

        Returns:
            list: Active rewards ordered by points required
        """
        return self._scan_rewards(
            {"FilterExpression": "activo = :active", "ExpressionAttributeValues": {":active": True}}
        )

    def list_all_rewards(self) -> list[RewardDefinition]:
        """List the whole catalog, including deactivated rewards."""
        return self._scan_rewards({})

    def save_reward(self, reward: RewardDefinition) -> bool:
        """Create or replace a reward definition.

        Args:
            reward: RewardDefinition to save

        Returns:
            bool: True if save succeeded, False otherwise
        """
        try:
            self.table.put_item(Item=reward.to_dynamodb_item())
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to save reward {reward.reward_id}: {e}")
            return False

    def set_reward_active(self, reward_id: str, active: bool) -> bool:
        """Enable or disable redemption of an existing reward.

        Args:
            reward_id: Reward identifier
            active: Whether customers can redeem it

        Returns:
            bool: True if the reward exists and was updated, False otherwise
        """
        try:
            self.table.update_item(
                Key={"reward_id": reward_id},
                UpdateExpression="SET activo = :active",
                ConditionExpression="attribute_exists(reward_id)",
                ExpressionAttributeValues={":active": active},
            )
            return True

        except (BotoCoreError, ClientError) as e:
            if is_conditional_check_failure(e):
                logger.warning(f"Reward {reward_id} does not exist")
            else:
                logger.error(f"Failed to update reward {reward_id}: {e}")
            return False

    def _scan_rewards(self, scan_kwargs: dict[str, Any]) -> list[RewardDefinition]:
        rewards: list[RewardDefinition] = []

        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                rewards.extend(
                    RewardDefinition.from_dynamodb_item(item) for item in response.get("Items", [])
                )

                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to list rewards: {e}")
            return []

        return sorted(rewards, key=lambda reward: reward.points_required)


class PointsBalanceRepository:
    """Repository for per-user point balances.

    Manages balance records in DynamoDB with user_id as partition key.
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

    def get_balance(self, user_id: str) -> PointsBalance | None:
        """Retrieve the balance record of a user.

        Args:
            user_id: Registered user identifier

        Returns:
            PointsBalance if found, None otherwise
        """
        try:
            response = self.table.get_item(Key={"user_id": user_id})

            if "Item" not in response:
                return None

            return PointsBalance.from_dynamodb_item(response["Item"])

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get points balance for user {user_id}: {e}")
            return None

    def add_points(self, user_id: str, points: int) -> bool:
        """Credit points, creating the balance record when missing.

        Args:
            user_id: Registered user identifier
            points: Points to add

        Returns:
            bool: True if update succeeded, False otherwise
        """
        try:
            self.table.update_item(
                Key={"user_id": user_id},
                UpdateExpression="SET puntos_totales = if_not_exists(puntos_totales, :zero) + :points",
                ExpressionAttributeValues={":zero": 0, ":points": points},
            )
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to add {points} points for user {user_id}: {e}")
            return False

    def claim_discount_slot(
        self, user_id: str, discount_id: str, points_cost: int, claimed_at: datetime
    ) -> bool:
        """Spend points and reserve the user's single active-discount slot.

        The update only applies if the user has enough points and holds no
        other active discount.

        Args:
            user_id: Registered user identifier
            discount_id: Discount that will occupy the slot
            points_cost: Points to deduct
            claimed_at: When the slot is claimed

        Returns:
            bool: True if the slot was claimed, False otherwise
        """
        try:
            self.table.update_item(
                Key={"user_id": user_id},
                UpdateExpression="SET puntos_totales = puntos_totales - :cost, "
                "active_discount_id = :discount_id, slot_claimed_at = :claimed_at",
                ConditionExpression="puntos_totales >= :cost "
                "AND attribute_not_exists(active_discount_id)",
                ExpressionAttributeValues={
                    ":cost": points_cost,
                    ":discount_id": discount_id,
                    ":claimed_at": claimed_at.isoformat(),
                },
            )
            return True

        except (BotoCoreError, ClientError) as e:
            if is_conditional_check_failure(e):
                logger.warning(f"Discount slot for user {user_id} could not be claimed")
            else:
                logger.error(f"Failed to claim discount slot for user {user_id}: {e}")
            return False

    def release_discount_slot(self, user_id: str, discount_id: str, refund_points: int = 0) -> bool:
        """Free the active-discount slot held by a given discount.

        Args:
            user_id: Registered user identifier
            discount_id: Discount currently holding the slot
            refund_points: Points to give back (when undoing a redemption)

        Returns:
            bool: True if update succeeded, False otherwise
        """
        try:
            self.table.update_item(
                Key={"user_id": user_id},
                UpdateExpression="SET puntos_totales = puntos_totales + :refund "
                "REMOVE active_discount_id, slot_claimed_at",
                ConditionExpression="active_discount_id = :discount_id",
                ExpressionAttributeValues={":refund": refund_points, ":discount_id": discount_id},
            )
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to release discount slot for user {user_id}: {e}")
            return False


class ActiveDiscountRepository:
    """Repository for redeemed discounts.

    Manages discount records in DynamoDB with discount_id as partition key.
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

    def save_discount(self, discount: ActiveDiscount) -> bool:
        """Insert a new discount record.

        Args:
            discount: ActiveDiscount to save

        Returns:
            bool: True if save succeeded, False otherwise
        """
        try:
            self.table.put_item(
                Item=discount.to_dynamodb_item(),
                ConditionExpression="attribute_not_exists(discount_id)",
            )
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to save discount {discount.discount_id}: {e}")
            return False

    def get_discount(self, discount_id: str) -> ActiveDiscount | None:
        """Retrieve a discount by ID, used or not.

        Args:
            discount_id: Discount identifier

        Returns:
            ActiveDiscount if found, None otherwise
        """
        try:
            response = self.table.get_item(Key={"discount_id": discount_id}, ConsistentRead=True)

            if "Item" not in response:
                return None

            return ActiveDiscount.from_dynamodb_item(response["Item"])

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get discount {discount_id}: {e}")
            return None

    def get_unused_discount(self, user_id: str) -> ActiveDiscount | None:
        """Find the user's unconsumed discount.

        Uses a Global Secondary Index on user_id. The filter runs after each
        page is read, so an empty page does not mean there is nothing left.

        Args:
            user_id: Registered user identifier

        Returns:
            ActiveDiscount if one exists, None otherwise
        """
        query_kwargs: dict[str, Any] = {
            "IndexName": "user_id-index",
            "KeyConditionExpression": "user_id = :uid",
            "FilterExpression": "usado = :used",
            "ExpressionAttributeValues": {":uid": user_id, ":used": False},
        }
        items: list[dict[str, Any]] = []

        try:
            while True:
                response = self.table.query(**query_kwargs)
                items.extend(response.get("Items", []))

                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                query_kwargs["ExclusiveStartKey"] = last_key

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get unused discount for user {user_id}: {e}")
            return None

        if not items:
            return None

        if len(items) > 1:
            logger.warning(f"User {user_id} holds {len(items)} unused discounts")

        return ActiveDiscount.from_dynamodb_item(items[0])

    def mark_used(self, discount_id: str, order_id: str, used_at: datetime) -> bool:
        """Mark a discount as consumed by an order.

        Only applies to discounts not already used, so a repeated call fails.

        Args:
            discount_id: Discount identifier
            order_id: Order the discount was applied to
            used_at: Consumption timestamp

        Returns:
            bool: True if update succeeded, False otherwise
        """
        try:
            self.table.update_item(
                Key={"discount_id": discount_id},
                UpdateExpression="SET usado = :used, orden_id = :order_id, usado_at = :used_at",
                ConditionExpression="usado = :unused",
                ExpressionAttributeValues={
                    ":used": True,
                    ":unused": False,
                    ":order_id": order_id,
                    ":used_at": used_at.isoformat(),
                },
            )
            return True

        except (BotoCoreError, ClientError) as e:
            if is_conditional_check_failure(e):
                logger.warning(f"Discount {discount_id} was already used")
            else:
                logger.error(f"Failed to mark discount {discount_id} as used: {e}")
            return False

