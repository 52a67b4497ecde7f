"""Rewards ledger: point balances, redemptions and active discounts."""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum

from restaurant_ordering.models.rewards_models import (
    ActiveDiscount,
    AppliedDiscount,
    PointsBalance,
    RewardDefinition,
)
from restaurant_ordering.observability.decorators import traced
from restaurant_ordering.observability.metrics import record_reward_redeemed
from restaurant_ordering.repositories.rewards_repositories import (
    ActiveDiscountRepository,
    PointsBalanceRepository,
    RewardRepository,
)

logger = logging.getLogger(__name__)

# A slot whose discount record never got written is considered abandoned after this
ABANDONED_CLAIM_AFTER = timedelta(minutes=5)


class RedemptionRejection(str, Enum):
    """Reasons a redemption can be rejected."""

    REWARD_NOT_FOUND = "reward_not_found"
    ALREADY_HAS_ACTIVE_DISCOUNT = "already_has_active_discount"
    INSUFFICIENT_POINTS = "insufficient_points"
    CONFLICT = "conflict"
    STORAGE_ERROR = "storage_error"


REJECTION_MESSAGES: dict[RedemptionRejection, str] = {
    RedemptionRejection.REWARD_NOT_FOUND: "This reward is not available.",
    RedemptionRejection.ALREADY_HAS_ACTIVE_DISCOUNT: (
        "You already have an active discount. Use it before activating another one."
    ),
    RedemptionRejection.INSUFFICIENT_POINTS: "You do not have enough points for this reward.",
    RedemptionRejection.CONFLICT: "Your points changed while redeeming. Please try again.",
    RedemptionRejection.STORAGE_ERROR: "We could not activate the discount. Please try again.",
}


class DiscountConsumption(str, Enum):
    """Outcome of applying a discount to a placed order."""

    CONSUMED = "consumed"
    ALREADY_USED = "already_used"
    FAILED = "failed"


@dataclass
class RedemptionResult:
    """Result of a reward redemption.

    Attributes:
        success: Whether the discount was activated
        discount: The created discount on success
        reward: The redeemed reward on success
        rejection: Why the redemption was rejected, None on success
        error_message: User-facing message on rejection
    """

    success: bool
    discount: ActiveDiscount | None = None
    reward: RewardDefinition | None = None
    rejection: RedemptionRejection | None = None
    error_message: str | None = None

    @classmethod
    def rejected(cls, rejection: RedemptionRejection) -> "RedemptionResult":
        return cls(success=False, rejection=rejection, error_message=REJECTION_MESSAGES[rejection])


@dataclass
class CatalogResult:
    """Result of a reward catalog change made from the back office."""

    success: bool
    reward: RewardDefinition | None = None
    not_found: bool = False


class RewardsService:
    """Service for the points/rewards loyalty program.

    A user holds at most one unconsumed discount. The slot is claimed on the
    points balance record together with the points deduction, in a single
    conditional write, so concurrent redemptions resolve first-writer-wins.
    """

    def __init__(
        self,
        reward_repository: RewardRepository,
        discount_repository: ActiveDiscountRepository,
        points_repository: PointsBalanceRepository,
    ) -> None:
        """Initialize the RewardsService.

        Args:
            reward_repository: Repository for the reward catalog
            discount_repository: Repository for redeemed discounts
            points_repository: Repository for point balances
        """
        self.reward_repository = reward_repository
        self.discount_repository = discount_repository
        self.points_repository = points_repository

    async def list_rewards(self) -> list[RewardDefinition]:
        """List the rewards customers can redeem, cheapest first."""
        return self.reward_repository.list_active_rewards()

    async def list_catalog(self) -> list[RewardDefinition]:
        """List every reward, active or not, for the back office."""
        return self.reward_repository.list_all_rewards()

    async def create_reward(
        self, name: str, points_required: int, discount_percentage: Decimal
    ) -> CatalogResult:
        """Add a new, active reward to the catalog."""
        reward = RewardDefinition(
            reward_id=f"rew_{uuid.uuid4().hex[:12]}",
            name=name,
            points_required=points_required,
            discount_percentage=discount_percentage,
        )
        if not self.reward_repository.save_reward(reward):
            return CatalogResult(success=False)

        logger.info(f"Reward {reward.reward_id} created: {points_required} points")
        return CatalogResult(success=True, reward=reward)

    async def update_reward(
        self, reward_id: str, name: str, points_required: int, discount_percentage: Decimal
    ) -> CatalogResult:
        """Change the terms of an existing reward.

        Discounts redeemed earlier keep the percentage they were granted with.
        """
        existing = self.reward_repository.get_reward(reward_id)
        if existing is None:
            return CatalogResult(success=False, not_found=True)

        reward = RewardDefinition(
            reward_id=reward_id,
            name=name,
            points_required=points_required,
            discount_percentage=discount_percentage,
            active=existing.active,
        )
        if not self.reward_repository.save_reward(reward):
            return CatalogResult(success=False)

        logger.info(f"Reward {reward_id} updated")
        return CatalogResult(success=True, reward=reward)

    async def set_reward_active(self, reward_id: str, active: bool) -> CatalogResult:
        """Enable or disable redemption of a reward."""
        existing = self.reward_repository.get_reward(reward_id)
        if existing is None:
            return CatalogResult(success=False, not_found=True)

        if not self.reward_repository.set_reward_active(reward_id, active):
            return CatalogResult(success=False)

        logger.info(f"Reward {reward_id} {'activated' if active else 'deactivated'}")
        return CatalogResult(success=True, reward=existing.model_copy(update={"active": active}))

    async def get_balance(self, user_id: str) -> int:
        """Get a user's available points (0 when no record exists)."""
        balance = self.points_repository.get_balance(user_id)
        return balance.points if balance else 0

    async def credit_points(self, user_id: str, points: int) -> bool:
        """Credit points earned by a delivered order.

        Args:
            user_id: Registered user identifier
            points: Points to add

        Returns:
            True if the balance was updated (or nothing had to be credited)
        """
        if points <= 0:
            return True

        success = self.points_repository.add_points(user_id, points)
        if success:
            logger.info(f"Credited {points} points to user {user_id}")
        return success

    @traced("rewards.redeem")
    async def redeem(self, user_id: str, reward_id: str) -> RedemptionResult:
        """Exchange points for a discount on the next order.

        A slot left behind by an already used discount, or by a redemption
        whose discount record was never written, is freed before claiming.

        Args:
            user_id: Registered user redeeming the reward
            reward_id: Reward to redeem

        Returns:
            RedemptionResult with the new discount, or the rejection reason
        """
        reward = self.reward_repository.get_reward(reward_id)
        if reward is None or not reward.active:
            return RedemptionResult.rejected(RedemptionRejection.REWARD_NOT_FOUND)

        if self.discount_repository.get_unused_discount(user_id) is not None:
            return RedemptionResult.rejected(RedemptionRejection.ALREADY_HAS_ACTIVE_DISCOUNT)

        balance = self.points_repository.get_balance(user_id) or PointsBalance(user_id=user_id)
        if balance.active_discount_id is not None:
            if not self._slot_is_stale(balance.active_discount_id, balance.slot_claimed_at):
                return RedemptionResult.rejected(RedemptionRejection.ALREADY_HAS_ACTIVE_DISCOUNT)

            logger.warning(
                f"Releasing stale discount slot {balance.active_discount_id} of user {user_id}"
            )
            if not self.points_repository.release_discount_slot(
                user_id, balance.active_discount_id
            ):
                return RedemptionResult.rejected(RedemptionRejection.STORAGE_ERROR)

        if balance.points < reward.points_required:
            return RedemptionResult.rejected(RedemptionRejection.INSUFFICIENT_POINTS)

        now = datetime.now(UTC)
        discount = ActiveDiscount(
            discount_id=f"dsc_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            reward_id=reward.reward_id,
            points_used=reward.points_required,
            reward_name=reward.name,
            discount_percentage=reward.discount_percentage,
            created_at=now,
        )

        # Another session may have redeemed between the reads above and this write
        if not self.points_repository.claim_discount_slot(
            user_id, discount.discount_id, reward.points_required, now
        ):
            return RedemptionResult.rejected(RedemptionRejection.CONFLICT)

        if not self.discount_repository.save_discount(discount):
            logger.error(
                f"Discount {discount.discount_id} could not be saved, refunding user {user_id}"
            )
            if not self.points_repository.release_discount_slot(
                user_id, discount.discount_id, refund_points=reward.points_required
            ):
                logger.error(
                    f"Refund of {reward.points_required} points to user {user_id} failed"
                )
            return RedemptionResult.rejected(RedemptionRejection.STORAGE_ERROR)

        record_reward_redeemed(reward.reward_id)
        logger.info(f"User {user_id} redeemed reward {reward.reward_id}")
        return RedemptionResult(success=True, discount=discount, reward=reward)

    async def get_active_discount(self, user_id: str) -> AppliedDiscount | None:
        """Look up the discount to apply at checkout without changing it.

        Args:
            user_id: Registered user identifier

        Returns:
            AppliedDiscount with its percentage, or None if the user has none
        """
        discount = self.discount_repository.get_unused_discount(user_id)
        if discount is None:
            return None

        if discount.discount_percentage is not None:
            return AppliedDiscount(
                discount=discount,
                reward_name=discount.reward_name or discount.reward_id,
                discount_percentage=discount.discount_percentage,
            )

        # Discounts redeemed before terms were copied onto the record
        reward = self.reward_repository.get_reward(discount.reward_id)
        if reward is None:
            logger.warning(
                f"Reward {discount.reward_id} of discount {discount.discount_id} could not be read"
            )
            return None

        return AppliedDiscount(
            discount=discount,
            reward_name=reward.name,
            discount_percentage=reward.discount_percentage,
        )

    @traced("rewards.consume")
    async def consume_discount(self, discount: ActiveDiscount, order_id: str) -> DiscountConsumption:
        """Mark a discount as used by an order and free the user's slot.

        Args:
            discount: Discount applied to the order
            order_id: Order the discount was applied to

        Returns:
            CONSUMED once the discount belongs to the order, ALREADY_USED if
            another order took it first, FAILED if the outcome is unknown
        """
        if not self.discount_repository.mark_used(
            discount.discount_id, order_id, datetime.now(UTC)
        ):
            stored = self.discount_repository.get_discount(discount.discount_id)
            if stored is None or not stored.used:
                return DiscountConsumption.FAILED
            if stored.order_id == order_id:
                return DiscountConsumption.CONSUMED

            logger.warning(
                f"Discount {discount.discount_id} already used by order {stored.order_id}"
            )
            return DiscountConsumption.ALREADY_USED

        # A slot left behind here is freed by the user's next redemption
        if not self.points_repository.release_discount_slot(discount.user_id, discount.discount_id):
            logger.error(
                f"Discount {discount.discount_id} used by order {order_id} "
                f"but slot of user {discount.user_id} was not released"
            )

        return DiscountConsumption.CONSUMED

    async def consume(self, discount: ActiveDiscount, order_id: str) -> bool:
        """Mark a discount as used by an order.

        A discount can only be consumed once; consuming it for a second order
        returns False without changing anything.
        """
        return await self.consume_discount(discount, order_id) == DiscountConsumption.CONSUMED

    def _slot_is_stale(self, discount_id: str, claimed_at: datetime | None) -> bool:
        """Whether a claimed slot points at a discount that can no longer be used."""
        holder = self.discount_repository.get_discount(discount_id)
        if holder is not None:
            return holder.used

        return claimed_at is None or datetime.now(UTC) - claimed_at > ABANDONED_CLAIM_AFTER
