"""Unit tests for RewardsService."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from restaurant_ordering.models.rewards_models import (
    ActiveDiscount,
    PointsBalance,
    RewardDefinition,
)
from restaurant_ordering.repositories.rewards_repositories import (
    ActiveDiscountRepository,
    PointsBalanceRepository,
    RewardRepository,
)
from restaurant_ordering.services.rewards_service import (
    DiscountConsumption,
    RedemptionRejection,
    RewardsService,
)


@pytest.mark.unit
class TestRewardsService:
    """Test suite for RewardsService."""

    @pytest.fixture
    def mock_reward_repo(self, sample_reward: RewardDefinition) -> MagicMock:
        repo = MagicMock(spec=RewardRepository)
        repo.get_reward.return_value = sample_reward
        return repo

    @pytest.fixture
    def mock_discount_repo(self) -> MagicMock:
        repo = MagicMock(spec=ActiveDiscountRepository)
        repo.get_unused_discount.return_value = None
        repo.get_discount.return_value = None
        repo.save_discount.return_value = True
        repo.mark_used.return_value = True
        return repo

    @pytest.fixture
    def mock_points_repo(self, mock_user_id: str) -> MagicMock:
        repo = MagicMock(spec=PointsBalanceRepository)
        repo.get_balance.return_value = PointsBalance(user_id=mock_user_id, points=150)
        repo.claim_discount_slot.return_value = True
        repo.release_discount_slot.return_value = True
        repo.add_points.return_value = True
        return repo

    @pytest.fixture
    def rewards_service(
        self,
        mock_reward_repo: MagicMock,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
    ) -> RewardsService:
        return RewardsService(
            reward_repository=mock_reward_repo,
            discount_repository=mock_discount_repo,
            points_repository=mock_points_repo,
        )

    @pytest.mark.asyncio
    async def test_redeem_success(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        mock_user_id: str,
    ) -> None:
        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.success is True
        assert result.discount is not None
        assert result.discount.points_used == 100
        assert result.discount.used is False
        assert result.reward is not None and result.reward.reward_id == "rew_20"
        assert result.discount.reward_name == "20% off"
        assert result.discount.discount_percentage == Decimal("20")
        mock_points_repo.claim_discount_slot.assert_called_once()
        assert mock_points_repo.claim_discount_slot.call_args.args[:3] == (
            mock_user_id,
            result.discount.discount_id,
            100,
        )
        mock_discount_repo.save_discount.assert_called_once_with(result.discount)

    @pytest.mark.asyncio
    async def test_redeem_with_existing_discount_does_not_touch_balance(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        mock_user_id: str,
        sample_discount: ActiveDiscount,
    ) -> None:
        mock_discount_repo.get_unused_discount.return_value = sample_discount

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.success is False
        assert result.rejection == RedemptionRejection.ALREADY_HAS_ACTIVE_DISCOUNT
        assert "already have an active discount" in (result.error_message or "")
        mock_points_repo.claim_discount_slot.assert_not_called()
        mock_points_repo.release_discount_slot.assert_not_called()
        mock_discount_repo.save_discount.assert_not_called()

    @pytest.mark.asyncio
    async def test_redeem_with_occupied_slot_is_rejected(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        mock_user_id: str,
        sample_discount: ActiveDiscount,
    ) -> None:
        mock_points_repo.get_balance.return_value = PointsBalance(
            user_id=mock_user_id, points=500, active_discount_id="dsc_other"
        )
        mock_discount_repo.get_discount.return_value = sample_discount.model_copy(
            update={"discount_id": "dsc_other"}
        )

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.rejection == RedemptionRejection.ALREADY_HAS_ACTIVE_DISCOUNT
        mock_points_repo.claim_discount_slot.assert_not_called()
        mock_points_repo.release_discount_slot.assert_not_called()

    @pytest.mark.asyncio
    async def test_redeem_with_insufficient_points_creates_nothing(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        mock_user_id: str,
    ) -> None:
        mock_points_repo.get_balance.return_value = PointsBalance(user_id=mock_user_id, points=99)

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.success is False
        assert result.rejection == RedemptionRejection.INSUFFICIENT_POINTS
        mock_discount_repo.save_discount.assert_not_called()
        mock_points_repo.claim_discount_slot.assert_not_called()

    @pytest.mark.asyncio
    async def test_redeem_without_balance_record(
        self,
        rewards_service: RewardsService,
        mock_points_repo: MagicMock,
        mock_user_id: str,
    ) -> None:
        mock_points_repo.get_balance.return_value = None

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.rejection == RedemptionRejection.INSUFFICIENT_POINTS

    @pytest.mark.asyncio
    async def test_redeem_exact_points(
        self,
        rewards_service: RewardsService,
        mock_points_repo: MagicMock,
        mock_user_id: str,
    ) -> None:
        mock_points_repo.get_balance.return_value = PointsBalance(user_id=mock_user_id, points=100)

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.success is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reward", [None, "inactive"])
    async def test_redeem_unknown_or_inactive_reward(
        self,
        rewards_service: RewardsService,
        mock_reward_repo: MagicMock,
        mock_points_repo: MagicMock,
        sample_reward: RewardDefinition,
        mock_user_id: str,
        reward: str | None,
    ) -> None:
        mock_reward_repo.get_reward.return_value = (
            sample_reward.model_copy(update={"active": False}) if reward else None
        )

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.rejection == RedemptionRejection.REWARD_NOT_FOUND
        mock_points_repo.claim_discount_slot.assert_not_called()

    @pytest.mark.asyncio
    async def test_redeem_lost_race(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        mock_user_id: str,
    ) -> None:
        """Test that a concurrent redemption winning the slot leaves no discount behind."""
        mock_points_repo.claim_discount_slot.return_value = False

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.rejection == RedemptionRejection.CONFLICT
        mock_discount_repo.save_discount.assert_not_called()

    @pytest.mark.asyncio
    async def test_redeem_save_failure_refunds_points(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        mock_user_id: str,
    ) -> None:
        mock_discount_repo.save_discount.return_value = False

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.rejection == RedemptionRejection.STORAGE_ERROR
        discount_id = mock_points_repo.claim_discount_slot.call_args.args[1]
        mock_points_repo.release_discount_slot.assert_called_once_with(
            mock_user_id, discount_id, refund_points=100
        )

    @pytest.mark.asyncio
    async def test_get_active_discount(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_user_id: str,
        sample_discount: ActiveDiscount,
    ) -> None:
        mock_discount_repo.get_unused_discount.return_value = sample_discount

        applied = await rewards_service.get_active_discount(mock_user_id)

        assert applied is not None
        assert applied.discount == sample_discount
        assert applied.discount_percentage == Decimal("20")
        mock_discount_repo.mark_used.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_active_discount_none(
        self, rewards_service: RewardsService, mock_user_id: str
    ) -> None:
        assert await rewards_service.get_active_discount(mock_user_id) is None

    @pytest.mark.asyncio
    async def test_get_active_discount_reward_deleted(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_reward_repo: MagicMock,
        mock_user_id: str,
        sample_discount: ActiveDiscount,
    ) -> None:
        mock_discount_repo.get_unused_discount.return_value = sample_discount
        mock_reward_repo.get_reward.return_value = None

        assert await rewards_service.get_active_discount(mock_user_id) is None

    @pytest.mark.asyncio
    async def test_consume_marks_used_and_frees_slot(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        sample_discount: ActiveDiscount,
    ) -> None:
        assert await rewards_service.consume(sample_discount, "ord_1") is True

        assert mock_discount_repo.mark_used.call_args.args[:2] == ("dsc_abc", "ord_1")
        mock_points_repo.release_discount_slot.assert_called_once_with("user_123", "dsc_abc")

    @pytest.mark.asyncio
    async def test_consume_twice_fails_without_side_effects(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        sample_discount: ActiveDiscount,
    ) -> None:
        mock_discount_repo.mark_used.return_value = False
        mock_discount_repo.get_discount.return_value = sample_discount.model_copy(
            update={"used": True, "order_id": "ord_1"}
        )

        assert await rewards_service.consume(sample_discount, "ord_2") is False
        assert (
            await rewards_service.consume_discount(sample_discount, "ord_2")
            == DiscountConsumption.ALREADY_USED
        )
        mock_points_repo.release_discount_slot.assert_not_called()

    @pytest.mark.asyncio
    async def test_consume_slot_release_failure_still_consumes(
        self,
        rewards_service: RewardsService,
        mock_points_repo: MagicMock,
        sample_discount: ActiveDiscount,
    ) -> None:
        mock_points_repo.release_discount_slot.return_value = False

        assert await rewards_service.consume(sample_discount, "ord_1") is True

    @pytest.mark.asyncio
    async def test_credit_points(
        self, rewards_service: RewardsService, mock_points_repo: MagicMock, mock_user_id: str
    ) -> None:
        assert await rewards_service.credit_points(mock_user_id, 40) is True
        mock_points_repo.add_points.assert_called_once_with(mock_user_id, 40)

    @pytest.mark.asyncio
    async def test_credit_zero_points_is_noop(
        self, rewards_service: RewardsService, mock_points_repo: MagicMock, mock_user_id: str
    ) -> None:
        assert await rewards_service.credit_points(mock_user_id, 0) is True
        mock_points_repo.add_points.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_balance_defaults_to_zero(
        self, rewards_service: RewardsService, mock_points_repo: MagicMock, mock_user_id: str
    ) -> None:
        mock_points_repo.get_balance.return_value = None

        assert await rewards_service.get_balance(mock_user_id) == 0

    @pytest.mark.asyncio
    async def test_list_rewards(
        self,
        rewards_service: RewardsService,
        mock_reward_repo: MagicMock,
        sample_reward: RewardDefinition,
    ) -> None:
        mock_reward_repo.list_active_rewards.return_value = [sample_reward]

        assert await rewards_service.list_rewards() == [sample_reward]

    @pytest.mark.asyncio
    async def test_consume_unknown_outcome(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        sample_discount: ActiveDiscount,
    ) -> None:
        mock_discount_repo.mark_used.return_value = False
        mock_discount_repo.get_discount.return_value = sample_discount

        outcome = await rewards_service.consume_discount(sample_discount, "ord_1")

        assert outcome == DiscountConsumption.FAILED
        mock_points_repo.release_discount_slot.assert_not_called()

    @pytest.mark.asyncio
    async def test_consume_retry_for_same_order(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        sample_discount: ActiveDiscount,
    ) -> None:
        mock_discount_repo.mark_used.return_value = False
        mock_discount_repo.get_discount.return_value = sample_discount.model_copy(
            update={"used": True, "order_id": "ord_1"}
        )

        assert await rewards_service.consume(sample_discount, "ord_1") is True


@pytest.mark.unit
class TestStaleDiscountSlot:
    """Redemptions after a slot was left claimed by a discount that can no longer be used."""

    @pytest.fixture
    def mock_reward_repo(self, sample_reward: RewardDefinition) -> MagicMock:
        repo = MagicMock(spec=RewardRepository)
        repo.get_reward.return_value = sample_reward
        return repo

    @pytest.fixture
    def mock_discount_repo(self) -> MagicMock:
        repo = MagicMock(spec=ActiveDiscountRepository)
        repo.get_unused_discount.return_value = None
        repo.get_discount.return_value = None
        repo.save_discount.return_value = True
        repo.mark_used.return_value = True
        return repo

    @pytest.fixture
    def mock_points_repo(self) -> MagicMock:
        repo = MagicMock(spec=PointsBalanceRepository)
        repo.claim_discount_slot.return_value = True
        repo.release_discount_slot.return_value = True
        return repo

    @pytest.fixture
    def rewards_service(
        self,
        mock_reward_repo: MagicMock,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
    ) -> RewardsService:
        return RewardsService(
            reward_repository=mock_reward_repo,
            discount_repository=mock_discount_repo,
            points_repository=mock_points_repo,
        )

    def balance_holding(
        self, user_id: str, discount_id: str, claimed_at: datetime | None
    ) -> PointsBalance:
        return PointsBalance(
            user_id=user_id,
            points=300,
            active_discount_id=discount_id,
            slot_claimed_at=claimed_at,
        )

    @pytest.mark.asyncio
    async def test_failed_release_does_not_block_next_redemption(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        sample_discount: ActiveDiscount,
        mock_user_id: str,
    ) -> None:
        mock_points_repo.release_discount_slot.return_value = False
        assert await rewards_service.consume(sample_discount, "ord_1") is True

        # The slot still points at the discount that was just used
        mock_points_repo.release_discount_slot.return_value = True
        mock_points_repo.get_balance.return_value = self.balance_holding(
            mock_user_id, "dsc_abc", sample_discount.created_at
        )
        mock_discount_repo.get_discount.return_value = sample_discount.model_copy(
            update={"used": True, "order_id": "ord_1"}
        )

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.success is True
        mock_points_repo.release_discount_slot.assert_called_with(mock_user_id, "dsc_abc")
        mock_points_repo.claim_discount_slot.assert_called_once()

    @pytest.mark.asyncio
    async def test_abandoned_claim_is_released(
        self,
        rewards_service: RewardsService,
        mock_points_repo: MagicMock,
        mock_user_id: str,
    ) -> None:
        mock_points_repo.get_balance.return_value = self.balance_holding(
            mock_user_id, "dsc_lost", datetime.now(UTC) - timedelta(minutes=10)
        )

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.success is True
        mock_points_repo.release_discount_slot.assert_called_once_with(mock_user_id, "dsc_lost")

    @pytest.mark.asyncio
    async def test_claim_without_timestamp_is_released(
        self,
        rewards_service: RewardsService,
        mock_points_repo: MagicMock,
        mock_user_id: str,
    ) -> None:
        mock_points_repo.get_balance.return_value = self.balance_holding(
            mock_user_id, "dsc_lost", None
        )

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.success is True

    @pytest.mark.asyncio
    async def test_redemption_in_progress_is_respected(
        self,
        rewards_service: RewardsService,
        mock_points_repo: MagicMock,
        mock_user_id: str,
    ) -> None:
        """Test a claim whose discount record may still be written is left alone."""
        mock_points_repo.get_balance.return_value = self.balance_holding(
            mock_user_id, "dsc_pending", datetime.now(UTC) - timedelta(seconds=20)
        )

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.rejection == RedemptionRejection.ALREADY_HAS_ACTIVE_DISCOUNT
        mock_points_repo.release_discount_slot.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_slot_release_failure(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_points_repo: MagicMock,
        sample_discount: ActiveDiscount,
        mock_user_id: str,
    ) -> None:
        mock_points_repo.get_balance.return_value = self.balance_holding(
            mock_user_id, "dsc_abc", sample_discount.created_at
        )
        mock_discount_repo.get_discount.return_value = sample_discount.model_copy(
            update={"used": True, "order_id": "ord_1"}
        )
        mock_points_repo.release_discount_slot.return_value = False

        result = await rewards_service.redeem(mock_user_id, "rew_20")

        assert result.rejection == RedemptionRejection.STORAGE_ERROR
        mock_points_repo.claim_discount_slot.assert_not_called()

    @pytest.mark.asyncio
    async def test_discount_survives_reward_removal(
        self,
        rewards_service: RewardsService,
        mock_discount_repo: MagicMock,
        mock_reward_repo: MagicMock,
        sample_discount: ActiveDiscount,
        mock_user_id: str,
    ) -> None:
        """Test terms copied at redemption keep the discount usable after the reward is gone."""
        mock_discount_repo.get_unused_discount.return_value = sample_discount.model_copy(
            update={"reward_name": "20% off", "discount_percentage": Decimal("20")}
        )
        mock_reward_repo.get_reward.return_value = None

        applied = await rewards_service.get_active_discount(mock_user_id)

        assert applied is not None
        assert applied.reward_name == "20% off"
        assert applied.discount_percentage == Decimal("20")
        mock_reward_repo.get_reward.assert_not_called()


@pytest.mark.unit
class TestRewardCatalog:
    """Test suite for back-office catalog management."""

    @pytest.fixture
    def mock_reward_repo(self, sample_reward: RewardDefinition) -> MagicMock:
        repo = MagicMock(spec=RewardRepository)
        repo.get_reward.return_value = sample_reward.model_copy(update={"active": False})
        repo.save_reward.return_value = True
        repo.set_reward_active.return_value = True
        return repo

    @pytest.fixture
    def rewards_service(self, mock_reward_repo: MagicMock) -> RewardsService:
        return RewardsService(
            reward_repository=mock_reward_repo,
            discount_repository=MagicMock(spec=ActiveDiscountRepository),
            points_repository=MagicMock(spec=PointsBalanceRepository),
        )

    @pytest.mark.asyncio
    async def test_list_catalog(
        self, rewards_service: RewardsService, mock_reward_repo: MagicMock
    ) -> None:
        mock_reward_repo.list_all_rewards.return_value = []

        assert await rewards_service.list_catalog() == []
        mock_reward_repo.list_all_rewards.assert_called_once()

    @pytest.mark.asyncio
    async def test_create_reward(
        self, rewards_service: RewardsService, mock_reward_repo: MagicMock
    ) -> None:
        result = await rewards_service.create_reward("10% off", 50, Decimal("10"))

        assert result.success is True
        assert result.reward is not None
        assert result.reward.reward_id.startswith("rew_")
        assert result.reward.active is True
        mock_reward_repo.save_reward.assert_called_once_with(result.reward)

    @pytest.mark.asyncio
    async def test_create_reward_storage_failure(
        self, rewards_service: RewardsService, mock_reward_repo: MagicMock
    ) -> None:
        mock_reward_repo.save_reward.return_value = False

        result = await rewards_service.create_reward("10% off", 50, Decimal("10"))

        assert result.success is False
        assert result.not_found is False

    @pytest.mark.asyncio
    async def test_update_keeps_active_flag(
        self, rewards_service: RewardsService, mock_reward_repo: MagicMock
    ) -> None:
        result = await rewards_service.update_reward("rew_20", "25% off", 120, Decimal("25"))

        assert result.success is True
        assert result.reward is not None
        assert result.reward.points_required == 120
        assert result.reward.active is False

    @pytest.mark.asyncio
    async def test_update_unknown_reward(
        self, rewards_service: RewardsService, mock_reward_repo: MagicMock
    ) -> None:
        mock_reward_repo.get_reward.return_value = None

        result = await rewards_service.update_reward("rew_x", "x", 10, Decimal("5"))

        assert result.not_found is True
        mock_reward_repo.save_reward.assert_not_called()

    @pytest.mark.asyncio
    async def test_reactivate_reward(
        self, rewards_service: RewardsService, mock_reward_repo: MagicMock
    ) -> None:
        result = await rewards_service.set_reward_active("rew_20", True)

        assert result.success is True
        assert result.reward is not None and result.reward.active is True
        mock_reward_repo.set_reward_active.assert_called_once_with("rew_20", True)

    @pytest.mark.asyncio
    async def test_deactivate_unknown_reward(
        self, rewards_service: RewardsService, mock_reward_repo: MagicMock
    ) -> None:
        mock_reward_repo.get_reward.return_value = None

        result = await rewards_service.set_reward_active("rew_x", False)

        assert result.not_found is True
        mock_reward_repo.set_reward_active.assert_not_called()
