"""Checkout service for placing orders.

Placing an order is a fixed sequence of writes, each started only after the
previous one succeeded because later steps need identifiers produced by
earlier ones:

1. Upload the payment receipt (digital wallet payments only)
2. Insert the order record
3. Insert the order items in one batch
4. Mark the applied discount as used

A failure in steps 1-2 aborts the submission. A failure in step 3 deletes the
order record again before aborting. In step 4 a discount already taken by
another order rolls the order back, since its total assumed that discount;
any other failure there is logged and the order is still reported as placed.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from restaurant_ordering.models.order_models import (
    CartItem,
    GuestInfo,
    Order,
    OrderItem,
    OrderStatusEnum,
    OrderTotals,
    PaymentMethod,
)
from restaurant_ordering.models.rewards_models import ActiveDiscount, AppliedDiscount
from restaurant_ordering.observability.decorators import traced
from restaurant_ordering.observability.metrics import (
    record_checkout_failure,
    record_discount_consume_failure,
    record_order_placed,
)
from restaurant_ordering.repositories.operations_repositories import TableAssignmentRepository
from restaurant_ordering.repositories.order_repositories import (
    OrderItemRepository,
    OrderRepository,
)
from restaurant_ordering.services.receipt_storage import MAX_RECEIPT_BYTES, ReceiptStorage
from restaurant_ordering.services.rewards_service import DiscountConsumption, RewardsService

logger = logging.getLogger(__name__)

GENERIC_CHECKOUT_ERROR = "We could not place your order. Please try again."
DISCOUNT_USED_ERROR = (
    "Your discount was already used on another order. Please review the new total."
)
GUEST_RECEIPT_FOLDER = "invitados"


@dataclass
class ReceiptUpload:
    """Payment receipt image attached at checkout."""

    content: bytes
    content_type: str
    filename: str

    @property
    def extension(self) -> str:
        if "." in self.filename:
            return self.filename.rsplit(".", 1)[-1].lower()
        return self.content_type.split("/", 1)[-1].lower()

    def validation_error(self) -> str | None:
        """Check the upload constraints.

        Returns:
            User-facing message if the receipt is not acceptable, None otherwise
        """
        if not self.content_type.startswith("image/"):
            return "Only images are allowed"
        if not self.content:
            return "The image is empty"
        if len(self.content) > MAX_RECEIPT_BYTES:
            return "The image must not exceed 5MB"
        return None


@dataclass
class CheckoutRequest:
    """Everything needed to place an order.

    Attributes:
        items: Cart lines, with prices as shown to the customer
        payment_method: Selected payment method
        totals: Subtotal, discount and total of the order
        user_id: Registered customer, None for guest orders
        guest: Guest identity for guest orders
        table_number: Table the order was placed from, if any
        receipt: Receipt image for digital wallet payments
        tendered_amount: Cash the customer will hand over
        discount: Active discount applied to the totals
    """

    items: list[CartItem]
    payment_method: PaymentMethod
    totals: OrderTotals
    user_id: str | None = None
    guest: GuestInfo | None = None
    table_number: int | None = None
    receipt: ReceiptUpload | None = None
    tendered_amount: Decimal | None = None
    discount: ActiveDiscount | None = None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


@dataclass
class CheckoutResult:
    """Result of placing an order.

    Attributes:
        success: Whether the order was created
        order: The created order on success
        error_message: User-facing retryable message on failure
        failed_step: Name of the step that failed, None on success
        discount_consumed: Whether the applied discount was marked as used
        warnings: Problems that did not prevent the order
    """

    success: bool
    order: Order | None = None
    error_message: str | None = None
    failed_step: str | None = None
    discount_consumed: bool = False
    warnings: list[str] = field(default_factory=list)


class CheckoutService:
    """Service that persists orders submitted from a checkout flow."""

    def __init__(
        self,
        order_repository: OrderRepository,
        order_item_repository: OrderItemRepository,
        assignment_repository: TableAssignmentRepository,
        receipt_storage: ReceiptStorage,
        rewards_service: RewardsService,
    ) -> None:
        """Initialize the CheckoutService.

        Args:
            order_repository: Repository for orders
            order_item_repository: Repository for order items
            assignment_repository: Repository for waiter table assignments
            receipt_storage: Storage for payment receipts
            rewards_service: Rewards ledger consuming applied discounts
        """
        self.order_repository = order_repository
        self.order_item_repository = order_item_repository
        self.assignment_repository = assignment_repository
        self.receipt_storage = receipt_storage
        self.rewards_service = rewards_service

    @traced("checkout.place_order")
    async def place_order(self, request: CheckoutRequest) -> CheckoutResult:
        """Persist an order and its items.

        Args:
            request: The validated checkout submission

        Returns:
            CheckoutResult with the created order or a retryable error
        """
        created_at = datetime.now(UTC)
        order_id = str(uuid.uuid4())

        # Step 1: Upload receipt
        receipt_path = None
        if request.receipt is not None:
            receipt_path = await self._upload_receipt(request.receipt, request.user_id, created_at)
            if receipt_path is None:
                return self._failed("receipt_upload")

        # Guests are served by whichever waiter has their table today
        waiter_id = None
        if request.is_guest and request.table_number is not None:
            waiter_id = self.assignment_repository.find_waiter_for_table(
                created_at.date(), request.table_number
            )
            if waiter_id is None:
                logger.info(f"No waiter assigned to table {request.table_number} today")

        # Step 2: Insert order
        order = Order(
            order_id=order_id,
            user_id=request.user_id,
            is_guest=request.is_guest,
            guest_name=request.guest.name if request.guest else None,
            guest_phone=request.guest.phone if request.guest else None,
            table_number=request.table_number,
            waiter_id=waiter_id,
            subtotal=request.totals.subtotal,
            discount_amount=request.totals.discount_amount,
            total=request.totals.total,
            payment_method=request.payment_method,
            status=OrderStatusEnum.PENDING,
            receipt_path=receipt_path,
            tendered_amount=request.tendered_amount,
            points_awarded=0 if request.is_guest else request.totals.points,
            created_at=created_at,
        )

        if not self.order_repository.save_order(order):
            return self._failed("order_insert")

        # Step 3: Insert order items
        order_items = [
            OrderItem(
                order_id=order_id,
                product_id=item.id,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in request.items
        ]

        if not self.order_item_repository.save_items(order_items):
            self._remove_order(order_id, [])
            return self._failed("order_items_insert")

        # Step 4: Consume discount
        result = CheckoutResult(success=True, order=order)
        if request.discount is not None:
            consumption = await self.rewards_service.consume_discount(request.discount, order_id)
            if consumption == DiscountConsumption.ALREADY_USED:
                self._remove_order(order_id, [item.product_id for item in order_items])
                return self._failed("discount_already_used", DISCOUNT_USED_ERROR)

            result.discount_consumed = consumption == DiscountConsumption.CONSUMED
            if not result.discount_consumed:
                logger.error(
                    f"Order {order_id} was placed but discount "
                    f"{request.discount.discount_id} could not be marked as used"
                )
                record_discount_consume_failure()
                result.warnings.append("discount_not_consumed")

        record_order_placed(order.payment_method.value, order.is_guest, float(order.total))
        logger.info(
            f"Order {order_id} placed: total {order.total}, "
            f"method {order.payment_method.value}, guest {order.is_guest}"
        )
        return result

    async def current_discount(self, user_id: str) -> AppliedDiscount | None:
        """Read the discount a registered user would get right now."""
        return await self.rewards_service.get_active_discount(user_id)

    async def _upload_receipt(
        self, receipt: ReceiptUpload, user_id: str | None, created_at: datetime
    ) -> str | None:
        """Upload a receipt under its owner's folder."""
        folder = user_id or GUEST_RECEIPT_FOLDER
        timestamp_ms = int(created_at.timestamp() * 1000)
        path = f"{folder}/{timestamp_ms}.{receipt.extension}"
        return self.receipt_storage.upload_receipt(path, receipt.content, receipt.content_type)

    def _remove_order(self, order_id: str, product_ids: list[str]) -> None:
        """Undo the writes of steps 2-3."""
        if product_ids and not self.order_item_repository.delete_items(order_id, product_ids):
            logger.error(f"Items of order {order_id} could not be removed")
        if not self.order_repository.delete_order(order_id):
            logger.error(f"Order {order_id} could not be removed")

    def _failed(self, step: str, message: str = GENERIC_CHECKOUT_ERROR) -> CheckoutResult:
        logger.error(f"Checkout failed at step {step}")
        record_checkout_failure(step)
        return CheckoutResult(success=False, error_message=message, failed_step=step)
