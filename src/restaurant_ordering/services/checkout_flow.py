"""Checkout state machine for one customer session.

Registered customers go through::

    summary -> method_selection -> payment_detail -> awaiting_confirmation -> confirmed

where the last transition happens when the restaurant confirms the order.
Guests ordering from a table go straight from payment_detail to confirmed
once the order is created.
"""

import logging
import uuid
from decimal import Decimal
from enum import Enum

from pydantic import ValidationError

from restaurant_ordering.models.order_models import (
    ORDER_STATUS_SEQUENCE,
    GuestInfo,
    Order,
    OrderStatusChange,
    OrderStatusEnum,
    OrderTotals,
    PaymentMethod,
)
from restaurant_ordering.models.rewards_models import AppliedDiscount
from restaurant_ordering.services.cart import Cart
from restaurant_ordering.services.checkout_service import (
    CheckoutRequest,
    CheckoutResult,
    CheckoutService,
    ReceiptUpload,
)
from restaurant_ordering.services.order_notifier import OrderStatusNotifier, Subscription

logger = logging.getLogger(__name__)

# Any of these means the restaurant accepted the order
CONFIRMED_STATUSES = frozenset(ORDER_STATUS_SEQUENCE[1:])


class CheckoutStep(str, Enum):
    """Steps of the checkout flow."""

    SUMMARY = "summary"
    METHOD_SELECTION = "method_selection"
    PAYMENT_DETAIL = "payment_detail"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"


class CheckoutValidationError(Exception):
    """Customer input that blocks a transition, keyed by field."""

    def __init__(self, field_errors: dict[str, str]) -> None:
        self.field_errors = field_errors
        super().__init__("; ".join(f"{name}: {message}" for name, message in field_errors.items()))


class InvalidCheckoutStepError(Exception):
    """Action not allowed in the flow's current step."""


def guest_field_errors(error: ValidationError) -> dict[str, str]:
    """Map GuestInfo validation errors to the checkout form fields."""
    field_names = {"name": "guest_name", "phone": "guest_phone"}
    errors: dict[str, str] = {}
    for detail in error.errors():
        location = str(detail["loc"][0]) if detail["loc"] else "guest"
        message = detail["msg"].removeprefix("Value error, ")
        errors.setdefault(field_names.get(location, location), message)
    return errors


def _discount_id(applied: AppliedDiscount | None) -> str | None:
    return applied.discount.discount_id if applied else None


class CheckoutFlow:
    """Drives one checkout from order summary to confirmation.

    The flow owns no persistence: it validates each transition and hands the
    final submission to CheckoutService. While a registered customer waits for
    the restaurant, the flow listens to the notifier; close() stops listening.
    """

    def __init__(
        self,
        cart: Cart,
        checkout_service: CheckoutService,
        notifier: OrderStatusNotifier,
        user_id: str | None = None,
        table_number: int | None = None,
        applied_discount: AppliedDiscount | None = None,
        session_id: str | None = None,
    ) -> None:
        """Initialize the checkout flow.

        Args:
            cart: Cart of the session, shared by reference
            checkout_service: Service placing the order on submission
            notifier: Hub delivering order status changes
            user_id: Registered customer, None for a guest at a table
            table_number: Table the customer is ordering from
            applied_discount: Active discount of a registered customer

        Raises:
            ValueError: If neither a user nor a table is given
        """
        if user_id is None and table_number is None:
            raise ValueError("A checkout needs a registered user or a table number")

        self.session_id = session_id or f"chk_{uuid.uuid4().hex[:16]}"
        self.cart = cart
        self.checkout_service = checkout_service
        self.notifier = notifier
        self.user_id = user_id
        self.table_number = table_number
        self.applied_discount = applied_discount if user_id is not None else None

        self.step = CheckoutStep.SUMMARY
        self.guest: GuestInfo | None = None
        self.payment_method: PaymentMethod | None = None
        self.receipt: ReceiptUpload | None = None
        self.tendered_amount: Decimal | None = None
        self.order: Order | None = None
        self.order_status: OrderStatusEnum | None = None
        self.is_submitting = False
        self.last_error: str | None = None
        self._subscription: Subscription | None = None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def is_finished(self) -> bool:
        """Whether the restaurant has confirmed or cancelled the placed order."""
        return self.step == CheckoutStep.CONFIRMED or self.order_status == OrderStatusEnum.CANCELLED

    @property
    def totals(self) -> OrderTotals:
        """Totals of the current cart, or of the placed order once submitted."""
        if self.order is not None:
            return OrderTotals(
                subtotal=self.order.subtotal,
                discount_amount=self.order.discount_amount,
                total=self.order.total,
            )

        percentage = self.applied_discount.discount_percentage if self.applied_discount else 0
        return OrderTotals.from_subtotal(self.cart.subtotal, percentage)

    @property
    def change_due(self) -> Decimal | None:
        """Change to return for a cash payment, when the tendered amount is known."""
        if self.payment_method != PaymentMethod.CASH_ON_DELIVERY or self.tendered_amount is None:
            return None
        return self.tendered_amount - self.totals.total

    @property
    def can_submit(self) -> bool:
        """Whether the confirm control should be enabled."""
        if self.step != CheckoutStep.PAYMENT_DETAIL or self.is_submitting:
            return False
        return not self._payment_errors()

    def proceed(self, guest_name: str | None = None, guest_phone: str | None = None) -> None:
        """Leave the order summary for payment method selection.

        Args:
            guest_name: Guest's name (guest flow only)
            guest_phone: Guest's optional 9-digit phone (guest flow only)

        Raises:
            InvalidCheckoutStepError: If not at the summary step
            CheckoutValidationError: If the cart is empty or guest data is invalid
        """
        self._require_step(CheckoutStep.SUMMARY)

        if self.cart.is_empty:
            raise CheckoutValidationError({"cart": "Your cart is empty"})

        if self.is_guest:
            try:
                self.guest = GuestInfo(name=guest_name or "", phone=guest_phone)
            except ValidationError as e:
                raise CheckoutValidationError(guest_field_errors(e)) from e

        self.step = CheckoutStep.METHOD_SELECTION

    def select_payment_method(self, method: PaymentMethod) -> None:
        """Choose how to pay and move to the payment details.

        Cash pre-fills the tendered amount with the exact total.

        Raises:
            InvalidCheckoutStepError: If not at the method selection step
        """
        self._require_step(CheckoutStep.METHOD_SELECTION)

        self.payment_method = PaymentMethod(method)
        self.receipt = None
        if self.payment_method == PaymentMethod.CASH_ON_DELIVERY:
            self.tendered_amount = self.totals.total
        else:
            self.tendered_amount = None

        self.step = CheckoutStep.PAYMENT_DETAIL

    def back(self) -> None:
        """Return to the previous step.

        Raises:
            InvalidCheckoutStepError: If there is no previous step to go to
        """
        if self.step == CheckoutStep.PAYMENT_DETAIL and not self.is_submitting:
            self.step = CheckoutStep.METHOD_SELECTION
        elif self.step == CheckoutStep.METHOD_SELECTION:
            self.step = CheckoutStep.SUMMARY
        else:
            raise InvalidCheckoutStepError(f"Cannot go back from {self.step.value}")

    def attach_receipt(self, content: bytes, content_type: str, filename: str) -> None:
        """Attach the digital wallet payment receipt.

        Raises:
            InvalidCheckoutStepError: If not paying by digital wallet
            CheckoutValidationError: If the file is not an image or too large
        """
        self._require_step(CheckoutStep.PAYMENT_DETAIL)
        if self.payment_method != PaymentMethod.DIGITAL_WALLET_QR:
            raise InvalidCheckoutStepError("Receipts are only needed for digital wallet payments")

        receipt = ReceiptUpload(content=content, content_type=content_type, filename=filename)
        error = receipt.validation_error()
        if error:
            raise CheckoutValidationError({"receipt": error})

        self.receipt = receipt

    def set_tendered_amount(self, amount: Decimal) -> None:
        """Record how much cash the customer will hand over.

        Raises:
            InvalidCheckoutStepError: If not paying cash on delivery
            CheckoutValidationError: If the amount is negative
        """
        self._require_step(CheckoutStep.PAYMENT_DETAIL)
        if self.payment_method != PaymentMethod.CASH_ON_DELIVERY:
            raise InvalidCheckoutStepError("A tendered amount only applies to cash payments")

        if amount < 0:
            raise CheckoutValidationError({"tendered_amount": "The amount cannot be negative"})

        self.tendered_amount = amount

    async def submit(self) -> CheckoutResult:
        """Place the order.

        Validation happens before anything is written. On success the cart is
        cleared; on failure the cart and step are kept so the customer can
        retry.

        Returns:
            CheckoutResult from the checkout service

        Raises:
            InvalidCheckoutStepError: If not at payment details or already submitting
            CheckoutValidationError: If the payment details are incomplete, or the
                customer's discount changed since the totals were shown
        """
        self._require_step(CheckoutStep.PAYMENT_DETAIL)
        if self.is_submitting:
            raise InvalidCheckoutStepError("This order is already being submitted")

        errors = self._payment_errors()
        if errors:
            raise CheckoutValidationError(errors)

        method = self.payment_method
        if method is None:
            raise InvalidCheckoutStepError("Select a payment method first")

        self.is_submitting = True
        self.last_error = None
        try:
            if self.user_id is not None:
                await self._refresh_discount(self.user_id)

            request = CheckoutRequest(
                items=self.cart.items,
                payment_method=method,
                totals=self.totals,
                user_id=self.user_id,
                guest=self.guest,
                table_number=self.table_number,
                receipt=self.receipt,
                tendered_amount=self.tendered_amount,
                discount=self.applied_discount.discount if self.applied_discount else None,
            )
            result = await self.checkout_service.place_order(request)
        finally:
            self.is_submitting = False

        if not result.success or result.order is None:
            self.last_error = result.error_message
            if result.failed_step == "discount_already_used" and self.user_id is not None:
                self.applied_discount = await self.checkout_service.current_discount(self.user_id)
            return result

        self.order = result.order
        self.order_status = result.order.status
        self.cart.clear()
        self.receipt = None

        if self.is_guest:
            self.step = CheckoutStep.CONFIRMED
        else:
            self.step = CheckoutStep.AWAITING_CONFIRMATION
            self._subscription = self.notifier.subscribe(
                result.order.order_id, self.handle_status_change
            )

        return result

    async def handle_status_change(self, change: OrderStatusChange) -> None:
        """React to a status change of the placed order."""
        if self.order is None or change.order_id != self.order.order_id:
            return

        self.order_status = change.status
        if self.step != CheckoutStep.AWAITING_CONFIRMATION:
            return

        if change.status in CONFIRMED_STATUSES:
            self.step = CheckoutStep.CONFIRMED
            logger.info(f"Order {change.order_id} confirmed by the restaurant")
            self._unsubscribe()
        elif change.status == OrderStatusEnum.CANCELLED:
            self.last_error = "The restaurant cancelled your order"
            self._unsubscribe()

    async def _refresh_discount(self, user_id: str) -> None:
        """Re-read the customer's discount; a different one means different totals."""
        current = await self.checkout_service.current_discount(user_id)
        shown = self.applied_discount
        if _discount_id(current) == _discount_id(shown):
            return

        self.applied_discount = current
        if current is None:
            message = "Your discount is no longer available. Please review the new total."
        else:
            message = "A discount was applied to your order. Please review the new total."
        logger.info(f"Discount of user {user_id} changed before submission")
        raise CheckoutValidationError({"discount": message})

    def close(self) -> None:
        """Stop listening for status changes; the order itself is unaffected."""
        self._unsubscribe()

    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _require_step(self, step: CheckoutStep) -> None:
        if self.step != step:
            raise InvalidCheckoutStepError(
                f"Action requires step {step.value}, checkout is at {self.step.value}"
            )

    def _payment_errors(self) -> dict[str, str]:
        if self.cart.is_empty:
            return {"cart": "Your cart is empty"}

        if self.payment_method == PaymentMethod.DIGITAL_WALLET_QR and self.receipt is None:
            return {"receipt": "Please upload the payment receipt"}

        if self.payment_method == PaymentMethod.CASH_ON_DELIVERY:
            if self.tendered_amount is None or self.tendered_amount < self.totals.total:
                return {"tendered_amount": "The amount must be equal to or greater than the total"}

        return {}
