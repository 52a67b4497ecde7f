"""FastAPI application for the ordering API."""

import logging
from datetime import UTC, date, datetime
from decimal import Decimal

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, ValidationError

from restaurant_ordering.auth.api_dependencies import (
    get_api_key_from_header,
    get_optional_user_id,
    get_user_id_from_header,
)
from restaurant_ordering.auth.api_key_validator import APIKeyValidator
from restaurant_ordering.models.operations_models import CashRegisterClosing, TableAssignment
from restaurant_ordering.models.order_models import (
    CartItem,
    Order,
    OrderStatusEnum,
    PaymentMethod,
)
from restaurant_ordering.models.rewards_models import RewardDefinition
from restaurant_ordering.services.cart import Cart
from restaurant_ordering.services.cash_register_service import CashRegisterService
from restaurant_ordering.services.checkout_flow import (
    CheckoutFlow,
    CheckoutValidationError,
    InvalidCheckoutStepError,
)
from restaurant_ordering.services.checkout_service import CheckoutService
from restaurant_ordering.services.checkout_sessions import CheckoutSessionStore
from restaurant_ordering.services.order_notifier import OrderStatusNotifier
from restaurant_ordering.services.order_service import (
    OrderService,
    OrderUpdateRejection,
    OrderUpdateResult,
)
from restaurant_ordering.services.rewards_service import (
    CatalogResult,
    RedemptionRejection,
    RewardsService,
)
from restaurant_ordering.services.table_assignment_service import TableAssignmentService
from restaurant_ordering.services.table_codes import TableCodeResolver

logger = logging.getLogger(__name__)

REDEMPTION_STATUS_CODES: dict[RedemptionRejection, int] = {
    RedemptionRejection.REWARD_NOT_FOUND: 404,
    RedemptionRejection.ALREADY_HAS_ACTIVE_DISCOUNT: 409,
    RedemptionRejection.INSUFFICIENT_POINTS: 409,
    RedemptionRejection.CONFLICT: 409,
    RedemptionRejection.STORAGE_ERROR: 503,
}


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str


class TableResponse(BaseModel):
    table_number: int


class TableCodeResponse(BaseModel):
    table_number: int
    code: str


class CreateSessionRequest(BaseModel):
    """Request body opening a checkout session.

    Guests pass the code scanned from their table; registered customers may
    pass one too when ordering from a table.
    """

    items: list[CartItem] = Field(default_factory=list)
    table_code: str | None = None


class ProceedRequest(BaseModel):
    guest_name: str | None = None
    guest_phone: str | None = None


class PaymentMethodRequest(BaseModel):
    payment_method: PaymentMethod


class TenderedAmountRequest(BaseModel):
    amount: Decimal


class CheckoutSessionResponse(BaseModel):
    """Snapshot of a checkout session as shown to the customer."""

    session_id: str
    step: str
    is_guest: bool
    table_number: int | None = None
    items: list[CartItem]
    subtotal: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    total: Decimal
    points_to_earn: int
    reward_name: str | None = None
    payment_method: PaymentMethod | None = None
    tendered_amount: Decimal | None = None
    change_due: Decimal | None = None
    has_receipt: bool
    can_submit: bool
    is_submitting: bool
    order_id: str | None = None
    order_status: OrderStatusEnum | None = None
    last_error: str | None = None

    @classmethod
    def from_flow(cls, flow: CheckoutFlow) -> "CheckoutSessionResponse":
        totals = flow.totals
        return cls(
            session_id=flow.session_id,
            step=flow.step.value,
            is_guest=flow.is_guest,
            table_number=flow.table_number,
            items=flow.cart.items,
            subtotal=totals.subtotal,
            discount_percentage=(
                flow.applied_discount.discount_percentage if flow.applied_discount else Decimal("0")
            ),
            discount_amount=totals.discount_amount,
            total=totals.total,
            points_to_earn=0 if flow.is_guest else totals.points,
            reward_name=flow.applied_discount.reward_name if flow.applied_discount else None,
            payment_method=flow.payment_method,
            tendered_amount=flow.tendered_amount,
            change_due=flow.change_due,
            has_receipt=flow.receipt is not None,
            can_submit=flow.can_submit,
            is_submitting=flow.is_submitting,
            order_id=flow.order.order_id if flow.order else None,
            order_status=flow.order_status,
            last_error=flow.last_error,
        )


class ActiveDiscountResponse(BaseModel):
    discount_id: str
    reward_id: str
    reward_name: str
    discount_percentage: Decimal


class RewardsSummaryResponse(BaseModel):
    """A customer's points and active discount."""

    user_id: str
    points: int
    active_discount: ActiveDiscountResponse | None = None


class CancelOrderRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ReceiptUrlResponse(BaseModel):
    order_id: str
    url: str
    expires_in: int


class CloseDayRequest(BaseModel):
    closing_date: date
    created_by: str | None = None


class RewardRequest(BaseModel):
    """Terms of a catalog reward."""

    name: str = Field(..., min_length=1, max_length=100)
    points_required: int = Field(..., gt=0)
    discount_percentage: Decimal = Field(..., gt=0, le=100)


class AssignmentRequest(BaseModel):
    assignment_date: date
    waiter_id: str = Field(..., min_length=1)
    first_table: int
    last_table: int
    shift: str = "completo"


def create_app(
    checkout_service: CheckoutService,
    rewards_service: RewardsService,
    order_service: OrderService,
    cash_register_service: CashRegisterService,
    table_assignment_service: TableAssignmentService,
    table_code_resolver: TableCodeResolver,
    notifier: OrderStatusNotifier,
    api_keys: list[str],
    session_store: CheckoutSessionStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        checkout_service: Service placing orders
        rewards_service: Rewards ledger
        order_service: Back-office order management
        cash_register_service: Daily cash register closing
        table_assignment_service: Daily waiter table assignments
        table_code_resolver: Resolver for table QR codes
        notifier: Hub delivering order status changes to checkout sessions
        api_keys: List of valid API keys for the admin endpoints
        session_store: Registry of open checkout sessions, one with default
            time to live if omitted

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Restaurant Ordering API",
        description="Cart checkout, table ordering, rewards and back-office operations",
        version="1.0.0",
    )

    # Store services in app state for access in route handlers
    app.state.checkout_service = checkout_service
    app.state.rewards_service = rewards_service
    app.state.order_service = order_service
    app.state.cash_register_service = cash_register_service
    app.state.table_code_resolver = table_code_resolver
    app.state.table_assignment_service = table_assignment_service
    app.state.notifier = notifier
    app.state.api_key_validator = APIKeyValidator(api_keys=api_keys)
    app.state.checkout_sessions = (
        session_store if session_store is not None else CheckoutSessionStore()
    )

    @app.exception_handler(CheckoutValidationError)
    async def checkout_validation_error(
        _request: Request, exc: CheckoutValidationError
    ) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.field_errors})

    @app.exception_handler(InvalidCheckoutStepError)
    async def invalid_checkout_step(_request: Request, exc: InvalidCheckoutStepError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    def validate_api_key(x_api_key: str | None = Header(None)) -> str:
        """Dependency to validate API key."""
        return get_api_key_from_header(x_api_key=x_api_key, validator=app.state.api_key_validator)

    def get_session(session_id: str, user_id: str | None) -> CheckoutFlow:
        flow: CheckoutFlow | None = app.state.checkout_sessions.get(session_id)
        # A registered customer's session is only visible to that customer
        if flow is None or (flow.user_id is not None and flow.user_id != user_id):
            raise HTTPException(status_code=404, detail="Checkout session not found")
        return flow

    def raise_for_order_update(result: OrderUpdateResult, order_id: str) -> Order:
        if result.success and result.order is not None:
            return result.order
        if result.rejection == OrderUpdateRejection.NOT_FOUND:
            raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
        if result.rejection == OrderUpdateRejection.TERMINAL_STATUS:
            raise HTTPException(status_code=409, detail="The order can no longer change status")
        raise HTTPException(
            status_code=409, detail="The order changed in the meantime. Please reload it."
        )

    def raise_for_catalog_change(
        result: CatalogResult, reward_id: str | None = None
    ) -> RewardDefinition:
        if result.success and result.reward is not None:
            return result.reward
        if result.not_found:
            raise HTTPException(status_code=404, detail=f"Reward {reward_id} not found")
        raise HTTPException(
            status_code=503, detail="The reward could not be saved. Please try again."
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        return HealthResponse(status="healthy")

    @app.get("/tables/{code}", response_model=TableResponse, tags=["Tables"])
    async def resolve_table(code: str) -> TableResponse:
        """Resolve the code scanned from a table's QR.

        Raises:
            HTTPException: 404 if the code does not belong to any table
        """
        table_number = app.state.table_code_resolver.decode(code)
        if table_number is None:
            raise HTTPException(status_code=404, detail="Table not found")
        return TableResponse(table_number=table_number)

    @app.post(
        "/checkout/sessions",
        response_model=CheckoutSessionResponse,
        status_code=201,
        tags=["Checkout"],
    )
    async def create_checkout_session(
        body: CreateSessionRequest,
        user_id: str | None = Depends(get_optional_user_id),
    ) -> CheckoutSessionResponse:
        """Open a checkout session with the customer's cart.

        Raises:
            HTTPException: 404 for an unknown table code, 401 for an
                anonymous caller without a table
        """
        table_number = None
        if body.table_code is not None:
            table_number = app.state.table_code_resolver.decode(body.table_code)
            if table_number is None:
                raise HTTPException(status_code=404, detail="Table not found")

        if user_id is None and table_number is None:
            raise HTTPException(status_code=401, detail="Sign in or scan your table's code")

        applied_discount = None
        if user_id is not None:
            applied_discount = await app.state.rewards_service.get_active_discount(user_id)

        cart = Cart()
        cart.add_items(body.items)

        flow = CheckoutFlow(
            cart=cart,
            checkout_service=app.state.checkout_service,
            notifier=app.state.notifier,
            user_id=user_id,
            table_number=table_number,
            applied_discount=applied_discount,
        )
        app.state.checkout_sessions.add(flow)

        logger.info(
            f"Checkout session {flow.session_id} opened "
            f"({'guest at table ' + str(table_number) if flow.is_guest else 'user ' + str(user_id)})"
        )
        return CheckoutSessionResponse.from_flow(flow)

    @app.get(
        "/checkout/sessions/{session_id}",
        response_model=CheckoutSessionResponse,
        tags=["Checkout"],
    )
    async def get_checkout_session(
        session_id: str,
        user_id: str | None = Depends(get_optional_user_id),
    ) -> CheckoutSessionResponse:
        return CheckoutSessionResponse.from_flow(get_session(session_id, user_id))

    @app.post(
        "/checkout/sessions/{session_id}/proceed",
        response_model=CheckoutSessionResponse,
        tags=["Checkout"],
    )
    async def proceed_to_payment(
        session_id: str,
        body: ProceedRequest,
        user_id: str | None = Depends(get_optional_user_id),
    ) -> CheckoutSessionResponse:
        flow = get_session(session_id, user_id)
        flow.proceed(guest_name=body.guest_name, guest_phone=body.guest_phone)
        return CheckoutSessionResponse.from_flow(flow)

    @app.post(
        "/checkout/sessions/{session_id}/payment-method",
        response_model=CheckoutSessionResponse,
        tags=["Checkout"],
    )
    async def select_payment_method(
        session_id: str,
        body: PaymentMethodRequest,
        user_id: str | None = Depends(get_optional_user_id),
    ) -> CheckoutSessionResponse:
        flow = get_session(session_id, user_id)
        flow.select_payment_method(body.payment_method)
        return CheckoutSessionResponse.from_flow(flow)

    @app.post(
        "/checkout/sessions/{session_id}/back",
        response_model=CheckoutSessionResponse,
        tags=["Checkout"],
    )
    async def go_back(
        session_id: str,
        user_id: str | None = Depends(get_optional_user_id),
    ) -> CheckoutSessionResponse:
        flow = get_session(session_id, user_id)
        flow.back()
        return CheckoutSessionResponse.from_flow(flow)

    @app.post(
        "/checkout/sessions/{session_id}/receipt",
        response_model=CheckoutSessionResponse,
        tags=["Checkout"],
    )
    async def attach_receipt(
        session_id: str,
        file: UploadFile = File(...),
        user_id: str | None = Depends(get_optional_user_id),
    ) -> CheckoutSessionResponse:
        """Attach the digital wallet payment receipt image."""
        flow = get_session(session_id, user_id)
        content = await file.read()
        flow.attach_receipt(content, file.content_type or "", file.filename or "")
        return CheckoutSessionResponse.from_flow(flow)

    @app.post(
        "/checkout/sessions/{session_id}/tendered",
        response_model=CheckoutSessionResponse,
        tags=["Checkout"],
    )
    async def set_tendered_amount(
        session_id: str,
        body: TenderedAmountRequest,
        user_id: str | None = Depends(get_optional_user_id),
    ) -> CheckoutSessionResponse:
        flow = get_session(session_id, user_id)
        flow.set_tendered_amount(body.amount)
        return CheckoutSessionResponse.from_flow(flow)

    @app.post(
        "/checkout/sessions/{session_id}/submit",
        response_model=CheckoutSessionResponse,
        tags=["Checkout"],
    )
    async def submit_order(
        session_id: str,
        user_id: str | None = Depends(get_optional_user_id),
    ) -> CheckoutSessionResponse:
        """Place the order.

        Raises:
            HTTPException: 503 with a retryable message if the order could not be placed
        """
        flow = get_session(session_id, user_id)
        result = await flow.submit()

        if not result.success:
            raise HTTPException(status_code=503, detail=result.error_message)

        if flow.is_guest:
            # Nothing left to wait for once a guest order exists
            app.state.checkout_sessions.remove(session_id)

        return CheckoutSessionResponse.from_flow(flow)

    @app.delete("/checkout/sessions/{session_id}", status_code=204, tags=["Checkout"])
    async def close_checkout_session(
        session_id: str,
        user_id: str | None = Depends(get_optional_user_id),
    ) -> Response:
        get_session(session_id, user_id)
        app.state.checkout_sessions.remove(session_id)
        return Response(status_code=204)

    @app.get("/rewards", response_model=list[RewardDefinition], tags=["Rewards"])
    async def list_rewards() -> list[RewardDefinition]:
        rewards: list[RewardDefinition] = await app.state.rewards_service.list_rewards()
        return rewards

    @app.get("/rewards/me", response_model=RewardsSummaryResponse, tags=["Rewards"])
    async def get_my_rewards(
        user_id: str = Depends(get_user_id_from_header),
    ) -> RewardsSummaryResponse:
        points = await app.state.rewards_service.get_balance(user_id)
        applied = await app.state.rewards_service.get_active_discount(user_id)

        active_discount = None
        if applied is not None:
            active_discount = ActiveDiscountResponse(
                discount_id=applied.discount.discount_id,
                reward_id=applied.discount.reward_id,
                reward_name=applied.reward_name,
                discount_percentage=applied.discount_percentage,
            )

        return RewardsSummaryResponse(
            user_id=user_id, points=points, active_discount=active_discount
        )

    @app.post(
        "/rewards/{reward_id}/redeem",
        response_model=ActiveDiscountResponse,
        status_code=201,
        tags=["Rewards"],
    )
    async def redeem_reward(
        reward_id: str,
        user_id: str = Depends(get_user_id_from_header),
    ) -> ActiveDiscountResponse:
        """Exchange points for a discount on the next order.

        Raises:
            HTTPException: 404 for unknown rewards, 409 when the redemption is
                not allowed, 503 when it could not be stored
        """
        result = await app.state.rewards_service.redeem(user_id, reward_id)
        if not result.success or result.discount is None or result.reward is None:
            raise HTTPException(
                status_code=REDEMPTION_STATUS_CODES[result.rejection],
                detail=result.error_message,
            )

        return ActiveDiscountResponse(
            discount_id=result.discount.discount_id,
            reward_id=result.reward.reward_id,
            reward_name=result.reward.name,
            discount_percentage=result.reward.discount_percentage,
        )

    @app.get("/orders/me", response_model=list[Order], tags=["Orders"])
    async def list_my_orders(user_id: str = Depends(get_user_id_from_header)) -> list[Order]:
        orders: list[Order] = await app.state.order_service.list_orders_for_user(user_id)
        return orders

    @app.post("/admin/orders/{order_id}/advance", response_model=Order, tags=["Admin"])
    async def advance_order(
        order_id: str,
        _api_key: str = Depends(validate_api_key),
    ) -> Order:
        """Move an order to its next status."""
        result = await app.state.order_service.advance_status(order_id)
        return raise_for_order_update(result, order_id)

    @app.post("/admin/orders/{order_id}/cancel", response_model=Order, tags=["Admin"])
    async def cancel_order(
        order_id: str,
        body: CancelOrderRequest,
        _api_key: str = Depends(validate_api_key),
    ) -> Order:
        result = await app.state.order_service.cancel_order(order_id, body.reason)
        return raise_for_order_update(result, order_id)

    @app.get(
        "/admin/orders/{order_id}/receipt-url",
        response_model=ReceiptUrlResponse,
        tags=["Admin"],
    )
    async def get_receipt_url(
        order_id: str,
        ttl_seconds: int = 300,
        _api_key: str = Depends(validate_api_key),
    ) -> ReceiptUrlResponse:
        """Signed link to an order's payment receipt."""
        url = await app.state.order_service.get_receipt_url(order_id, ttl_seconds)
        if url is None:
            raise HTTPException(status_code=404, detail="Receipt not found")
        return ReceiptUrlResponse(order_id=order_id, url=url, expires_in=ttl_seconds)

    @app.get(
        "/admin/tables/{table_number}/code",
        response_model=TableCodeResponse,
        tags=["Admin"],
    )
    async def get_table_code(
        table_number: int,
        _api_key: str = Depends(validate_api_key),
    ) -> TableCodeResponse:
        """Code to print in a table's QR."""
        try:
            code = app.state.table_code_resolver.encode(table_number)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return TableCodeResponse(table_number=table_number, code=code)

    @app.post(
        "/admin/cash-register/closings",
        response_model=CashRegisterClosing,
        status_code=201,
        tags=["Admin"],
    )
    async def close_cash_register(
        body: CloseDayRequest,
        _api_key: str = Depends(validate_api_key),
    ) -> CashRegisterClosing:
        """Close the cash register for a day.

        Raises:
            HTTPException: 409 if the day is already closed, 503 on storage failure
        """
        result = await app.state.cash_register_service.close_day(
            body.closing_date, created_by=body.created_by
        )
        if result.already_closed:
            raise HTTPException(status_code=409, detail=result.error_message)
        if not result.success or result.closing is None:
            raise HTTPException(status_code=503, detail=result.error_message)

        closing: CashRegisterClosing = result.closing
        return closing

    @app.get("/admin/rewards", response_model=list[RewardDefinition], tags=["Admin"])
    async def list_reward_catalog(
        _api_key: str = Depends(validate_api_key),
    ) -> list[RewardDefinition]:
        """Every reward, including deactivated ones."""
        rewards: list[RewardDefinition] = await app.state.rewards_service.list_catalog()
        return rewards

    @app.post("/admin/rewards", response_model=RewardDefinition, status_code=201, tags=["Admin"])
    async def create_reward(
        body: RewardRequest,
        _api_key: str = Depends(validate_api_key),
    ) -> RewardDefinition:
        result = await app.state.rewards_service.create_reward(
            body.name, body.points_required, body.discount_percentage
        )
        return raise_for_catalog_change(result)

    @app.put("/admin/rewards/{reward_id}", response_model=RewardDefinition, tags=["Admin"])
    async def update_reward(
        reward_id: str,
        body: RewardRequest,
        _api_key: str = Depends(validate_api_key),
    ) -> RewardDefinition:
        """Change a reward's terms; discounts already redeemed keep theirs."""
        result = await app.state.rewards_service.update_reward(
            reward_id, body.name, body.points_required, body.discount_percentage
        )
        return raise_for_catalog_change(result, reward_id)

    @app.post(
        "/admin/rewards/{reward_id}/deactivate", response_model=RewardDefinition, tags=["Admin"]
    )
    async def deactivate_reward(
        reward_id: str,
        _api_key: str = Depends(validate_api_key),
    ) -> RewardDefinition:
        result = await app.state.rewards_service.set_reward_active(reward_id, False)
        return raise_for_catalog_change(result, reward_id)

    @app.post("/admin/rewards/{reward_id}/activate", response_model=RewardDefinition, tags=["Admin"])
    async def activate_reward(
        reward_id: str,
        _api_key: str = Depends(validate_api_key),
    ) -> RewardDefinition:
        result = await app.state.rewards_service.set_reward_active(reward_id, True)
        return raise_for_catalog_change(result, reward_id)

    @app.get("/admin/table-assignments", response_model=list[TableAssignment], tags=["Admin"])
    async def list_table_assignments(
        assignment_date: date | None = None,
        _api_key: str = Depends(validate_api_key),
    ) -> list[TableAssignment]:
        """Waiter table ranges of a day (today when no date is given)."""
        day = assignment_date or datetime.now(UTC).date()
        assignments: list[TableAssignment] = (
            await app.state.table_assignment_service.list_assignments(day)
        )
        return assignments

    @app.post(
        "/admin/table-assignments",
        response_model=TableAssignment,
        status_code=201,
        tags=["Admin"],
    )
    async def assign_tables(
        body: AssignmentRequest,
        _api_key: str = Depends(validate_api_key),
    ) -> TableAssignment:
        """Assign a range of tables to a waiter for a day.

        Raises:
            HTTPException: 422 for an invalid range, 409 if another waiter
                already serves part of it, 503 on storage failure
        """
        try:
            assignment = TableAssignment(**body.model_dump())
        except ValidationError as e:
            raise HTTPException(
                status_code=422, detail=[error["msg"] for error in e.errors()]
            ) from e

        result = await app.state.table_assignment_service.assign_tables(assignment)
        if result.conflict_with is not None:
            raise HTTPException(status_code=409, detail=result.error_message)
        if not result.success or result.assignment is None:
            raise HTTPException(status_code=503, detail=result.error_message)

        stored: TableAssignment = result.assignment
        return stored

    return app
