"""Main application entry point for the restaurant ordering service.

This module provides the FastAPI application factory and configuration
for running the service locally or in production.
"""

import logging
import os
from typing import Any

import boto3
from fastapi import FastAPI

from restaurant_ordering.handlers.api_handler import create_app
from restaurant_ordering.observability import configure_logging, setup_observability
from restaurant_ordering.repositories.operations_repositories import (
    CashClosingRepository,
    TableAssignmentRepository,
)
from restaurant_ordering.repositories.order_repositories import (
    OrderItemRepository,
    OrderRepository,
)
from restaurant_ordering.repositories.rewards_repositories import (
    ActiveDiscountRepository,
    PointsBalanceRepository,
    RewardRepository,
)
from restaurant_ordering.services.cash_register_service import CashRegisterService
from restaurant_ordering.services.checkout_service import CheckoutService
from restaurant_ordering.services.checkout_sessions import (
    DEFAULT_IDLE_TTL_SECONDS,
    CheckoutSessionStore,
)
from restaurant_ordering.services.order_notifier import OrderStatusNotifier
from restaurant_ordering.services.order_service import OrderService
from restaurant_ordering.services.receipt_storage import ReceiptStorage
from restaurant_ordering.services.rewards_service import RewardsService
from restaurant_ordering.services.table_assignment_service import TableAssignmentService
from restaurant_ordering.services.table_codes import DEFAULT_TABLE_CODE_SECRET, TableCodeResolver

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAMES = {
    "orders": ("DYNAMODB_ORDERS_TABLE", "restaurant-orders"),
    "order_items": ("DYNAMODB_ORDER_ITEMS_TABLE", "restaurant-order-items"),
    "rewards": ("DYNAMODB_REWARDS_TABLE", "restaurant-rewards"),
    "active_discounts": ("DYNAMODB_ACTIVE_DISCOUNTS_TABLE", "restaurant-active-discounts"),
    "points": ("DYNAMODB_POINTS_TABLE", "restaurant-points"),
    "table_assignments": ("DYNAMODB_TABLE_ASSIGNMENTS_TABLE", "restaurant-table-assignments"),
    "cash_closings": ("DYNAMODB_CASH_CLOSINGS_TABLE", "restaurant-cash-closings"),
}


def get_table_name(key: str) -> str:
    """Resolve a DynamoDB table name from its environment variable."""
    env_var, default = DEFAULT_TABLE_NAMES[key]
    return os.getenv(env_var, default)


def get_dynamodb_resource() -> Any:
    """Create DynamoDB resource with appropriate configuration.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    endpoint_url = os.getenv("DYNAMODB_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        logger.info(f"Using local DynamoDB at {endpoint_url}")
        return boto3.resource(
            "dynamodb",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )

    logger.info(f"Using AWS DynamoDB in region {region}")
    return boto3.resource("dynamodb", region_name=region)


def get_s3_client() -> Any:
    """Create S3 client for receipt storage.

    Returns:
        Boto3 S3 client, pointed at S3_ENDPOINT when set (local development)
    """
    endpoint_url = os.getenv("S3_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        logger.info(f"Using local S3 at {endpoint_url}")
        return boto3.client("s3", endpoint_url=endpoint_url, region_name=region)

    return boto3.client("s3", region_name=region)


def get_api_keys() -> list[str]:
    """Admin API keys from ADMIN_API_KEY (comma separated)."""
    api_keys = [key.strip() for key in os.getenv("ADMIN_API_KEY", "").split(",") if key.strip()]

    if not api_keys:
        logger.warning("No ADMIN_API_KEY configured - using development key")
        api_keys = ["dummy-key-for-development"]

    return api_keys


def get_table_code_resolver() -> TableCodeResolver:
    secret = os.getenv("TABLE_CODE_SECRET")
    if not secret:
        logger.warning("No TABLE_CODE_SECRET configured - using the default secret")
        secret = DEFAULT_TABLE_CODE_SECRET
    return TableCodeResolver(secret=secret)


def get_session_store() -> CheckoutSessionStore:
    """Checkout session registry, idle time to live from CHECKOUT_SESSION_TTL_SECONDS."""
    idle_ttl = float(os.getenv("CHECKOUT_SESSION_TTL_SECONDS", str(DEFAULT_IDLE_TTL_SECONDS)))
    return CheckoutSessionStore(idle_ttl=idle_ttl)


def create_application() -> FastAPI:
    """Create and configure the FastAPI application with all dependencies.

    This factory function:
    1. Configures logging
    2. Creates AWS clients
    3. Initializes repositories
    4. Creates services
    5. Creates FastAPI app with customer and admin endpoints
    6. Sets up observability

    Returns:
        Configured FastAPI application instance
    """
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    logger.info("Initializing restaurant ordering service...")

    dynamodb_resource = get_dynamodb_resource()

    order_repository = OrderRepository(dynamodb_resource, get_table_name("orders"))
    order_item_repository = OrderItemRepository(dynamodb_resource, get_table_name("order_items"))
    reward_repository = RewardRepository(dynamodb_resource, get_table_name("rewards"))
    discount_repository = ActiveDiscountRepository(
        dynamodb_resource, get_table_name("active_discounts")
    )
    points_repository = PointsBalanceRepository(dynamodb_resource, get_table_name("points"))
    assignment_repository = TableAssignmentRepository(
        dynamodb_resource, get_table_name("table_assignments")
    )
    closing_repository = CashClosingRepository(dynamodb_resource, get_table_name("cash_closings"))

    logger.info(f"Repositories configured - orders: {get_table_name('orders')}")

    receipts_bucket = os.getenv("RECEIPTS_BUCKET", "restaurant-payment-receipts")
    receipt_storage = ReceiptStorage(s3_client=get_s3_client(), bucket_name=receipts_bucket)

    notifier = OrderStatusNotifier()
    rewards_service = RewardsService(
        reward_repository=reward_repository,
        discount_repository=discount_repository,
        points_repository=points_repository,
    )
    checkout_service = CheckoutService(
        order_repository=order_repository,
        order_item_repository=order_item_repository,
        assignment_repository=assignment_repository,
        receipt_storage=receipt_storage,
        rewards_service=rewards_service,
    )
    order_service = OrderService(
        order_repository=order_repository,
        rewards_service=rewards_service,
        receipt_storage=receipt_storage,
        notifier=notifier,
    )
    cash_register_service = CashRegisterService(
        order_repository=order_repository, closing_repository=closing_repository
    )

    logger.info("Services initialized")

    app = create_app(
        checkout_service=checkout_service,
        rewards_service=rewards_service,
        order_service=order_service,
        cash_register_service=cash_register_service,
        table_code_resolver=get_table_code_resolver(),
        table_assignment_service=TableAssignmentService(assignment_repository),
        notifier=notifier,
        api_keys=get_api_keys(),
        session_store=get_session_store(),
    )

    setup_observability(app)

    logger.info("Restaurant ordering service initialized successfully")

    return app


# Create the FastAPI application instance (only when not in test mode)
# This prevents the app from being created during test collection
if os.getenv("ENVIRONMENT") != "test":  # noqa: SIM108
    app = create_application()
else:
    app = FastAPI()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8001"))
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(f"Starting development server on {host}:{port}")
    logger.info(f"API documentation available at http://{host}:{port}/docs")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=True,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
