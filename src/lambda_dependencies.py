"""Shared dependency factory for Lambda handlers.

This module provides cached dependency initialization to optimize Lambda cold starts.
Dependencies are created once and reused across invocations within the same Lambda
container, so API requests and EventBridge events share one notification hub.
"""

import logging
import os
from typing import Any

import boto3
from fastapi import FastAPI

from restaurant_ordering.handlers.api_handler import create_app
from restaurant_ordering.handlers.event_handler import OrderEventHandler
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
from restaurant_ordering.services.order_notifier import OrderStatusNotifier
from restaurant_ordering.services.order_service import OrderService
from restaurant_ordering.services.receipt_storage import ReceiptStorage
from restaurant_ordering.services.rewards_service import RewardsService
from restaurant_ordering.services.table_assignment_service import TableAssignmentService
from restaurant_ordering.services.table_codes import DEFAULT_TABLE_CODE_SECRET, TableCodeResolver

logger = logging.getLogger(__name__)

# Module-level caches for Lambda container reuse
_dynamodb_resource: Any | None = None
_receipt_storage: ReceiptStorage | None = None
_notifier: OrderStatusNotifier | None = None
_rewards_service: RewardsService | None = None
_event_handler: OrderEventHandler | None = None
_fastapi_app: FastAPI | None = None


def get_dynamodb_resource() -> Any:
    """Create or retrieve cached DynamoDB resource.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    global _dynamodb_resource

    if _dynamodb_resource is not None:
        return _dynamodb_resource

    endpoint_url = os.getenv("DYNAMODB_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        logger.info(f"Using local DynamoDB at {endpoint_url}")
        _dynamodb_resource = boto3.resource(
            "dynamodb",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )
    else:
        logger.info(f"Using AWS DynamoDB in region {region}")
        _dynamodb_resource = boto3.resource("dynamodb", region_name=region)

    return _dynamodb_resource


def get_receipt_storage() -> ReceiptStorage:
    """Create or retrieve cached receipt storage."""
    global _receipt_storage

    if _receipt_storage is not None:
        return _receipt_storage

    region = os.getenv("AWS_REGION", "us-east-1")
    endpoint_url = os.getenv("S3_ENDPOINT")
    if endpoint_url:
        s3_client = boto3.client("s3", endpoint_url=endpoint_url, region_name=region)
    else:
        s3_client = boto3.client("s3", region_name=region)

    _receipt_storage = ReceiptStorage(
        s3_client=s3_client,
        bucket_name=os.getenv("RECEIPTS_BUCKET", "restaurant-payment-receipts"),
    )
    return _receipt_storage


def get_notifier() -> OrderStatusNotifier:
    global _notifier

    if _notifier is None:
        _notifier = OrderStatusNotifier()
    return _notifier


def get_rewards_service() -> RewardsService:
    """Create or retrieve cached rewards service.

    Returns:
        Configured RewardsService instance
    """
    global _rewards_service

    if _rewards_service is not None:
        return _rewards_service

    dynamodb_resource = get_dynamodb_resource()
    _rewards_service = RewardsService(
        reward_repository=RewardRepository(
            dynamodb_resource, os.getenv("DYNAMODB_REWARDS_TABLE", "restaurant-rewards")
        ),
        discount_repository=ActiveDiscountRepository(
            dynamodb_resource,
            os.getenv("DYNAMODB_ACTIVE_DISCOUNTS_TABLE", "restaurant-active-discounts"),
        ),
        points_repository=PointsBalanceRepository(
            dynamodb_resource, os.getenv("DYNAMODB_POINTS_TABLE", "restaurant-points")
        ),
    )

    logger.info("Rewards service initialized")
    return _rewards_service


def get_event_handler() -> OrderEventHandler:
    """Create or retrieve cached event handler.

    Returns:
        Configured OrderEventHandler instance
    """
    global _event_handler

    if _event_handler is None:
        _event_handler = OrderEventHandler(notifier=get_notifier())
        logger.info("Event handler initialized")

    return _event_handler


def get_fastapi_app() -> FastAPI:
    """Create or retrieve cached FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    global _fastapi_app

    if _fastapi_app is not None:
        return _fastapi_app

    dynamodb_resource = get_dynamodb_resource()
    order_repository = OrderRepository(
        dynamodb_resource, os.getenv("DYNAMODB_ORDERS_TABLE", "restaurant-orders")
    )
    rewards_service = get_rewards_service()
    receipt_storage = get_receipt_storage()
    assignment_repository = TableAssignmentRepository(
        dynamodb_resource,
        os.getenv("DYNAMODB_TABLE_ASSIGNMENTS_TABLE", "restaurant-table-assignments"),
    )

    checkout_service = CheckoutService(
        order_repository=order_repository,
        order_item_repository=OrderItemRepository(
            dynamodb_resource, os.getenv("DYNAMODB_ORDER_ITEMS_TABLE", "restaurant-order-items")
        ),
        assignment_repository=assignment_repository,
        receipt_storage=receipt_storage,
        rewards_service=rewards_service,
    )
    order_service = OrderService(
        order_repository=order_repository,
        rewards_service=rewards_service,
        receipt_storage=receipt_storage,
        notifier=get_notifier(),
    )
    cash_register_service = CashRegisterService(
        order_repository=order_repository,
        closing_repository=CashClosingRepository(
            dynamodb_resource, os.getenv("DYNAMODB_CASH_CLOSINGS_TABLE", "restaurant-cash-closings")
        ),
    )

    api_keys = [key.strip() for key in os.getenv("ADMIN_API_KEY", "").split(",") if key.strip()]
    if not api_keys:
        logger.warning("No ADMIN_API_KEY configured - using development key")
        api_keys = ["dummy-key-for-development"]

    _fastapi_app = create_app(
        checkout_service=checkout_service,
        rewards_service=rewards_service,
        order_service=order_service,
        cash_register_service=cash_register_service,
        table_code_resolver=TableCodeResolver(
            secret=os.getenv("TABLE_CODE_SECRET") or DEFAULT_TABLE_CODE_SECRET
        ),
        table_assignment_service=TableAssignmentService(assignment_repository),
        notifier=get_notifier(),
        api_keys=api_keys,
    )

    logger.info("FastAPI application initialized")
    return _fastapi_app


def initialize_lambda_environment() -> None:
    """Initialize Lambda environment with logging and observability.

    Should be called once during Lambda cold start.
    """
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    setup_observability()

    logger.info("Lambda environment initialized")
