"""DynamoDB repository classes for back-office records."""

import logging
from datetime import date

from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from restaurant_ordering.models.operations_models import CashRegisterClosing, TableAssignment
from restaurant_ordering.repositories.order_repositories import is_conditional_check_failure

logger = logging.getLogger(__name__)


class TableAssignmentRepository:
    """Repository for daily waiter table assignments.

    Manages assignment records in DynamoDB with composite key (fecha, mesero_id).
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

    def list_assignments_for_date(self, assignment_date: date) -> list[TableAssignment]:
        """List all assignments of a day.

        Args:
            assignment_date: Day to look up

        Returns:
            list: List of TableAssignment objects (empty list if none found)
        """
        try:
            response = self.table.query(
                KeyConditionExpression="fecha = :day",
                ExpressionAttributeValues={":day": assignment_date.isoformat()},
            )

            return [TableAssignment.from_dynamodb_item(item) for item in response.get("Items", [])]

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to list table assignments for {assignment_date}: {e}")
            return []

    def find_waiter_for_table(self, assignment_date: date, table_number: int) -> str | None:
        """Find the waiter whose table range covers a table on a day.

        Args:
            assignment_date: Day to look up
            table_number: Table to match

        Returns:
            Waiter ID if an assignment matches, None otherwise
        """
        for assignment in self.list_assignments_for_date(assignment_date):
            if assignment.covers(table_number):
                return assignment.waiter_id
        return None

    def save_assignment(self, assignment: TableAssignment) -> bool:
        """Create or replace a waiter's assignment for a day.

        Args:
            assignment: TableAssignment to save

        Returns:
            bool: True if save succeeded, False otherwise
        """
        try:
            self.table.put_item(Item=assignment.to_dynamodb_item())
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(
                f"Failed to save assignment of waiter {assignment.waiter_id} "
                f"for {assignment.assignment_date}: {e}"
            )
            return False


class CashClosingRepository:
    """Repository for daily cash register closings.

    Manages closing records in DynamoDB with fecha as partition key.
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

    def get_closing(self, closing_date: date) -> CashRegisterClosing | None:
        """Retrieve the closing of a day.

        Args:
            closing_date: Day to look up

        Returns:
            CashRegisterClosing if found, None otherwise
        """
        try:
            response = self.table.get_item(Key={"fecha": closing_date.isoformat()})

            if "Item" not in response:
                return None

            return CashRegisterClosing.from_dynamodb_item(response["Item"])

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get cash closing for {closing_date}: {e}")
            return None

    def save_closing(self, closing: CashRegisterClosing) -> bool:
        """Insert a closing; a day can only be closed once.

        Args:
            closing: CashRegisterClosing to save

        Returns:
            bool: True if save succeeded, False otherwise
        """
        try:
            self.table.put_item(
                Item=closing.to_dynamodb_item(),
                ConditionExpression="attribute_not_exists(fecha)",
            )
            return True

        except (BotoCoreError, ClientError) as e:
            if is_conditional_check_failure(e):
                logger.warning(f"Cash register for {closing.closing_date} is already closed")
            else:
                logger.error(f"Failed to save cash closing for {closing.closing_date}: {e}")
            return False
