"""Daily waiter table assignments managed from the back office."""

import logging
from dataclasses import dataclass
from datetime import date

from restaurant_ordering.models.operations_models import TableAssignment
from restaurant_ordering.observability.decorators import traced
from restaurant_ordering.repositories.operations_repositories import TableAssignmentRepository

logger = logging.getLogger(__name__)


@dataclass
class AssignmentResult:
    """Result of assigning a table range to a waiter.

    Attributes:
        success: Whether the assignment was stored
        assignment: The stored assignment on success
        conflict_with: Waiter already serving part of the range in the same shift
        error_message: Message for staff on failure
    """

    success: bool
    assignment: TableAssignment | None = None
    conflict_with: str | None = None
    error_message: str | None = None


class TableAssignmentService:
    """Service assigning table ranges to waiters for a day.

    A waiter holds one range per day; assigning again replaces it. Within a
    shift, two waiters may not share a table, since guest orders go to the
    waiter whose range covers the table.
    """

    def __init__(self, assignment_repository: TableAssignmentRepository) -> None:
        self.assignment_repository = assignment_repository

    async def list_assignments(self, assignment_date: date) -> list[TableAssignment]:
        """List a day's assignments ordered by first table."""
        assignments = self.assignment_repository.list_assignments_for_date(assignment_date)
        return sorted(assignments, key=lambda assignment: assignment.first_table)

    @traced("table_assignments.assign")
    async def assign_tables(self, assignment: TableAssignment) -> AssignmentResult:
        """Store a waiter's table range for a day.

        Args:
            assignment: Validated assignment to store

        Returns:
            AssignmentResult with the stored assignment, or why it was refused
        """
        for existing in self.assignment_repository.list_assignments_for_date(
            assignment.assignment_date
        ):
            if (
                existing.waiter_id != assignment.waiter_id
                and existing.shift == assignment.shift
                and existing.overlaps(assignment)
            ):
                return AssignmentResult(
                    success=False,
                    conflict_with=existing.waiter_id,
                    error_message=(
                        f"Tables {existing.first_table}-{existing.last_table} are already "
                        f"assigned to waiter {existing.waiter_id}"
                    ),
                )

        if not self.assignment_repository.save_assignment(assignment):
            return AssignmentResult(
                success=False, error_message="The assignment could not be saved. Please try again."
            )

        logger.info(
            f"Waiter {assignment.waiter_id} assigned tables "
            f"{assignment.first_table}-{assignment.last_table} on {assignment.assignment_date}"
        )
        return AssignmentResult(success=True, assignment=assignment)
