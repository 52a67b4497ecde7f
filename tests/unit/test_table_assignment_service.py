"""Unit tests for TableAssignmentService."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from restaurant_ordering.models.operations_models import TableAssignment
from restaurant_ordering.repositories.operations_repositories import TableAssignmentRepository
from restaurant_ordering.services.table_assignment_service import TableAssignmentService

DAY = date(2024, 1, 15)


def assignment(waiter_id: str, first: int, last: int, shift: str = "completo") -> TableAssignment:
    return TableAssignment(
        assignment_date=DAY, waiter_id=waiter_id, first_table=first, last_table=last, shift=shift
    )


@pytest.mark.unit
class TestTableAssignmentService:
    """Test suite for TableAssignmentService."""

    @pytest.fixture
    def mock_repo(self) -> MagicMock:
        repo = MagicMock(spec=TableAssignmentRepository)
        repo.list_assignments_for_date.return_value = [
            assignment("w2", 11, 20),
            assignment("w1", 1, 10),
        ]
        repo.save_assignment.return_value = True
        return repo

    @pytest.fixture
    def service(self, mock_repo: MagicMock) -> TableAssignmentService:
        return TableAssignmentService(assignment_repository=mock_repo)

    @pytest.mark.asyncio
    async def test_list_assignments_ordered_by_table(
        self, service: TableAssignmentService, mock_repo: MagicMock
    ) -> None:
        assignments = await service.list_assignments(DAY)

        assert [a.waiter_id for a in assignments] == ["w1", "w2"]
        mock_repo.list_assignments_for_date.assert_called_once_with(DAY)

    @pytest.mark.asyncio
    async def test_assign_free_range(
        self, service: TableAssignmentService, mock_repo: MagicMock
    ) -> None:
        new = assignment("w3", 21, 30)

        result = await service.assign_tables(new)

        assert result.success is True
        assert result.assignment == new
        mock_repo.save_assignment.assert_called_once_with(new)

    @pytest.mark.asyncio
    async def test_overlapping_range_is_refused(
        self, service: TableAssignmentService, mock_repo: MagicMock
    ) -> None:
        result = await service.assign_tables(assignment("w3", 8, 12))

        assert result.success is False
        assert result.conflict_with in {"w1", "w2"}
        assert "already assigned" in (result.error_message or "")
        mock_repo.save_assignment.assert_not_called()

    @pytest.mark.asyncio
    async def test_waiter_can_change_own_range(
        self, service: TableAssignmentService, mock_repo: MagicMock
    ) -> None:
        result = await service.assign_tables(assignment("w1", 1, 8))

        assert result.success is True

    @pytest.mark.asyncio
    async def test_other_shift_may_share_tables(
        self, service: TableAssignmentService, mock_repo: MagicMock
    ) -> None:
        result = await service.assign_tables(assignment("w3", 1, 10, shift="noche"))

        assert result.success is True

    @pytest.mark.asyncio
    async def test_storage_failure(
        self, service: TableAssignmentService, mock_repo: MagicMock
    ) -> None:
        mock_repo.save_assignment.return_value = False

        result = await service.assign_tables(assignment("w3", 21, 30))

        assert result.success is False
        assert result.conflict_with is None
        assert result.error_message
