"""Repository for advance persistence."""

from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from components.advance.models import (
    ACTIVE_STATUSES,
    OUTSTANDING_STATUSES,
    Advance,
    AdvanceEvent,
    AdvanceStatus,
)
from components.advance import schemas


class AdvanceRepository:
    """Repository for advance operations."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    def _locked(self, query, for_update: bool):
        if for_update:
            return query.with_for_update().execution_options(populate_existing=True)
        return query

    async def get_by_id(self, advance_id: int, for_update: bool = False) -> Optional[Advance]:
        """Get advance by ID."""
        query = self._locked(select(Advance).where(Advance.id == advance_id), for_update)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list(self, filters: schemas.AdvanceFilter, skip: int = 0, limit: int = 10) -> Tuple[List[Advance], int]:
        """Get a page of advances with optional filtering, newest first."""
        conditions = []
        if filters.status:
            conditions.append(Advance.status == filters.status.value)
        if filters.employee_id:
            conditions.append(Advance.employee_id == filters.employee_id)
        if filters.min_amount is not None:
            conditions.append(Advance.amount >= filters.min_amount)
        if filters.max_amount is not None:
            conditions.append(Advance.amount <= filters.max_amount)
        if filters.start_date:
            conditions.append(Advance.requested_date >= filters.start_date)
        if filters.end_date:
            conditions.append(Advance.requested_date <= filters.end_date)

        query = select(Advance).where(*conditions).order_by(Advance.requested_date.desc(), Advance.id.desc())
        result = await self.session.execute(query.offset(skip).limit(limit))
        total = await self.session.execute(select(func.count(Advance.id)).where(*conditions))
        return list(result.scalars().all()), total.scalar_one()

    async def list_for_employee(self, employee_id: int) -> List[Advance]:
        """Get all advances of an employee, newest first."""
        result = await self.session.execute(
            select(Advance)
            .where(Advance.employee_id == employee_id)
            .order_by(Advance.requested_date.desc(), Advance.id.desc())
        )
        return list(result.scalars().all())

    async def requested_between(
        self,
        employee_id: int,
        start: datetime,
        end: datetime,
        statuses=ACTIVE_STATUSES,
    ) -> List[Advance]:
        """Advances of an employee in the given statuses requested in [start, end]."""
        result = await self.session.execute(
            select(Advance).where(
                Advance.employee_id == employee_id,
                Advance.status.in_(statuses),
                Advance.requested_date >= start,
                Advance.requested_date <= end,
            )
        )
        return list(result.scalars().all())

    async def outstanding(self, employee_id: int, for_update: bool = False) -> List[Advance]:
        """Disbursed or repaying advances, oldest approval first."""
        query = (
            select(Advance)
            .where(
                Advance.employee_id == employee_id,
                Advance.status.in_(OUTSTANDING_STATUSES),
            )
            .order_by(Advance.approved_date.asc(), Advance.id.asc())
        )
        result = await self.session.execute(self._locked(query, for_update))
        return list(result.scalars().all())

    async def repayable(self, employee_id: int, for_update: bool = False) -> List[Advance]:
        """Outstanding advances that still owe money, oldest approval first."""
        query = (
            select(Advance)
            .where(
                Advance.employee_id == employee_id,
                Advance.status.in_(OUTSTANDING_STATUSES),
                Advance.amount_repaid < Advance.total_repayment,
            )
            .order_by(Advance.approved_date.asc(), Advance.id.asc())
        )
        result = await self.session.execute(self._locked(query, for_update))
        return list(result.scalars().all())

    def add(self, advance: Advance) -> Advance:
        self.session.add(advance)
        return advance

    def record_event(
        self,
        advance: Advance,
        from_status: Optional[str],
        to_status: AdvanceStatus,
        actor_id: Optional[int] = None,
        comments: Optional[str] = None,
    ) -> AdvanceEvent:
        """Append an audit trail entry for a status change."""
        event = AdvanceEvent(
            advance=advance,
            from_status=from_status,
            to_status=to_status.value,
            actor_id=actor_id,
            comments=comments,
        )
        self.session.add(event)
        return event

    async def get_events(self, advance_id: int) -> List[AdvanceEvent]:
        """Audit trail of an advance, oldest first."""
        result = await self.session.execute(
            select(AdvanceEvent)
            .where(AdvanceEvent.advance_id == advance_id)
            .order_by(AdvanceEvent.id)
        )
        return list(result.scalars().all())
