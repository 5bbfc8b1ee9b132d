"""Pydantic schemas for repayment allocation results."""

from decimal import Decimal
from typing import List
from pydantic import BaseModel

from components.advance.models import AdvanceStatus


class AllocationSlice(BaseModel):
    """The part of a repayment applied to one advance."""
    advance_id: int
    amount: Decimal
    remaining_due: Decimal
    status: AdvanceStatus


class AllocationResult(BaseModel):
    """Schema for the outcome of applying one repayment."""
    slices: List[AllocationSlice]
    applied: Decimal
    surplus: Decimal

    @property
    def settled_advance_ids(self) -> List[int]:
        return [item.advance_id for item in self.slices if item.status == AdvanceStatus.REPAID]
