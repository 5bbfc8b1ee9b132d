"""Advance endpoints for the API."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from components.accrual.schemas import EligibilitySummary, MonthlyAccrualSummary
from components.advance import schemas
from components.advance.models import AdvanceStatus
from components.advance.service import AdvanceService
from components.core.providers import (
    get_advance_config,
    get_advance_service,
    get_disbursement_service,
    get_notification_config,
    get_repayment_allocator,
)
from components.disbursement.service import DisbursementService
from components.employee.models import Employee
from components.payment import schemas as payment_schemas
from components.repayment.service import RepaymentAllocator
from components.system_config.schemas import AdvanceConfig, NotificationConfig
from restapi.endpoints.auth import get_current_employee, require_admin

router = APIRouter(
    prefix="/advances",
    tags=["advances"],
    responses={404: {"description": "Not found"}},
)


@router.post("/", response_model=schemas.Advance, status_code=status.HTTP_201_CREATED)
async def create_advance(
    advance_in: schemas.AdvanceCreate,
    current: Employee = Depends(get_current_employee),
    service: AdvanceService = Depends(get_advance_service),
    advance_config: AdvanceConfig = Depends(get_advance_config),
    notification_config: NotificationConfig = Depends(get_notification_config),
):
    """Request a salary advance for the current employee."""
    return await service.create(current.id, advance_in, advance_config, notification_config)


@router.get("/", response_model=schemas.AdvancePage)
async def list_advances(
    status_filter: Optional[AdvanceStatus] = Query(None, alias="status"),
    employee_id: Optional[int] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current: Employee = Depends(get_current_employee),
    service: AdvanceService = Depends(get_advance_service),
):
    """
    Get advances, newest first.

    Administrators see everyone's advances; employees only their own.
    """
    filters = schemas.AdvanceFilter(
        status=status_filter,
        employee_id=employee_id if current.is_admin else current.id,
        min_amount=min_amount,
        max_amount=max_amount,
        start_date=start_date,
        end_date=end_date,
    )
    advances, total = await service.list(filters, page=page, limit=limit)
    return schemas.AdvancePage(data=advances, total=total)


@router.get("/mine", response_model=List[schemas.Advance])
async def my_advances(
    current: Employee = Depends(get_current_employee),
    service: AdvanceService = Depends(get_advance_service),
):
    return await service.list_for_employee(current.id)


@router.get("/eligibility", response_model=EligibilitySummary)
async def eligibility(
    current: Employee = Depends(get_current_employee),
    service: AdvanceService = Depends(get_advance_service),
    advance_config: AdvanceConfig = Depends(get_advance_config),
):
    """Available advance, cap and repayment position of the current employee."""
    return await service.eligibility_summary(current.id, advance_config)


@router.get("/eligibility/monthly", response_model=MonthlyAccrualSummary)
async def monthly_eligibility(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    current: Employee = Depends(get_current_employee),
    service: AdvanceService = Depends(get_advance_service),
    advance_config: AdvanceConfig = Depends(get_advance_config),
):
    """Day-by-day accrual for a month, the current one by default."""
    today = service.clock()
    return await service.monthly_summary(
        current.id, year or today.year, month or today.month, advance_config
    )


@router.get("/approved-balance", response_model=schemas.ApprovedBalance)
async def approved_balance(
    current: Employee = Depends(get_current_employee),
    service: DisbursementService = Depends(get_disbursement_service),
):
    return await service.approved_balance(current.id)


@router.post("/withdraw", response_model=payment_schemas.PaymentTransaction)
async def withdraw(
    request: schemas.WithdrawalRequest,
    current: Employee = Depends(get_current_employee),
    service: DisbursementService = Depends(get_disbursement_service),
):
    """Send disbursed advance funds to the employee's M-PESA."""
    return await service.withdraw(current.id, request.amount, request.phone_number, request.payout_channel)


@router.post("/repay", response_model=payment_schemas.PaymentTransaction)
async def repay(
    request: schemas.RepaymentRequest,
    current: Employee = Depends(get_current_employee),
    allocator: RepaymentAllocator = Depends(get_repayment_allocator),
):
    """Prompt the employee's phone to pay towards their advances."""
    return await allocator.request_repayment(current.id, request.amount, request.phone_number)


@router.post("/settle-by-payroll", response_model=schemas.PayrollSettlementResult)
async def settle_by_payroll(
    request: schemas.PayrollSettlementRequest,
    admin: Employee = Depends(require_admin),
    service: AdvanceService = Depends(get_advance_service),
):
    """Mark repaying advances as fully repaid through salary deduction."""
    return await service.settle_by_payroll(request.advance_ids, admin.id)


@router.get("/{advance_id}", response_model=schemas.Advance)
async def get_advance(
    advance_id: int,
    current: Employee = Depends(get_current_employee),
    service: AdvanceService = Depends(get_advance_service),
):
    advance = await service.get(advance_id)
    if advance.employee_id != current.id and not current.is_admin:
        raise HTTPException(status_code=404, detail=f"Advance #{advance_id} not found")
    return advance


@router.get("/{advance_id}/events", response_model=List[schemas.AdvanceEvent])
async def get_advance_events(
    advance_id: int,
    current: Employee = Depends(get_current_employee),
    service: AdvanceService = Depends(get_advance_service),
):
    """Audit trail of an advance's status changes."""
    advance = await service.get(advance_id)
    if advance.employee_id != current.id and not current.is_admin:
        raise HTTPException(status_code=404, detail=f"Advance #{advance_id} not found")
    return await service.events(advance_id)


@router.patch("/{advance_id}/status", response_model=schemas.Advance)
async def update_advance_status(
    advance_id: int,
    update: schemas.AdvanceStatusUpdate,
    admin: Employee = Depends(require_admin),
    service: AdvanceService = Depends(get_advance_service),
):
    """Approve, decline or otherwise move an advance along its lifecycle."""
    return await service.update_status(advance_id, admin.id, update.status, update.comments)
