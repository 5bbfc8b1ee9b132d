"""Payment endpoints: network callbacks and reconciliation administration."""

import json
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request

from components.core.logging import get_logger
from components.core.providers import get_notification_config, get_reconciliation_service
from components.employee.models import Employee
from components.payment import schemas
from components.payment.models import PaymentStatus
from components.reconciliation.service import ReconciliationService
from components.system_config.schemas import NotificationConfig
from restapi.endpoints.auth import require_admin

logger = get_logger(__name__)

router = APIRouter(
    prefix="/payments",
    tags=["payments"],
    responses={404: {"description": "Not found"}},
)


async def _read_payload(request: Request):
    body = await request.body()
    try:
        return json.loads(body)
    except ValueError:
        return {"body": body.decode("utf-8", errors="replace")}


@router.post("/callback", response_model=schemas.CallbackAck)
async def payment_callback(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
    notification_config: NotificationConfig = Depends(get_notification_config),
):
    """
    Receive a result or confirmation from the payment network.

    Every payload is persisted and acknowledged; anomalies end up in the
    review queue instead of being reported back to the network.
    """
    payload = await _read_payload(request)
    outcome = await service.handle_callback(payload, notification_config)
    logger.info("Payment callback handled: %s (transaction #%s)", outcome.action, outcome.transaction_id)
    return schemas.CallbackAck()


@router.post("/balance-callback", response_model=schemas.CallbackAck)
async def balance_callback(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
    notification_config: NotificationConfig = Depends(get_notification_config),
):
    """Receive an account balance query result."""
    payload = await _read_payload(request)
    outcome = await service.handle_callback(payload, notification_config)
    logger.info("Balance callback handled: %s", outcome.action)
    return schemas.CallbackAck()


@router.get("/", response_model=schemas.PaymentTransactionPage)
async def list_payments(
    status: Optional[PaymentStatus] = None,
    employee_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: Employee = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    transactions, total = await service.list(status, employee_id, page=page, limit=limit)
    return schemas.PaymentTransactionPage(data=transactions, total=total)


@router.get("/stale", response_model=List[schemas.PaymentTransaction])
async def stale_payments(
    admin: Employee = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Pending transactions the network has not answered in time."""
    return await service.stale_pending()


@router.get("/unattributed", response_model=List[schemas.PaymentTransaction])
async def unattributed_payments(
    admin: Employee = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Transactions waiting for an administrator's review."""
    return await service.unattributed()


@router.get("/balances", response_model=List[schemas.AccountBalance])
async def account_balances(
    admin: Employee = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return await service.balances()


@router.get("/{transaction_id}", response_model=schemas.PaymentTransaction)
async def get_payment(
    transaction_id: int,
    admin: Employee = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return await service.get(transaction_id)


@router.post("/{transaction_id}/resolve", response_model=schemas.PaymentTransaction)
async def resolve_payment(
    transaction_id: int,
    request: schemas.ResolveRequest,
    admin: Employee = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
    notification_config: NotificationConfig = Depends(get_notification_config),
):
    """Settle a pending transaction by hand when its callback never arrived."""
    return await service.force_resolve(
        transaction_id,
        admin.id,
        request.status,
        notification_config,
        receipt_number=request.receipt_number,
        comments=request.comments,
    )


@router.post("/{transaction_id}/assign", response_model=schemas.PaymentTransaction)
async def assign_payment(
    transaction_id: int,
    request: schemas.AssignRequest,
    admin: Employee = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Attribute a payment from the review queue to an employee."""
    return await service.assign(
        transaction_id, request.employee_id, admin.id, apply_as_repayment=request.apply_as_repayment
    )


@router.get("/{transaction_id}/allocations", response_model=List[schemas.PaymentAllocation])
async def payment_allocations(
    transaction_id: int,
    admin: Employee = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """How a payment was spread over advances, reversals included."""
    return await service.allocations(transaction_id)
