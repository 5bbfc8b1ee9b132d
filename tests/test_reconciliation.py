from datetime import timedelta
from decimal import Decimal

import pytest

from components.core.exceptions import NotFoundError, ValidationError
from components.payment.models import PaymentStatus
from components.payment.repository import PaymentRepository
from components.reconciliation import service as reconciliation_service
from components.system_config.schemas import NotificationConfig
from callback_payloads import b2c_result, balance_result, pay_bill, stk_callback
from conftest import NOW

ADMIN_PHONE = "254799000000"
STRANGER = "254700000000"


async def test_b2c_success_completes_withdrawal(reconciliation, disbursement, session, make_employee,
                                                make_advance, notification_config):
    employee = await make_employee()
    await make_advance(employee, amount="3000")
    withdrawal = await disbursement.withdraw(employee.id, Decimal("1000"))

    outcome = await reconciliation.handle_callback(
        b2c_result("B2C-MRQ-1", "B2C-NRQ-1", amount=1000, receipt="RCP1000001",
                   phone=employee.phone_number, utility_balance="150000.00"),
        notification_config,
    )

    assert outcome == (reconciliation_service.SETTLED, withdrawal.id)
    transaction = await reconciliation.get(withdrawal.id)
    assert transaction.status == "completed"
    assert transaction.receipt_number == "RCP1000001"
    assert transaction.confirmed_amount == Decimal("1000")
    assert transaction.settled_at == NOW
    assert transaction.result_code == "0"
    utility = await PaymentRepository(session).get_balance("utility")
    assert utility.balance == Decimal("150000")


async def test_replayed_result_changes_nothing(reconciliation, disbursement, lifecycle, make_employee,
                                               make_advance, notification_config):
    employee = await make_employee()
    advance = await make_advance(employee, amount="3000")
    withdrawal = await disbursement.withdraw(employee.id, Decimal("1000"))
    payload = b2c_result("B2C-MRQ-1", "B2C-NRQ-1", amount=1000, receipt="RCP1000002", phone=employee.phone_number)
    withdrawal_id, advance_id = withdrawal.id, advance.id

    await reconciliation.handle_callback(payload, notification_config)
    replay = await reconciliation.handle_callback(payload, notification_config)

    assert replay == (reconciliation_service.DUPLICATE, withdrawal_id)
    transaction = await reconciliation.get(withdrawal_id)
    assert transaction.status == "completed"
    advance = await lifecycle.get(advance_id)
    assert advance.amount_withdrawn == Decimal("1000")


async def test_b2c_failure_returns_funds(reconciliation, disbursement, lifecycle, session, make_employee,
                                         make_advance, notification_config, notifier, sender):
    employee = await make_employee()
    advance = await make_advance(employee, amount="3000")
    withdrawal = await disbursement.withdraw(employee.id, Decimal("1000"))
    payload = b2c_result("B2C-MRQ-1", "B2C-NRQ-1", result_code=2001)
    advance_id, phone = advance.id, employee.phone_number

    outcome = await reconciliation.handle_callback(payload, notification_config)

    assert outcome.action == reconciliation_service.SETTLED
    transaction = await reconciliation.get(withdrawal.id)
    assert transaction.status == "failed"
    assert transaction.receipt_number is None
    allocations = await PaymentRepository(session).open_withdrawals(withdrawal.id)
    assert allocations == []
    advance = await lifecycle.get(advance.id)
    assert advance.amount_withdrawn == Decimal("0")
    balance = await disbursement.approved_balance(employee.id)
    assert balance.available_amount == Decimal("3000")

    await reconciliation.handle_callback(payload, notification_config)
    advance = await lifecycle.get(advance_id)
    assert advance.amount_withdrawn == Decimal("0")

    await notifier.drain()
    assert any("could not be completed" in message for message in sender.sms_to(phone))


async def test_stk_success_applies_repayment_once(reconciliation, allocator, lifecycle, make_employee,
                                                  make_advance, notification_config, notifier, sender):
    employee = await make_employee()
    advance = await make_advance(employee, amount="1000")
    request = await allocator.request_repayment(employee.id, Decimal("600"), employee.phone_number)
    payload = stk_callback("STK-MRQ-1", "STK-NRQ-1", amount=600, receipt="RST0000001", phone=employee.phone_number)
    request_id, advance_id, phone = request.id, advance.id, employee.phone_number

    outcome = await reconciliation.handle_callback(payload, notification_config)
    replay = await reconciliation.handle_callback(payload, notification_config)

    assert outcome == (reconciliation_service.SETTLED, request_id)
    assert replay == (reconciliation_service.DUPLICATE, request_id)
    transaction = await reconciliation.get(request_id)
    assert transaction.status == "completed"
    assert transaction.repayment_applied
    assert not transaction.needs_review
    advance = await lifecycle.get(advance_id)
    assert advance.amount_repaid == Decimal("600")
    assert advance.status == "repaying"

    await notifier.drain()
    received = [m for m in sender.sms_to(phone) if "KES 600.00 has been received" in m]
    assert len(received) == 1


async def test_stk_failure_leaves_advances_alone(reconciliation, allocator, lifecycle, make_employee,
                                                 make_advance, notification_config, notifier, sender):
    employee = await make_employee()
    advance = await make_advance(employee, amount="1000")
    request = await allocator.request_repayment(employee.id, Decimal("600"), employee.phone_number)

    await reconciliation.handle_callback(stk_callback("STK-MRQ-1", "STK-NRQ-1", result_code=1032), notification_config)

    transaction = await reconciliation.get(request.id)
    assert transaction.status == "failed"
    assert transaction.result_code == "1032"
    advance = await lifecycle.get(advance.id)
    assert advance.amount_repaid == Decimal("0")
    await notifier.drain()
    assert any("was not completed" in message for message in sender.sms_to(employee.phone_number))


async def test_result_matched_by_phone_and_amount(reconciliation, allocator, make_employee, make_advance,
                                                  notification_config):
    employee = await make_employee()
    await make_advance(employee, amount="1000")
    request = await allocator.request_repayment(employee.id, Decimal("500"), employee.phone_number)

    outcome = await reconciliation.handle_callback(
        stk_callback("OTHER-MRQ", "OTHER-NRQ", amount=500, receipt="RST0000002", phone=employee.phone_number),
        notification_config,
    )

    assert outcome == (reconciliation_service.SETTLED, request.id)
    transaction = await reconciliation.get(request.id)
    assert transaction.status == "completed"
    assert transaction.repayment_applied


async def test_unmatched_inbound_is_held_for_review(reconciliation, alerting_config, notifier, sender):
    outcome = await reconciliation.handle_callback(
        stk_callback("NOPE-MRQ", "NOPE-NRQ", amount=500, receipt="RST0000003", phone=STRANGER),
        alerting_config,
    )

    assert outcome.action == reconciliation_service.UNATTRIBUTED
    transaction = await reconciliation.get(outcome.transaction_id)
    assert transaction.employee_id is None
    assert transaction.needs_review
    assert transaction.status == "completed"
    assert transaction.kind == "unknown"
    assert transaction.amount == Decimal("500")
    assert transaction.phone_number == STRANGER
    assert [item.id for item in await reconciliation.unattributed()] == [transaction.id]

    await notifier.drain()
    assert any("could not be attributed" in message for message in sender.sms_to(ADMIN_PHONE))


async def test_pay_bill_with_repayment_reference(reconciliation, lifecycle, make_employee, make_advance,
                                                 notification_config):
    employee = await make_employee()
    advance = await make_advance(employee, amount="1000")
    payload = pay_bill("RPB0000001", 400, f"repay_advance:{employee.id}", employee.phone_number)

    outcome = await reconciliation.handle_callback(payload, notification_config)
    replay = await reconciliation.handle_callback(payload, notification_config)

    assert outcome.action == reconciliation_service.ATTRIBUTED
    assert replay == (reconciliation_service.DUPLICATE, outcome.transaction_id)
    transaction = await reconciliation.get(outcome.transaction_id)
    assert transaction.employee_id == employee.id
    assert transaction.kind == "advance_repayment"
    assert transaction.receipt_number == "RPB0000001"
    advance = await lifecycle.get(advance.id)
    assert advance.amount_repaid == Decimal("400")


async def test_pay_bill_settles_pending_request(reconciliation, allocator, lifecycle, make_employee,
                                                make_advance, notification_config):
    employee = await make_employee()
    advance = await make_advance(employee, amount="1000")
    request = await allocator.request_repayment(employee.id, Decimal("500"), employee.phone_number)

    outcome = await reconciliation.handle_callback(
        pay_bill("RPB0000002", 500, f"repay_advance:{employee.id}", employee.phone_number),
        notification_config,
    )

    assert outcome == (reconciliation_service.SETTLED, request.id)
    advance = await lifecycle.get(advance.id)
    assert advance.amount_repaid == Decimal("500")


async def test_pay_bill_surplus_is_flagged(reconciliation, lifecycle, make_employee, make_advance,
                                           alerting_config, notifier, sender):
    employee = await make_employee()
    advance = await make_advance(employee, amount="1000")

    outcome = await reconciliation.handle_callback(
        pay_bill("RPB0000003", 1500, f"repay_advance:{employee.id}", employee.phone_number),
        alerting_config,
    )

    transaction = await reconciliation.get(outcome.transaction_id)
    assert transaction.needs_review
    assert "500.00" in transaction.review_reason
    advance = await lifecycle.get(advance.id)
    assert advance.status == "repaid"
    await notifier.drain()
    assert sender.sms_to(ADMIN_PHONE)


async def test_pay_bill_with_unknown_reference(reconciliation, notification_config):
    outcome = await reconciliation.handle_callback(
        pay_bill("RPB0000004", 700, "INV-7", STRANGER), notification_config
    )

    assert outcome.action == reconciliation_service.UNATTRIBUTED
    transaction = await reconciliation.get(outcome.transaction_id)
    assert transaction.needs_review
    assert transaction.kind == "paybill"
    assert transaction.employee_id is None


async def test_account_top_up(reconciliation, notification_config):
    payload = pay_bill("RTU0000001", 100000, "", "", transaction_type="Organization Top Up")

    outcome = await reconciliation.handle_callback(payload, notification_config)
    replay = await reconciliation.handle_callback(payload, notification_config)

    assert outcome.action == reconciliation_service.TOP_UP
    assert replay == (reconciliation_service.DUPLICATE, outcome.transaction_id)
    transaction = await reconciliation.get(outcome.transaction_id)
    assert transaction.kind == "top_up"
    assert not transaction.needs_review


async def test_account_balances_and_threshold_alert(reconciliation, alerting_config, notifier, sender):
    outcome = await reconciliation.handle_callback(balance_result(
        "Working Account|KES|700000.00|700000.00|0.00|0.00"
        "&Utility Account|KES|5000.00|5000.00|0.00|0.00"
    ), alerting_config)

    assert outcome.action == reconciliation_service.BALANCES
    balances = {item.account: item.balance for item in await reconciliation.balances()}
    assert balances == {"utility": Decimal("5000"), "working": Decimal("700000")}
    await notifier.drain()
    assert any("utility account balance is KES 5,000.00" in message for message in sender.sms_to(ADMIN_PHONE))


async def test_unrecognized_payload_is_persisted(reconciliation, alerting_config):
    outcome = await reconciliation.handle_callback({"Unexpected": "shape"}, alerting_config)

    assert outcome.action == reconciliation_service.UNRECOGNIZED
    transaction = await reconciliation.get(outcome.transaction_id)
    assert transaction.needs_review
    assert transaction.raw_payload == {"Unexpected": "shape"}
    assert transaction.review_reason == "Unknown callback type"


async def test_force_resolve_failed_withdrawal(reconciliation, disbursement, lifecycle, make_employee,
                                               make_advance, notification_config):
    employee = await make_employee()
    admin = await make_employee(is_admin=True)
    advance = await make_advance(employee, amount="3000")
    withdrawal = await disbursement.withdraw(employee.id, Decimal("2000"))

    transaction = await reconciliation.force_resolve(
        withdrawal.id, admin.id, PaymentStatus.FAILED, notification_config, comments="Timed out"
    )

    assert transaction.status == "failed"
    assert transaction.resolved_by == admin.id
    advance = await lifecycle.get(advance.id)
    assert advance.amount_withdrawn == Decimal("0")
    with pytest.raises(ValidationError, match="already failed"):
        await reconciliation.force_resolve(withdrawal.id, admin.id, PaymentStatus.COMPLETED, notification_config)


async def test_force_resolve_completed_repayment(reconciliation, allocator, lifecycle, make_employee,
                                                 make_advance, notification_config):
    employee = await make_employee()
    admin = await make_employee(is_admin=True)
    advance = await make_advance(employee, amount="1000")
    request = await allocator.request_repayment(employee.id, Decimal("1000"), employee.phone_number)

    transaction = await reconciliation.force_resolve(
        request.id, admin.id, PaymentStatus.COMPLETED, notification_config, receipt_number="RMAN000001"
    )

    assert transaction.status == "completed"
    assert transaction.receipt_number == "RMAN000001"
    advance = await lifecycle.get(advance.id)
    assert advance.status == "repaid"
    with pytest.raises(ValidationError):
        await reconciliation.force_resolve(request.id, admin.id, PaymentStatus.PENDING, notification_config)


async def test_assign_unattributed_payment(reconciliation, lifecycle, make_employee, make_advance,
                                           notification_config):
    employee = await make_employee()
    admin = await make_employee(is_admin=True)
    advance = await make_advance(employee, amount="1000")
    outcome = await reconciliation.handle_callback(
        stk_callback("NOPE-MRQ", "NOPE-NRQ", amount=500, receipt="RST0000004", phone=STRANGER),
        notification_config,
    )

    transaction = await reconciliation.assign(outcome.transaction_id, employee.id, admin.id)

    assert transaction.employee_id == employee.id
    assert not transaction.needs_review
    assert transaction.repayment_applied
    advance = await lifecycle.get(advance.id)
    assert advance.amount_repaid == Decimal("500")
    with pytest.raises(ValidationError, match="not awaiting review"):
        await reconciliation.assign(outcome.transaction_id, employee.id, admin.id)
    assert await reconciliation.unattributed() == []


async def test_stale_pending(reconciliation, disbursement, make_employee, make_advance, alerting_config,
                             notifier, sender):
    employee = await make_employee()
    await make_advance(employee, amount="3000")
    withdrawal = await disbursement.withdraw(employee.id, Decimal("1000"))

    assert await reconciliation.stale_pending() == []
    stale = await reconciliation.stale_pending(older_than=NOW + timedelta(minutes=1))
    assert [item.id for item in stale] == [withdrawal.id]

    assert await reconciliation.alert_stale(alerting_config) == []
    await notifier.drain()
    assert sender.sms_to(ADMIN_PHONE) == []


async def test_unknown_transaction(reconciliation):
    with pytest.raises(NotFoundError):
        await reconciliation.get(404)


async def test_unattributed_alert_without_admins_is_harmless(reconciliation):
    outcome = await reconciliation.handle_callback(
        stk_callback("NOPE-MRQ", "NOPE-NRQ", amount=500, receipt="RST0000005", phone=STRANGER),
        NotificationConfig(),
    )
    assert outcome.action == reconciliation_service.UNATTRIBUTED


async def test_second_receipt_for_settled_request_is_kept(reconciliation, allocator, lifecycle, make_employee,
                                                          make_advance, alerting_config, notifier, sender):
    employee = await make_employee()
    admin = await make_employee(is_admin=True)
    advance = await make_advance(employee, amount="1000")
    request = await allocator.request_repayment(employee.id, Decimal("500"), employee.phone_number)
    request_id, advance_id, employee_id = request.id, advance.id, employee.id
    await reconciliation.handle_callback(
        pay_bill("RPB0000005", 500, f"repay_advance:{employee.id}", employee.phone_number), alerting_config
    )
    payload = stk_callback("STK-MRQ-1", "STK-NRQ-1", amount=500, receipt="RST0000006", phone=employee.phone_number)

    outcome = await reconciliation.handle_callback(payload, alerting_config)
    replay = await reconciliation.handle_callback(payload, alerting_config)

    assert outcome.action == reconciliation_service.UNATTRIBUTED
    assert outcome.transaction_id != request_id
    assert replay == (reconciliation_service.DUPLICATE, request_id)
    second = await reconciliation.get(outcome.transaction_id)
    assert second.receipt_number == "RST0000006"
    assert second.confirmed_amount == Decimal("500")
    assert second.employee_id == employee_id
    assert second.needs_review
    assert f"#{request_id}" in second.review_reason
    assert second.merchant_request_id is None
    advance = await lifecycle.get(advance_id)
    assert advance.amount_repaid == Decimal("500")
    await notifier.drain()
    assert any(f"Payment #{second.id}" in message for message in sender.sms_to(ADMIN_PHONE))

    await reconciliation.assign(second.id, employee_id, admin.id)
    advance = await lifecycle.get(advance_id)
    assert advance.amount_repaid == Decimal("1000")
    assert advance.status == "repaid"


async def test_late_withdrawal_failure_leaves_repaid_advance(reconciliation, disbursement, allocator, lifecycle,
                                                            make_employee, make_advance, alerting_config,
                                                            notifier, sender):
    employee = await make_employee()
    advance = await make_advance(employee, amount="1000")
    withdrawal = await disbursement.withdraw(employee.id, Decimal("1000"))
    await allocator.apply_repayment(employee.id, Decimal("1000"))
    withdrawal_id, advance_id = withdrawal.id, advance.id

    outcome = await reconciliation.handle_callback(
        b2c_result("B2C-MRQ-1", "B2C-NRQ-1", result_code=2001), alerting_config
    )

    assert outcome == (reconciliation_service.SETTLED, withdrawal_id)
    advance = await lifecycle.get(advance_id)
    assert advance.status == "repaid"
    assert advance.amount_withdrawn == Decimal("1000")
    assert advance.amount_repaid == Decimal("1000")
    transaction = await reconciliation.get(withdrawal_id)
    assert transaction.status == "failed"
    assert transaction.needs_review
    assert f"advance #{advance_id} was repaid" in transaction.review_reason
    allocations = await reconciliation.allocations(withdrawal_id)
    assert [allocation.reversed for allocation in allocations] == [False]
    await notifier.drain()
    assert any(f"Payment #{withdrawal_id}" in message for message in sender.sms_to(ADMIN_PHONE))


async def test_oversized_reference_is_held_for_review(reconciliation, notification_config):
    outcome = await reconciliation.handle_callback(
        pay_bill("RPB0000006", 300, "repay_advance:" + "9" * 23, STRANGER), notification_config
    )

    assert outcome.action == reconciliation_service.UNATTRIBUTED
    transaction = await reconciliation.get(outcome.transaction_id)
    assert transaction.needs_review
    assert transaction.employee_id is None


async def test_callback_that_fails_to_settle_is_kept(reconciliation, alerting_config, monkeypatch):
    async def broken(record, notification_config):
        raise RuntimeError("database went away")

    monkeypatch.setattr(reconciliation, "_pay_bill", broken)
    payload = pay_bill("RPB0000007", 300, "INV-9", STRANGER)

    outcome = await reconciliation.handle_callback(payload, alerting_config)

    assert outcome.action == reconciliation_service.UNRECOGNIZED
    transaction = await reconciliation.get(outcome.transaction_id)
    assert transaction.needs_review
    assert transaction.raw_payload == payload
    assert "database went away" in transaction.review_reason
