"""Message texts for employee notifications."""

from decimal import Decimal
from typing import Dict, Optional, Tuple

SERVICE_SIGNATURE = "Thank you for using our service."


def kes(amount) -> str:
    return f"KES {Decimal(amount):,.2f}"


def _email(title: str, details: str, rows: Dict[str, str]) -> str:
    table = "".join(
        f'<tr><td style="padding: 8px 0; color: #64748b;">{label}</td>'
        f'<td style="padding: 8px 0; text-align: right;">{value}</td></tr>'
        for label, value in rows.items()
    )
    return (
        '<div style="padding: 20px 0;">'
        f'<h2 style="margin: 0 0 16px 0; color: #0891b2;">{title}</h2>'
        f'<table style="width: 100%; border-collapse: collapse;">{table}</table>'
        f"<p>{details}</p>"
        "<p>For any queries about your advance, please contact our support team.</p>"
        "</div>"
    )


def advance_requested(advance) -> Tuple[str, str, str]:
    """SMS text, email subject and email body for a new request."""
    sms = (
        f"Your advance request of {kes(advance.amount)} has been submitted successfully. "
        f"You will be notified once it is approved. {SERVICE_SIGNATURE}"
    )
    body = _email(
        "Salary Advance Request Submitted",
        "Your advance request is now pending approval.",
        {
            "Request Amount": kes(advance.amount),
            "Purpose": advance.purpose or "Not specified",
            "Repayment Period": f"{advance.repayment_period} months",
            "Interest Rate": f"{advance.interest_rate}%",
            "Monthly Installment": kes(advance.installment_amount),
            "Total Repayment": kes(advance.total_repayment),
            "Payment Method": (advance.preferred_payment_method or "").upper(),
        },
    )
    return sms, "Salary Advance Request Confirmation", body


def advance_request_alert(advance, employee) -> Tuple[str, str]:
    """Admin alert subject and text for a new request."""
    return (
        "New Advance Request - Action Required",
        f"New Advance Request Alert: Employee: {employee.full_name} "
        f"Amount: {kes(advance.amount)} Purpose: {advance.purpose or 'Not specified'}",
    )


def status_changed(advance, comments: Optional[str] = None) -> Optional[Tuple[str, str, str]]:
    """SMS text, email subject and email body for a status change."""
    amount = kes(advance.amount)
    installment = kes(advance.installment_amount)
    messages = {
        "approved": (
            f"Your advance request of {amount} has been approved. "
            f"The funds will be disbursed to your account shortly. {SERVICE_SIGNATURE}",
            "Advance Request Approved",
            "Congratulations! Your advance request has been approved.",
        ),
        "declined": (
            f"Your advance request of {amount} has been declined. "
            f"Reason: {comments or 'Not specified'}. For more information, please contact HR.",
            "Advance Request Declined",
            "We regret to inform you that your advance request has been declined."
            + (f" Reason: {comments}" if comments else ""),
        ),
        "disbursed": (
            f"Your advance of {amount} has been disbursed. Check your advance balance "
            f"and withdraw the funds. {SERVICE_SIGNATURE}",
            "Advance Disbursement Confirmation",
            "Your advance has been successfully disbursed to your account.",
        ),
        "repaying": (
            f"Your advance of {amount} has entered repayment phase. "
            f"Monthly installment: {installment}. {SERVICE_SIGNATURE}",
            "Advance Repayment Started",
            f"A monthly installment of {installment} will be deducted from your salary.",
        ),
        "repaid": (
            f"Your advance of {amount} has been fully repaid. "
            "You may now apply for another advance if needed.",
            "Advance Fully Repaid",
            "Congratulations! Your advance has been fully repaid.",
        ),
    }
    if advance.status not in messages:
        return None
    sms, subject, details = messages[advance.status]
    rows = {"Amount": amount, "Installment": installment}
    if comments:
        rows["Comments"] = comments
    return sms, subject, _email(subject, details, rows)


def withdrawal_sent(amount, remaining) -> str:
    return (
        f"Your advance withdrawal of {kes(amount)} has been processed and sent to your M-PESA. "
        f"Remaining advance balance: {kes(remaining)}. {SERVICE_SIGNATURE}"
    )


def withdrawal_failed(amount, reason: Optional[str]) -> str:
    return (
        f"Your advance withdrawal of {kes(amount)} could not be completed"
        f"{': ' + reason if reason else ''}. The amount has been returned to your advance balance."
    )


def repayment_received(amount) -> str:
    return f"Your advance repayment of {kes(amount)} has been received. {SERVICE_SIGNATURE}"


def repayment_failed(amount, reason: Optional[str]) -> str:
    return (
        f"Your advance repayment of {kes(amount)} was not completed"
        f"{': ' + reason if reason else ''}. Please try again."
    )


def balance_low(account: str, balance, threshold) -> Tuple[str, str]:
    """Admin alert subject and text for a low network account balance."""
    return (
        "Low M-PESA Balance Alert",
        f"M-PESA {account} account balance is {kes(balance)}, "
        f"below the alert threshold of {kes(threshold)}. Please top up to keep withdrawals running.",
    )


def unattributed_payment(transaction) -> Tuple[str, str]:
    """Admin alert subject and text for money that could not be matched."""
    return (
        "Unattributed Payment - Review Required",
        f"Payment #{transaction.id} of {kes(transaction.amount)} from "
        f"{transaction.phone_number or 'unknown sender'} could not be attributed: "
        f"{transaction.review_reason}",
    )


def stale_payments(count: int, minutes: int) -> Tuple[str, str]:
    return (
        "Pending Payments Need Attention",
        f"{count} payment(s) have been pending for more than {minutes} minutes. "
        "Review them and resolve manually if the network result never arrived.",
    )
