"""Typed records for payment network callbacks.

The network posts four differently shaped bodies to the same endpoints:
STK push results, B2C results, pay bill confirmations and account balance
results. ``parse_callback`` detects the shape and returns one record per
payload. A body that cannot be read becomes an ``UnrecognizedPayload``
so it can still be persisted.
"""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, BeforeValidator, Field, ValidationError, field_validator

from components.core.logging import get_logger
from components.employee.utils import phone_from_public_name

logger = get_logger(__name__)

REPAYMENT_REFERENCE_PREFIX = "repay_advance:"
# Longer ids overflow a signed 64-bit column
MAX_EMPLOYEE_ID_DIGITS = 18
PAY_BILL = "Pay Bill"


def _text(value):
    if value is None or value == "":
        return None
    return str(value)


def _amount(value):
    if value is None or value == "":
        return None
    return value


Text = Annotated[Optional[str], BeforeValidator(_text)]
Amount = Annotated[Optional[Decimal], BeforeValidator(_amount)]


# Wire shapes

class _MetadataItem(BaseModel):
    name: str = Field(alias="Name")
    value: Any = Field(None, alias="Value")


class _CallbackMetadata(BaseModel):
    items: List[_MetadataItem] = Field(default_factory=list, alias="Item")


class _StkCallback(BaseModel):
    merchant_request_id: str = Field(alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    result_code: int = Field(alias="ResultCode")
    result_desc: str = Field("", alias="ResultDesc")
    metadata: Optional[_CallbackMetadata] = Field(None, alias="CallbackMetadata")


class _ResultParameter(BaseModel):
    key: str = Field(alias="Key")
    value: Any = Field(None, alias="Value")


class _ResultParameters(BaseModel):
    parameters: List[_ResultParameter] = Field(default_factory=list, alias="ResultParameter")

    @field_validator("parameters", mode="before")
    @classmethod
    def single_parameter(cls, value):
        # A lone parameter arrives as an object instead of a list
        if isinstance(value, dict):
            return [value]
        return value


class _Result(BaseModel):
    result_code: int = Field(alias="ResultCode")
    result_desc: str = Field("", alias="ResultDesc")
    originator_conversation_id: Text = Field(None, alias="OriginatorConversationID")
    conversation_id: Text = Field(None, alias="ConversationID")
    transaction_id: Text = Field(None, alias="TransactionID")
    result_parameters: Optional[_ResultParameters] = Field(None, alias="ResultParameters")

    def parameters(self) -> Dict[str, Any]:
        if self.result_parameters is None:
            return {}
        return {parameter.key: parameter.value for parameter in self.result_parameters.parameters}


# Records

class _Record(BaseModel):
    raw: Dict[str, Any]

    class Config:
        frozen = True


class StkPushResult(_Record):
    """Outcome of an STK push the service initiated (inbound money)."""
    kind: Literal["stk_push"] = "stk_push"
    merchant_request_id: str
    checkout_request_id: str
    result_code: int
    result_description: str
    amount: Amount = None
    receipt_number: Text = None
    phone_number: Text = None
    transaction_date: Text = None
    metadata: Dict[str, Any] = {}

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

    @property
    def correlation(self) -> Tuple[str, str]:
        return self.merchant_request_id, self.checkout_request_id


class B2CResult(_Record):
    """Outcome of a B2C payment the service initiated (outbound money)."""
    kind: Literal["b2c"] = "b2c"
    originator_conversation_id: Text = None
    conversation_id: Text = None
    transaction_id: Text = None
    result_code: int
    result_description: str
    amount: Amount = None
    receipt_number: Text = None
    phone_number: Text = None
    completed_at: Text = None
    utility_account_balance: Amount = None
    metadata: Dict[str, Any] = {}

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

    @property
    def correlation(self) -> Tuple[Optional[str], Optional[str]]:
        return self.originator_conversation_id, self.conversation_id


class PayBillNotice(_Record):
    """Customer-initiated payment into the pay bill, or an account top-up."""
    kind: Literal["pay_bill"] = "pay_bill"
    transaction_type: Text = None
    receipt_number: str
    amount: Decimal
    bill_reference: Text = None
    phone_number: Text = None
    first_name: Text = None
    business_short_code: Text = None
    org_account_balance: Amount = None

    @property
    def is_pay_bill(self) -> bool:
        return self.transaction_type == PAY_BILL and bool(self.bill_reference)


class AccountBalanceEntry(BaseModel):
    account: str
    currency: str
    balance: Decimal


class AccountBalanceResult(_Record):
    kind: Literal["account_balance"] = "account_balance"
    result_code: int
    result_description: str
    balances: List[AccountBalanceEntry] = []

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0


class UnrecognizedPayload(_Record):
    kind: Literal["unrecognized"] = "unrecognized"
    reason: str


CallbackRecord = Union[StkPushResult, B2CResult, PayBillNotice, AccountBalanceResult, UnrecognizedPayload]


def account_key(name: str) -> str:
    """'Utility Account' -> 'utility'."""
    key = "".join(name.split()).lower()
    if key.endswith("account") and key != "account":
        key = key[: -len("account")]
    return key


def parse_account_balances(value: Optional[str]) -> List[AccountBalanceEntry]:
    """Parse 'Name|KES|balance|...' segments joined by '&'."""
    entries = []
    for segment in (value or "").split("&"):
        fields = segment.split("|")
        if len(fields) < 3 or not fields[0].strip():
            continue
        entries.append(AccountBalanceEntry(
            account=account_key(fields[0]),
            currency=fields[1].strip() or "KES",
            balance=Decimal(fields[2].strip() or "0"),
        ))
    return entries


def reference_employee_id(reference: Optional[str]) -> Optional[int]:
    """Employee id named by a 'repay_advance:<id>' account reference."""
    if not reference or not reference.startswith(REPAYMENT_REFERENCE_PREFIX):
        return None
    suffix = reference[len(REPAYMENT_REFERENCE_PREFIX):].strip()
    if not (suffix.isascii() and suffix.isdigit()) or len(suffix) > MAX_EMPLOYEE_ID_DIGITS:
        return None
    return int(suffix)


def _stk(payload: Dict[str, Any]) -> StkPushResult:
    callback = _StkCallback.model_validate(payload["Body"]["stkCallback"])
    metadata = {item.name: item.value for item in callback.metadata.items} if callback.metadata else {}
    return StkPushResult(
        raw=payload,
        merchant_request_id=callback.merchant_request_id,
        checkout_request_id=callback.checkout_request_id,
        result_code=callback.result_code,
        result_description=callback.result_desc,
        amount=metadata.get("Amount"),
        receipt_number=metadata.get("MpesaReceiptNumber"),
        phone_number=metadata.get("PhoneNumber"),
        transaction_date=metadata.get("TransactionDate"),
        metadata=metadata,
    )


def _result(payload: Dict[str, Any]) -> Union[B2CResult, AccountBalanceResult]:
    result = _Result.model_validate(payload["Result"])
    parameters = result.parameters()
    if "AccountBalance" in parameters:
        return AccountBalanceResult(
            raw=payload,
            result_code=result.result_code,
            result_description=result.result_desc,
            balances=parse_account_balances(_text(parameters["AccountBalance"])),
        )
    return B2CResult(
        raw=payload,
        originator_conversation_id=result.originator_conversation_id,
        conversation_id=result.conversation_id,
        transaction_id=result.transaction_id,
        result_code=result.result_code,
        result_description=result.result_desc,
        amount=parameters.get("TransactionAmount"),
        receipt_number=parameters.get("TransactionReceipt") or result.transaction_id,
        phone_number=phone_from_public_name(_text(parameters.get("ReceiverPartyPublicName"))),
        completed_at=parameters.get("TransactionCompletedDateTime"),
        utility_account_balance=parameters.get("B2CUtilityAccountAvailableFunds"),
        metadata=parameters,
    )


def _pay_bill(payload: Dict[str, Any]) -> PayBillNotice:
    return PayBillNotice(
        raw=payload,
        transaction_type=payload.get("TransactionType"),
        receipt_number=_text(payload.get("TransID")),
        amount=payload.get("TransAmount"),
        bill_reference=payload.get("BillRefNumber"),
        phone_number=payload.get("MSISDN"),
        first_name=payload.get("FirstName"),
        business_short_code=payload.get("BusinessShortCode"),
        org_account_balance=payload.get("OrgAccountBalance"),
    )


def parse_callback(payload: Any) -> CallbackRecord:
    """Detect the payload shape and build its typed record."""
    if not isinstance(payload, dict):
        return UnrecognizedPayload(raw={"body": payload}, reason="Callback body is not a JSON object")

    body = payload.get("Body")
    try:
        if isinstance(body, dict) and "stkCallback" in body:
            return _stk(payload)
        if isinstance(payload.get("Result"), dict):
            return _result(payload)
        if "TransID" in payload and "TransAmount" in payload:
            return _pay_bill(payload)
    except ValidationError as exc:
        logger.warning("Malformed payment callback: %s", exc)
        return UnrecognizedPayload(raw=payload, reason=f"Malformed callback: {exc.error_count()} invalid field(s)")
    except ArithmeticError as exc:
        logger.warning("Malformed account balance in callback: %s", exc)
        return UnrecognizedPayload(raw=payload, reason="Malformed account balance")

    return UnrecognizedPayload(raw=payload, reason="Unknown callback type")
