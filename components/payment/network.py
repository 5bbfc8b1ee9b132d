"""Client for the M-Pesa Daraja payment network."""

import base64
from datetime import datetime, timedelta
from decimal import Decimal
from typing import NamedTuple, Optional, Protocol

import httpx

from components.core import config
from components.core.exceptions import PaymentInitiationError, ValidationError
from components.core.logging import get_logger

settings = config.get_settings()
logger = get_logger(__name__)


class CorrelationIds(NamedTuple):
    """Identifiers the network echoes back in the result callback."""
    merchant_request_id: Optional[str]
    network_request_id: Optional[str]


class PaymentNetwork(Protocol):
    async def initiate_outbound_payment(
        self, phone_number: str, amount: Decimal, remarks: str, occasion: str
    ) -> CorrelationIds: ...

    async def initiate_inbound_payment_request(
        self, phone_number: str, amount: Decimal, account_reference: str
    ) -> CorrelationIds: ...

    async def query_account_balance(self) -> None: ...

    async def aclose(self) -> None: ...


def require_network_amount(amount: Decimal) -> Decimal:
    """The network only moves whole shillings."""
    if amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    if amount != amount.to_integral_value():
        raise ValidationError("Amount must be a whole number of shillings")
    return amount


def _whole_shillings(amount: Decimal) -> int:
    return int(amount.to_integral_value())


class DarajaClient:
    """PaymentNetwork backed by the Daraja REST API."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self.client = client or httpx.AsyncClient(
            base_url=settings.MPESA_BASE_URL,
            timeout=settings.MPESA_TIMEOUT_SECONDS,
        )
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    async def _access_token(self) -> str:
        """Client-credentials token, reused until shortly before it expires."""
        now = datetime.utcnow()
        if self._token and self._token_expires_at and now < self._token_expires_at:
            return self._token
        credentials = f"{settings.MPESA_CONSUMER_KEY}:{settings.MPESA_CONSUMER_SECRET}".encode()
        response = await self.client.get(
            "/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            headers={"Authorization": f"Basic {base64.b64encode(credentials).decode()}"},
        )
        response.raise_for_status()
        data = response.json()
        self._token = data["access_token"]
        expires_in = int(data.get("expires_in", 3599))
        self._token_expires_at = now + timedelta(seconds=max(expires_in - 60, 0))
        return self._token

    async def _post(self, path: str, body: dict, action: str) -> dict:
        try:
            token = await self._access_token()
            response = await self.client.post(path, json=body, headers={"Authorization": f"Bearer {token}"})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.error("%s rejected by payment network: HTTP %s %s",
                         action, exc.response.status_code, exc.response.text)
            raise PaymentInitiationError(f"{action} failed: payment network rejected the request") from exc
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error("%s failed: %s", action, exc)
            raise PaymentInitiationError(f"{action} failed: payment network unavailable") from exc

    async def initiate_outbound_payment(
        self, phone_number: str, amount: Decimal, remarks: str, occasion: str
    ) -> CorrelationIds:
        """B2C payment to the employee's phone."""
        data = await self._post(
            "/mpesa/b2c/v1/paymentrequest",
            {
                "InitiatorName": settings.MPESA_INITIATOR_NAME,
                "SecurityCredential": settings.MPESA_SECURITY_CREDENTIAL,
                "CommandID": "SalaryPayment",
                "Amount": _whole_shillings(amount),
                "PartyA": settings.MPESA_SHORTCODE,
                "PartyB": phone_number,
                "Remarks": remarks,
                "QueueTimeOutURL": settings.MPESA_QUEUE_TIME_OUT_URL or settings.MPESA_CALLBACK_URL,
                "ResultURL": settings.MPESA_CALLBACK_URL,
                "Occasion": occasion,
            },
            "B2C payment",
        )
        logger.info("B2C payment of %s to %s accepted: %s", amount, phone_number, data.get("ConversationID"))
        return CorrelationIds(data.get("OriginatorConversationID"), data.get("ConversationID"))

    async def initiate_inbound_payment_request(
        self, phone_number: str, amount: Decimal, account_reference: str
    ) -> CorrelationIds:
        """STK push asking the employee to pay into the pay bill."""
        data = await self._post(
            "/mpesa/stkpush/v1/processrequest",
            {
                "BusinessShortCode": settings.MPESA_SHORTCODE,
                "Password": settings.MPESA_STK_PASSWORD,
                "Timestamp": settings.MPESA_STK_TIMESTAMP,
                "TransactionType": "CustomerPayBillOnline",
                "Amount": _whole_shillings(amount),
                "PartyA": phone_number,
                "PartyB": settings.MPESA_SHORTCODE,
                "PhoneNumber": phone_number,
                "CallBackURL": settings.MPESA_CALLBACK_URL,
                "AccountReference": account_reference,
                "TransactionDesc": "CustomerPayBillOnline",
            },
            "STK push",
        )
        logger.info("STK push of %s to %s accepted: %s", amount, phone_number, data.get("CheckoutRequestID"))
        return CorrelationIds(data.get("MerchantRequestID"), data.get("CheckoutRequestID"))

    async def query_account_balance(self) -> None:
        """Ask for the account balances; the answer arrives as a callback."""
        await self._post(
            "/mpesa/accountbalance/v1/query",
            {
                "Initiator": settings.MPESA_INITIATOR_NAME,
                "SecurityCredential": settings.MPESA_SECURITY_CREDENTIAL,
                "CommandID": "AccountBalance",
                "PartyA": settings.MPESA_SHORTCODE,
                "IdentifierType": "4",
                "Remarks": "Balance check query",
                "QueueTimeOutURL": settings.MPESA_QUEUE_TIME_OUT_URL or settings.MPESA_BALANCE_CALLBACK_URL,
                "ResultURL": settings.MPESA_BALANCE_CALLBACK_URL,
            },
            "Balance query",
        )

    async def aclose(self) -> None:
        await self.client.aclose()
