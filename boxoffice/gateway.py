"""Mobile-money payment adapter (InTouch aggregator).

The four supported rails share one HTTP contract and differ only by the
``serviceCode`` sent to the aggregator, so a single adapter serves all of
them. Provider status strings are normalized onto ``PaymentStatus``; anything
unrecognized is treated as still processing, never as paid.
"""

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import httpx

from . import config
from .app_logger import get_logger
from .errors import ErrorCode, InputValidationError, PaymentGatewayError
from .models import PaymentStatus

log = get_logger("gateway")


class PaymentMethod(str, enum.Enum):
    ORANGE_MONEY = "orange_money"
    FREE_MONEY = "free_money"
    WAVE = "wave"
    TOUCH_POINT = "touch_point"

    @property
    def service_code(self) -> str:
        return SERVICE_CODES[self]

    @property
    def label(self) -> str:
        return METHOD_LABELS[self]


SERVICE_CODES = {
    PaymentMethod.ORANGE_MONEY: "PAIEMENTMARCHANDOMSN2",
    PaymentMethod.FREE_MONEY: "PAIEMENTMARCHANDTIGO",
    PaymentMethod.WAVE: "SNPAIEMENTWAVE",
    PaymentMethod.TOUCH_POINT: "SN_INIT_PAIEMENT_TP",
}

METHOD_LABELS = {
    PaymentMethod.ORANGE_MONEY: "Orange Money",
    PaymentMethod.FREE_MONEY: "Free Money",
    PaymentMethod.WAVE: "Wave",
    PaymentMethod.TOUCH_POINT: "Touch Point",
}


def normalize_status(raw: Any) -> PaymentStatus:
    """Map a provider status string onto the canonical payment status."""
    value = raw.strip().upper() if isinstance(raw, str) else ""
    match value:
        case "SUCCESSFUL" | "SUCCESS" | "COMPLETED":
            return PaymentStatus.COMPLETED
        case "FAILED":
            return PaymentStatus.FAILED
        case "CANCELLED":
            return PaymentStatus.CANCELLED
        case "PENDING":
            return PaymentStatus.PROCESSING
        case _:
            return PaymentStatus.PROCESSING


@dataclass(frozen=True)
class PaymentRequest:
    amount: Decimal
    recipient_number: str
    callback_url: str
    client_ref: str
    method: PaymentMethod
    recipient_email: str | None = None
    recipient_first_name: str | None = None
    recipient_last_name: str | None = None


@dataclass(frozen=True)
class InitiationResult:
    transaction_id: str
    status: str
    payment_url: str | None
    service_code: str
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    transaction_id: str
    status: PaymentStatus
    provider_status: str | None
    raw: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.status == PaymentStatus.COMPLETED


@dataclass(frozen=True)
class CallbackResult:
    transaction_id: str | None
    status: PaymentStatus
    client_ref: str | None
    amount: Any = None
    currency: str | None = None
    raw: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.status == PaymentStatus.COMPLETED


def parse_callback(payload: Any) -> CallbackResult:
    if not isinstance(payload, dict):
        raise InputValidationError("Callback payload must be a JSON object", code=ErrorCode.INVALID_CALLBACK)

    transaction_id = payload.get("transactionId")
    client_ref = payload.get("idFromClient")
    if not transaction_id and not client_ref:
        raise InputValidationError(
            "Callback carries neither transactionId nor idFromClient",
            code=ErrorCode.INVALID_CALLBACK,
        )

    return CallbackResult(
        transaction_id=str(transaction_id) if transaction_id else None,
        status=normalize_status(payload.get("status")),
        client_ref=str(client_ref) if client_ref else None,
        amount=payload.get("amount"),
        currency=payload.get("currency"),
        raw=payload,
    )


class InTouchGateway:
    def __init__(
        self,
        *,
        base_url: str,
        merchant_id: str,
        login_agent: str,
        password_agent: str,
        username: str,
        password: str,
        partner_name: str = "BOXOFFICE",
        frontend_url: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.merchant_id = merchant_id
        self.login_agent = login_agent
        self.password_agent = password_agent
        self.username = username
        self.password = password
        self.partner_name = partner_name
        self.frontend_url = frontend_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls) -> "InTouchGateway":
        return cls(
            base_url=config.INTOUCH_API_URL,
            merchant_id=config.INTOUCH_MERCHANT_ID,
            login_agent=config.INTOUCH_LOGIN_AGENT,
            password_agent=config.INTOUCH_PASSWORD_AGENT,
            username=config.INTOUCH_USERNAME,
            password=config.INTOUCH_PASSWORD,
            partner_name=config.INTOUCH_PARTNER_NAME,
            frontend_url=config.FRONTEND_URL,
            timeout=config.PAYMENT_TIMEOUT_SECONDS,
        )

    def _client(self) -> httpx.AsyncClient:
        if not self.base_url:
            raise PaymentGatewayError("Payment provider is not configured")
        return httpx.AsyncClient(
            auth=(self.username, self.password),
            timeout=self.timeout,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )

    def _agent_params(self) -> dict:
        return {"loginAgent": self.login_agent, "passwordAgent": self.password_agent}

    async def _send(self, method: str, url: str, **kwargs) -> dict:
        async with self._client() as client:
            try:
                r = await client.request(method, url, params=self._agent_params(), **kwargs)
                r.raise_for_status()
            except httpx.TimeoutException as e:
                log.error("provider timeout %s %s", method, url)
                raise PaymentGatewayError("Payment provider timed out") from e
            except httpx.HTTPStatusError as e:
                log.error("provider rejected %s %s: %s %s", method, url, e.response.status_code, e.response.text)
                raise PaymentGatewayError(
                    "Payment provider rejected the request", detail=_safe_json(e.response)
                ) from e
            except httpx.HTTPError as e:
                log.error("provider unreachable %s %s: %s", method, url, e)
                raise PaymentGatewayError("Payment provider unreachable") from e

        data = _safe_json(r)
        if not isinstance(data, dict):
            raise PaymentGatewayError("Payment provider returned an unreadable response")
        log.debug("provider response %s %s: %s", method, url, data)
        return data

    async def initiate(self, request: PaymentRequest) -> InitiationResult:
        service_code = request.method.service_code
        body = {
            "idFromClient": request.client_ref,
            "additionnalInfos": {
                "recipientEmail": request.recipient_email,
                "recipientFirstName": request.recipient_first_name,
                "recipientLastName": request.recipient_last_name,
                "destinataire": request.recipient_number,
                "partner_name": self.partner_name,
                "return_url": f"{self.frontend_url}/payment-success",
                "cancel_url": f"{self.frontend_url}/payment-cancel",
            },
            "amount": _amount(request.amount),
            "callback": request.callback_url,
            "recipientNumber": request.recipient_number,
            "serviceCode": service_code,
        }
        log.info("initiating payment ref=%s amount=%s service=%s", request.client_ref, body["amount"], service_code)

        data = await self._send("PUT", f"{self.base_url}/{self.merchant_id}/transaction", json=body)

        transaction_id = data.get("transactionId") or data.get("id")
        if not transaction_id:
            raise PaymentGatewayError("Payment provider returned no transaction id", detail=data)

        return InitiationResult(
            transaction_id=str(transaction_id),
            status=str(data.get("status") or "pending"),
            payment_url=data.get("paymentUrl"),
            service_code=service_code,
            raw=data,
        )

    async def verify(self, transaction_id: str) -> VerificationResult:
        data = await self._send("GET", f"{self.base_url}/{self.merchant_id}/transaction/{transaction_id}")
        provider_status = data.get("status")
        return VerificationResult(
            transaction_id=transaction_id,
            status=normalize_status(provider_status),
            provider_status=provider_status,
            raw=data,
        )

    def parse_callback(self, payload: Any) -> CallbackResult:
        return parse_callback(payload)


def _amount(value: Decimal) -> int | float:
    # the aggregator expects a plain JSON number
    value = Decimal(value)
    return int(value) if value == value.to_integral_value() else float(value)


def _safe_json(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text
