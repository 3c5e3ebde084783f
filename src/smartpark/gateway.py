"""
Flutterwave card payment client.

A boundary adapter only: it never touches the tables. Calls are made once
with a bounded timeout; a failed initiation is terminal for that call.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from aws_lambda_powertools import Logger

from smartpark.errors import PaymentError, PaymentServiceUnavailableError

logger = Logger(child=True)


@dataclass(frozen=True)
class PaymentLink:
    payment_link: str
    reference: str


@dataclass(frozen=True)
class VerificationResult:
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    reference: Optional[str] = None
    payment_method: Optional[str] = None
    message: Optional[str] = None

    @property
    def successful(self) -> bool:
        return self.status == "successful"


class FlutterwaveClient:
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.flutterwave.com/v3",
        timeout: float = 10.0,
        currency: str = "NGN",
        company_name: str = "Smart Park",
        default_redirect_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.currency = currency
        self.company_name = company_name
        self.default_redirect_url = default_redirect_url
        self.client = http_client or httpx.Client()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Authorization": f"Bearer {secret_key}"}

    @classmethod
    def from_settings(cls, settings, http_client: Optional[httpx.Client] = None) -> "FlutterwaveClient":
        return cls(
            secret_key=settings.flw_secret_key,
            base_url=settings.flw_api_url,
            timeout=settings.payment_timeout_seconds,
            currency=settings.payment_currency,
            company_name=settings.company_name,
            default_redirect_url=settings.primary_origin,
            http_client=http_client,
        )

    def initiate_payment(
        self,
        amount: Decimal,
        email: str,
        payment_id: str,
        redirect_url: Optional[str] = None,
    ) -> PaymentLink:
        """Create a hosted payment page for ``payment_id`` and return its link"""
        logger.info("Initiating Flutterwave payment", extra={"paymentId": payment_id, "amount": str(amount)})

        request_data = {
            "currency": self.currency,
            "amount": str(amount),
            "customer": {"email": email},
            "customizations": {
                "title": f"{self.company_name} Parking Payment",
                "description": "Parking space reservation payment",
            },
            "tx_ref": payment_id,
            "redirect_url": redirect_url or self.default_redirect_url,
        }

        body = self._request("POST", "/payments", payment_id, json=request_data)
        data = body.get("data") or {}
        if body.get("status") != "success" or not data.get("link"):
            logger.error("Payment initiation failed", extra={"paymentId": payment_id, "response": body})
            raise PaymentError(body.get("message") or "Failed to initiate payment")

        logger.info("Payment initiation successful", extra={"paymentId": payment_id})
        return PaymentLink(payment_link=data["link"], reference=data.get("tx_ref") or payment_id)

    def verify_payment(self, transaction_id: str) -> VerificationResult:
        """Ask the provider for the real status of a transaction"""
        logger.info("Verifying payment", extra={"transactionId": transaction_id})

        body = self._request("GET", f"/transactions/{transaction_id}/verify", transaction_id)
        data = body.get("data") or {}

        if body.get("status") == "success" and data.get("status") == "successful":
            logger.info("Payment verification successful", extra={"transactionId": transaction_id})
            amount = data.get("amount")
            return VerificationResult(
                status="successful",
                amount=Decimal(str(amount)) if amount is not None else None,
                currency=data.get("currency"),
                reference=data.get("tx_ref"),
                payment_method=data.get("payment_type"),
            )

        logger.warning(
            "Payment verification failed",
            extra={"transactionId": transaction_id, "status": data.get("status")},
        )
        return VerificationResult(
            status=data.get("status") or "failed",
            reference=data.get("tx_ref"),
            message=body.get("message"),
        )

    def _request(self, method: str, path: str, reference: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.client.request(
                method,
                f"{self.base_url}{path}",
                headers=self.headers,
                timeout=self.timeout,
                **kwargs,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error("Payment service timeout", extra={"reference": reference})
            raise PaymentServiceUnavailableError() from e
        except httpx.HTTPStatusError as e:
            upstream = _json_or_empty(e.response)
            logger.error(
                "Flutterwave API error",
                extra={"reference": reference, "status": e.response.status_code, "data": upstream},
            )
            raise PaymentError(f"Payment service error: {upstream.get('message') or 'Unknown error'}") from e
        except httpx.TransportError as e:
            logger.error("Payment service unreachable", extra={"reference": reference, "error": str(e)})
            raise PaymentServiceUnavailableError() from e

        body = _json_or_empty(response)
        if not body:
            raise PaymentError("Payment service returned an unreadable response")
        return body


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
