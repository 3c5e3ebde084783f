"""
Payment provider webhooks.

The provider delivers at least once, so every branch here is safe to replay:
confirmation writes land on ids derived from the payment id and each write is
conditional on the state it expects.
"""
import hmac
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from aws_lambda_powertools import Logger
from pydantic import BaseModel

from smartpark.billing import current_time
from smartpark.errors import ConflictError, ReservationExpiredError, SpaceUnavailableError, UnauthorizedError
from smartpark.gateway import FlutterwaveClient, VerificationResult
from smartpark.models import (
    PaymentPurpose,
    PaymentRecord,
    PaymentStatus,
    ReservationRecord,
    ReservationStatus,
    history_id_for,
    reservation_id_for,
)
from smartpark.repositories import Repositories
from smartpark.schemas import ChargeCompletedEvent, ChargeFailedEvent

logger = Logger(child=True)

SIGNATURE_HEADER = "verif-hash"


def verify_signature(signature: Optional[str], secret: str) -> None:
    """Reject the request unless the header carries the shared secret"""
    if not secret or not signature:
        logger.warning(
            "Unauthorized webhook request",
            extra={"signature": "present" if signature else "missing"},
        )
        raise UnauthorizedError()
    if not hmac.compare_digest(signature.encode("utf-8"), secret.encode("utf-8")):
        logger.warning("Unauthorized webhook request", extra={"signature": "mismatch"})
        raise UnauthorizedError()


@dataclass
class WebhookOutcome:
    message: str
    data: Optional[Dict[str, Any]] = None


@dataclass
class Confirmation:
    payment: PaymentRecord
    reservation: Optional[ReservationRecord] = None
    duplicate: bool = False


class WebhookDispatcher:
    def __init__(
        self,
        repositories: Repositories,
        gateway: FlutterwaveClient,
        clock: Callable[[], datetime],
        currency: Optional[str] = None,
    ):
        self.payments = repositories.payments
        self.spaces = repositories.spaces
        self.reservations = repositories.reservations
        self.history = repositories.history
        self.gateway = gateway
        self.clock = clock
        self.currency = currency
        self.handlers = {
            "charge.completed": self.handle_charge_completed,
            "charge.failed": self.handle_charge_failed,
        }

    @classmethod
    def from_settings(cls, settings, repositories=None, gateway=None) -> "WebhookDispatcher":
        return cls(
            repositories=repositories or Repositories.from_settings(settings),
            gateway=gateway or FlutterwaveClient.from_settings(settings),
            clock=lambda: current_time(settings.timezone),
            currency=settings.payment_currency,
        )

    def dispatch(self, event: BaseModel) -> WebhookOutcome:
        handler = self.handlers.get(event.event)
        if handler is None:
            logger.info("Unhandled webhook event type", extra={"eventType": event.event})
            return WebhookOutcome("Webhook received")
        return handler(event)

    def handle_charge_completed(self, event: ChargeCompletedEvent) -> WebhookOutcome:
        data = event.data
        logger.info(
            "Processing charge completed webhook",
            extra={"transactionId": data.id, "reference": data.tx_ref},
        )

        # the payload's own status is never trusted
        verification = self.gateway.verify_payment(data.id)
        if not verification.successful:
            logger.warning(
                "Payment verification failed",
                extra={"transactionId": data.id, "status": verification.status},
            )
            return WebhookOutcome(
                "Payment verification failed",
                {"status": "verification_failed", "reference": data.tx_ref, "message": verification.message},
            )

        if verification.reference and verification.reference != data.tx_ref:
            logger.warning(
                "Verified transaction belongs to another payment",
                extra={"transactionId": data.id, "reference": data.tx_ref, "verified": verification.reference},
            )
            return WebhookOutcome(
                "Payment verification failed",
                {"status": "verification_failed", "reference": data.tx_ref, "message": "Reference mismatch"},
            )

        mismatch = self._settlement_mismatch(self.payments.get(data.tx_ref), verification)
        if mismatch:
            logger.warning(
                "Verified transaction does not cover the payment",
                extra={
                    "transactionId": data.id,
                    "reference": data.tx_ref,
                    "amount": str(verification.amount),
                    "currency": verification.currency,
                },
            )
            return WebhookOutcome(
                "Payment verification failed",
                {"status": "verification_failed", "reference": data.tx_ref, "message": mismatch},
            )

        try:
            confirmation = self.confirm_payment(
                data.tx_ref,
                transaction_id=data.id,
                payment_method=verification.payment_method,
            )
        except SpaceUnavailableError as e:
            # money moved but another confirmed payment holds the space
            logger.error(
                "Confirmed payment lost the parking space",
                extra={"paymentId": data.tx_ref, "transactionId": data.id, "error": e.message},
            )
            return WebhookOutcome(
                "Payment confirmed but parking space is no longer available",
                {"status": "space_unavailable", "paymentId": data.tx_ref, "refundRequired": True},
            )
        except ReservationExpiredError as e:
            logger.error(
                "Payment confirmed after the reservation window ended",
                extra={"paymentId": data.tx_ref, "transactionId": data.id, "error": e.message},
            )
            return WebhookOutcome(
                "Payment confirmed but the reservation window has ended",
                {"status": "expired", "paymentId": data.tx_ref, "refundRequired": True},
            )

        if confirmation.reservation is None:
            return WebhookOutcome(
                "Payment settled",
                {"status": "settled", "paymentId": confirmation.payment.id},
            )

        reservation = confirmation.reservation
        logger.info(
            "Payment confirmed and reservation created",
            extra={"paymentId": data.tx_ref, "reservationId": reservation.id, "duplicate": confirmation.duplicate},
        )
        return WebhookOutcome(
            "Payment confirmed and reservation created",
            {
                "reservationId": reservation.id,
                "spaceNumber": reservation.space_number,
                "status": "confirmed",
            },
        )

    def handle_charge_failed(self, event: ChargeFailedEvent) -> WebhookOutcome:
        data = event.data
        logger.info(
            "Processing charge failed webhook",
            extra={"transactionId": data.id, "reference": data.tx_ref},
        )
        payment = self.record_payment_failure(data.tx_ref, transaction_id=data.id)
        return WebhookOutcome(
            "Payment failure recorded",
            {"status": payment.payment_status, "reference": data.tx_ref},
        )

    def _settlement_mismatch(self, payment: PaymentRecord, verification: VerificationResult) -> Optional[str]:
        if verification.amount is not None and verification.amount < payment.charge:
            return "Amount mismatch"
        if self.currency and verification.currency and verification.currency != self.currency:
            return "Currency mismatch"
        return None

    def confirm_payment(
        self,
        payment_id: str,
        transaction_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Confirmation:
        """Settle the payment, reserve its space and create the reservation.

        Replays are no-ops that return the original reservation. A replay
        that finds the payment settled but the space or reservation write
        missing finishes those writes.
        """
        logger.info("Confirming payment", extra={"paymentId": payment_id})
        now = self.clock()
        payment = self.payments.get(payment_id)
        duplicate = payment.is_settled
        reservation_id = reservation_id_for(payment_id)

        if not duplicate:
            try:
                payment = self.payments.transition(
                    payment_id,
                    PaymentStatus.SUCCESSFUL,
                    allowed_from=[PaymentStatus.UNPROCESSED, PaymentStatus.PROCESSING, PaymentStatus.FAILED],
                    now=now,
                    transaction_id=transaction_id,
                    payment_method=payment_method,
                    reservation_id=reservation_id if payment.purpose == PaymentPurpose.RESERVATION else None,
                )
            except ConflictError:
                # a concurrent delivery settled it first
                payment = self.payments.get(payment_id)
                if not payment.is_settled:
                    raise
                duplicate = True

        if payment.purpose == PaymentPurpose.CHECKOUT:
            return Confirmation(payment=payment, duplicate=duplicate)

        existing = self.reservations.find(reservation_id)
        if existing is not None:
            logger.info("Duplicate payment confirmation", extra={"paymentId": payment_id, "reservationId": existing.id})
            return Confirmation(payment=payment, reservation=existing, duplicate=True)

        archived = self.history.find(history_id_for(reservation_id))
        if archived is not None:
            logger.info("Payment confirmed for a checked out reservation", extra={"paymentId": payment_id})
            reservation = ReservationRecord(
                id=reservation_id,
                payment_id=payment_id,
                space_number=archived.space_number,
                user_email=archived.user_email,
                reserve_time=archived.reserve_time,
                checkout_time=archived.checkout_time,
                status=ReservationStatus.COMPLETED,
            )
            return Confirmation(payment=payment, reservation=reservation, duplicate=True)

        if now >= payment.checkout_time:
            raise ReservationExpiredError(payment_id)

        if duplicate:
            logger.warning("Reconciling partially confirmed payment", extra={"paymentId": payment_id})

        self.spaces.mark_reserved(payment.space_number, reservation_id, payment.reserve_time, now)

        reservation = ReservationRecord(
            id=reservation_id,
            payment_id=payment_id,
            space_number=payment.space_number,
            user_email=payment.user_email,
            reserve_time=payment.reserve_time,
            checkout_time=payment.checkout_time,
            status=ReservationStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        if not self.reservations.create_if_absent(reservation):
            reservation = self.reservations.get(reservation_id)
            duplicate = True

        logger.info(
            "Payment confirmed and space reserved",
            extra={"paymentId": payment_id, "spaceNumber": payment.space_number},
        )
        return Confirmation(payment=payment, reservation=reservation, duplicate=duplicate)

    def record_payment_failure(self, payment_id: str, transaction_id: Optional[str] = None) -> PaymentRecord:
        """Mark a pending payment failed; settled or already failed ones are left alone"""
        payment = self.payments.get(payment_id)
        if payment.payment_status in (PaymentStatus.SUCCESSFUL, PaymentStatus.FAILED):
            logger.info(
                "Ignoring failure for finished payment",
                extra={"paymentId": payment_id, "status": payment.payment_status},
            )
            return payment

        try:
            return self.payments.transition(
                payment_id,
                PaymentStatus.FAILED,
                allowed_from=[PaymentStatus.UNPROCESSED, PaymentStatus.PROCESSING],
                now=self.clock(),
                transaction_id=transaction_id,
            )
        except ConflictError:
            # settled concurrently
            return self.payments.get(payment_id)
